"""Exceptions raised while declaring and submitting the connector stack."""


class ConnectorInfraError(Exception):
    """Base class for all infrastructure errors."""


class ConfigurationError(ConnectorInfraError, ValueError):
    """Stage configuration is missing a key or holds a malformed value."""


class InvalidFunctionNameError(ConfigurationError):
    """Connector function name is not lowercase letters and digits."""

    def __init__(self, function_name: str):
        super().__init__(
            f"Invalid function name {function_name!r}: must start with a lowercase "
            "letter and contain only lowercase letters and digits"
        )
        self.function_name = function_name


class InvalidVersionError(ConfigurationError):
    """Semantic version pin of the connector application is malformed."""

    def __init__(self, version: str):
        super().__init__(f"Invalid semantic version pin {version!r}")
        self.version = version


class UnresolvedImportError(ConnectorInfraError, LookupError):
    """A cross-stack export is not published in the target environment."""

    def __init__(self, export_name: str):
        super().__init__(f"Export {export_name!r} is not published in the target environment")
        self.export_name = export_name


class GraphError(ConnectorInfraError):
    """The resource graph is malformed."""


class OrderingViolationError(GraphError):
    """A required creation order is not backed by an explicit dependency edge."""

    def __init__(self, dependent: str, dependency: str):
        super().__init__(
            f"{dependent} must declare an explicit dependency on {dependency}"
        )
        self.dependent = dependent
        self.dependency = dependency


class DeploymentError(ConnectorInfraError):
    """CloudFormation reported a terminal failure for a submission."""

    def __init__(self, stack_name: str, status: str, reason: str = ""):
        message = f"Deployment of {stack_name} failed with status {status}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.stack_name = stack_name
        self.status = status
        self.reason = reason
