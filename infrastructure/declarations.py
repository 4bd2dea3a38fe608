"""Declarations of the Athena PostgreSQL connector resources.

Each ``declare_*`` function adds one resource to a ``ResourceGraph``;
``build_graph`` assembles the whole stack for the configured variant:

* ``connector``: access role and connector application, spill bucket assumed
  to exist already.
* ``catalog``: additionally the spill bucket, a sample named query and the
  Athena data catalog backed by the connector function.
"""
import logging
import re

from .errors import ConfigurationError, InvalidFunctionNameError, InvalidVersionError
from .graph import Arn, Interpolation, Resource, ResourceGraph, SecretPlaceholder
from .settings import VARIANTS, stack_name

logger = logging.getLogger(__name__)

FUNCTION_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9]*$")
SEMANTIC_VERSION_PATTERN = re.compile(r"^\d+\.\d+\.\d+$")

LAMBDA_PRINCIPAL = "lambda.amazonaws.com"
CONNECTOR_MANAGED_POLICIES = (
    "service-role/AWSLambdaBasicExecutionRole",
    "AmazonAthenaFullAccess",
)
CATALOG_TYPE = "LAMBDA"

# Resource kinds
ROLE = "iam.role"
APPLICATION = "serverless.application"
BUCKET = "storage.bucket"
NAMED_QUERY = "athena.named_query"
DATA_CATALOG = "athena.data_catalog"

# Logical ids
ROLE_ID = "ConnectorRole"
APPLICATION_ID = "PostgresConnector"
BUCKET_ID = "SpillBucket"
NAMED_QUERY_ID = "SampleQuery"
CATALOG_ID = "PostgresCatalog"

REQUIRED_IMPORTS = ("endpointAddress", "endpointPort", "securityGroupId", "privateSubnetIds")

# Parameters owned by the declaration; extraParameters may not override them.
CORE_PARAMETERS = (
    "SpillBucket",
    "SecretNamePrefix",
    "LambdaFunctionName",
    "DefaultConnectionString",
    "SecurityGroupIds",
    "SubnetIds",
)


def validate_function_name(function_name) -> str:
    if not isinstance(function_name, str) or not FUNCTION_NAME_PATTERN.match(function_name):
        raise InvalidFunctionNameError(str(function_name))
    return function_name


def validate_semantic_version(version) -> str:
    if not isinstance(version, str) or not SEMANTIC_VERSION_PATTERN.match(version):
        raise InvalidVersionError(str(version))
    return version


def compose_connection_string(address, port, database_name: str, secret: SecretPlaceholder) -> Interpolation:
    """JDBC connection string with the secret placeholder appended verbatim."""
    return Interpolation(
        "postgres://jdbc:postgresql://",
        address,
        ":",
        port,
        "/",
        database_name,
        "?MetadataRetrievalMethod=ProxyAPI&",
        secret,
    )


def declare_access_role(graph: ResourceGraph, config: dict) -> Resource:
    """Role for the connector function with secret retrieval permissions."""
    connector = config["connector"]
    region = config.get("region")
    account = config.get("account")
    partition = config.get("partition", "aws")
    secret_arns = [
        Arn("secretsmanager", "secret", f"{connector['secretNamePrefix']}*", region, account, partition),
        Arn("secretsmanager", "secret", f"{connector['secretName']}*", region, account, partition),
    ]
    return graph.add_resource(
        ROLE_ID,
        ROLE,
        principal=LAMBDA_PRINCIPAL,
        managed_policies=list(CONNECTOR_MANAGED_POLICIES),
        statements=[
            {
                "actions": ["secretsmanager:GetSecretValue"],
                "resources": secret_arns,
            }
        ],
        description=f"Role for the Athena PostgreSQL connector in {config['environment']} environment",
    )


def declare_application(graph: ResourceGraph, config: dict, connection_string, security_group, subnet) -> Resource:
    """Connector application from the Serverless Application Repository."""
    connector = config["connector"]
    parameters = {
        "SpillBucket": config["spillBucket"]["name"],
        "SecretNamePrefix": connector["secretNamePrefix"],
        "LambdaFunctionName": validate_function_name(connector["functionName"]),
        "DefaultConnectionString": connection_string,
        "SecurityGroupIds": security_group,
        "SubnetIds": subnet,
    }
    if "disableSpillEncryption" in connector:
        parameters["DisableSpillEncryption"] = "true" if connector["disableSpillEncryption"] else "false"

    for key, value in (connector.get("extraParameters") or {}).items():
        if key in CORE_PARAMETERS:
            raise ConfigurationError(f"extraParameters cannot override {key}")
        if not isinstance(value, str):
            raise ConfigurationError(f"Parameter {key} must be a string, got {type(value).__name__}")
        parameters[key] = value

    return graph.add_resource(
        APPLICATION_ID,
        APPLICATION,
        application_id=connector["applicationId"],
        semantic_version=validate_semantic_version(connector["semanticVersion"]),
        parameters=parameters,
        tags=dict(config.get("tags") or {}),
    )


def declare_spill_bucket(graph: ResourceGraph, config: dict) -> Resource:
    bucket = config["spillBucket"]
    removal_policy = bucket.get("removalPolicy", "destroy")
    if removal_policy not in ("destroy", "retain"):
        raise ConfigurationError(f"Unknown removal policy {removal_policy!r}")
    return graph.add_resource(
        BUCKET_ID,
        BUCKET,
        bucket_name=bucket["name"],
        versioned=bool(bucket.get("versioned", False)),
        removal_policy=removal_policy,
        auto_delete_objects=removal_policy == "destroy" and bool(bucket.get("autoDeleteObjects", True)),
    )


def declare_named_query(graph: ResourceGraph, config: dict) -> Resource:
    query = config["namedQuery"]
    return graph.add_resource(
        NAMED_QUERY_ID,
        NAMED_QUERY,
        name=query["name"],
        database=query["database"],
        query_string=query["queryString"],
        work_group=query.get("workGroup", "primary"),
        description=query.get("description"),
    )


def declare_data_catalog(graph: ResourceGraph, config: dict, application: Resource) -> Resource:
    """Athena catalog for the connector function.

    The function ARN is rebuilt from the configured function name, so the
    catalog carries an explicit, required edge on the application.
    """
    catalog = config["catalog"]
    function_arn = Arn(
        "lambda",
        "function",
        application["parameters"]["LambdaFunctionName"],
        config.get("region"),
        config.get("account"),
        config.get("partition", "aws"),
    )
    resource = graph.add_resource(
        CATALOG_ID,
        DATA_CATALOG,
        name=catalog["name"],
        catalog_type=CATALOG_TYPE,
        function_arn=function_arn,
        description=catalog.get("description"),
        tags=dict(config.get("tags") or {}),
    )
    graph.add_dependency(resource, application)
    graph.require_order(resource, application)
    return resource


def build_graph(config: dict) -> ResourceGraph:
    """Declare every resource of the configured variant and validate the graph."""
    variant = config.get("variant", "catalog")
    if variant not in VARIANTS:
        raise ConfigurationError(f"Unknown variant {variant!r}, expected one of {', '.join(VARIANTS)}")

    imports = config.get("imports") or {}
    missing = [key for key in REQUIRED_IMPORTS if not imports.get(key)]
    if missing:
        raise ConfigurationError(f"Missing import names: {', '.join(missing)}")

    connector = config["connector"]
    subnet_index = connector.get("subnetIndex", 0)
    if isinstance(subnet_index, bool) or not isinstance(subnet_index, int):
        raise ConfigurationError(f"subnetIndex must be an integer, got {subnet_index!r}")
    if subnet_index < 0:
        raise IndexError(f"subnetIndex must not be negative, got {subnet_index}")

    graph = ResourceGraph(stack_name(config))

    address = graph.get_parameter(imports["endpointAddress"])
    port = graph.get_parameter(imports["endpointPort"])
    security_group = graph.get_parameter(imports["securityGroupId"])
    subnet = graph.get_parameter(imports["privateSubnetIds"]).select(subnet_index)

    declare_access_role(graph, config)

    connection_string = compose_connection_string(
        address,
        port,
        connector["databaseName"],
        SecretPlaceholder(connector["secretName"]),
    )
    application = declare_application(graph, config, connection_string, security_group, subnet)

    if variant == "catalog":
        bucket = declare_spill_bucket(graph, config)
        graph.add_dependency(application, bucket)
        declare_named_query(graph, config)
        declare_data_catalog(graph, config, application)

    graph.validate()
    logger.info(
        "Built %s graph %s: %d resource(s), %d import(s)",
        variant,
        graph.name,
        len(graph),
        len(graph.imports),
    )
    return graph
