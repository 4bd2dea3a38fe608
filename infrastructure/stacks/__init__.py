"""CDK Stack definitions for the Athena RDS connector."""

from .connector_stack import ConnectorStack

__all__ = [
    "ConnectorStack"
]
