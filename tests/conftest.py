"""Shared fixtures for infrastructure tests."""
import pytest

from infrastructure.imports import StaticImports
from infrastructure.settings import load_config

EXPORTS = {
    "dbInstanceEndpointAddress-2": "db.example.internal",
    "dbInstanceEndpointPort-2": "5432",
    "dbSecurityGroupId-2": "sg-123",
    "AthenaVpcPrivateSubnetsOutput-2": "subnet-a,subnet-b",
}

EXPECTED_CONNECTION_STRING = (
    "postgres://jdbc:postgresql://db.example.internal:5432/my_initial_database"
    "?MetadataRetrievalMethod=ProxyAPI&${rds-db-secrets}"
)


@pytest.fixture
def exports():
    return dict(EXPORTS)


@pytest.fixture
def resolver(exports):
    return StaticImports(exports)


@pytest.fixture
def beta_config():
    """Beta stage: catalog variant with account and region pinned."""
    return load_config("beta")


@pytest.fixture
def connector_config(beta_config):
    """Beta settings rendered as the connector-only variant."""
    return {**beta_config, "variant": "connector"}


@pytest.fixture
def expected_connection_string():
    return EXPECTED_CONNECTION_STRING
