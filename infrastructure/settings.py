"""Stage configuration and logging setup."""
import json
import logging
import os
from pathlib import Path

CONFIG_DIR = Path(__file__).parent / "config"

VARIANTS = ("connector", "catalog")


def default_config(stage: str) -> dict:
    """Configuration used when no file exists for the stage."""
    return {
        "environment": stage,
        "projectName": "athena-rds-connector",
        "stackNamePrefix": f"AthenaRdsConnector-{stage.title()}",
        "region": "us-east-1",
        "partition": "aws",
        "variant": "catalog",
        "resolveImports": False,
        "logLevel": "INFO",
        "imports": {
            "endpointAddress": "dbInstanceEndpointAddress-2",
            "endpointPort": "dbInstanceEndpointPort-2",
            "securityGroupId": "dbSecurityGroupId-2",
            "privateSubnetIds": "AthenaVpcPrivateSubnetsOutput-2",
        },
        "connector": {
            "applicationId": "arn:aws:serverlessrepo:us-east-1:292517598671:applications/AthenaPostgreSQLConnector",
            "semanticVersion": "2023.35.2",
            "functionName": "athenardsconnect",
            "secretNamePrefix": "DBSecretD58955BC-Aarz2ser4gmV",
            "secretName": "rds-db-secrets",
            "databaseName": "my_initial_database",
            "subnetIndex": 0,
            "extraParameters": {},
        },
        "spillBucket": {
            "name": "my-spill-bucket-23756",
            "versioned": False,
            "autoDeleteObjects": True,
            "removalPolicy": "destroy",
        },
        "namedQuery": {
            "name": "SampleConnectorQuery",
            "database": "my_initial_database",
            "workGroup": "primary",
            "queryString": 'SELECT * FROM "postgres_catalog"."public"."my_table" LIMIT 10',
            "description": "Sample federated query through the PostgreSQL connector",
        },
        "catalog": {
            "name": "postgres_catalog",
            "description": "PostgreSQL data source for federated queries",
        },
        "tags": {},
    }


def load_config(stage: str) -> dict:
    """Load configuration for the given stage.

    Sections present in ``config/<stage>.json`` override the defaults key by key.
    """
    config = default_config(stage)
    config_file = CONFIG_DIR / f"{stage}.json"
    try:
        with open(config_file, "r") as f:
            overrides = json.load(f)
    except FileNotFoundError:
        # Default config if file not found
        return config

    for key, value in overrides.items():
        if isinstance(config.get(key), dict) and isinstance(value, dict):
            config[key] = {**config[key], **value}
        else:
            config[key] = value
    return config


def stack_name(config: dict) -> str:
    return f"{config['stackNamePrefix']}-ConnectorStack"


def configure_logging(config: dict) -> None:
    """Configure root logging; ``LOG_LEVEL`` wins over the stage's ``logLevel``."""
    level = os.environ.get("LOG_LEVEL", config.get("logLevel", "INFO"))
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
