#!/usr/bin/env python3
import os

import aws_cdk as cdk

from infrastructure.imports import CloudFormationExports
from infrastructure.settings import configure_logging, load_config, stack_name
from infrastructure.stacks import ConnectorStack

app = cdk.App()

# Get stage from context (defaults to 'dev' for local development)
stage = app.node.try_get_context("stage") or "dev"

# Load configuration for the stage
config = load_config(stage)
configure_logging(config)

# Resolve exports at synth time when the stage asks for it
resolver = None
if config.get("resolveImports"):
    resolver = CloudFormationExports(region=config.get("region", "us-east-1"))

ConnectorStack(
    app,
    stack_name(config),
    config,
    resolver=resolver,
    env=cdk.Environment(
        account=config.get("account") or os.environ.get("CDK_DEFAULT_ACCOUNT"),
        region=config.get("region", "us-east-1"),
    ),
)

app.synth()
