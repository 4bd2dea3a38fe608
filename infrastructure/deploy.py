"""Submit the connector stack straight to CloudFormation.

The stack is synthesized locally, then submitted exactly once through a
change set.  CloudFormation owns ordering, retries and rollback; this module
only waits for the status it reports.  A change set without changes is
discarded and reported as ``NO_CHANGES``.

Usage::

    STAGE=beta python -m infrastructure.deploy
"""
import json
import logging
import os
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Tuple

import aws_cdk as cdk
import boto3
from botocore.exceptions import ClientError, WaiterError

from .declarations import build_graph
from .errors import ConnectorInfraError, DeploymentError
from .imports import CloudFormationExports
from .settings import configure_logging, load_config, stack_name as stack_name_for
from .stacks import ConnectorStack

logger = logging.getLogger(__name__)

NO_CHANGES = "NO_CHANGES"

# SAM transform and the nested connector application need AUTO_EXPAND.
CAPABILITIES = ["CAPABILITY_IAM", "CAPABILITY_NAMED_IAM", "CAPABILITY_AUTO_EXPAND"]

EMPTY_CHANGE_SET_REASONS = (
    "didn't contain changes",
    "No updates are to be performed",
)


@dataclass
class DeploymentResult:
    stack_name: str
    status: str
    change_set_id: Optional[str] = None

    @property
    def changed(self) -> bool:
        return self.status != NO_CHANGES


def synthesize(config: dict, resolver=None) -> Tuple[str, dict]:
    """Render the stage's stack to a CloudFormation template.

    Uses ``BootstraplessSynthesizer``: no assets are published, so bucket
    auto-delete (a Lambda-backed custom resource) is switched off.
    """
    name = stack_name_for(config)
    graph = build_graph(config)

    app = cdk.App()
    ConnectorStack(
        app,
        name,
        config,
        graph=graph,
        resolver=resolver,
        auto_delete_objects=False,
        synthesizer=cdk.BootstraplessSynthesizer(),
        env=cdk.Environment(account=config.get("account"), region=config.get("region")),
    )
    assembly = app.synth()
    return name, assembly.get_stack_by_name(name).template


def stack_exists(client, stack_name: str) -> bool:
    try:
        stacks = client.describe_stacks(StackName=stack_name)["Stacks"]
    except ClientError as e:
        error = e.response["Error"]
        if error["Code"] == "ValidationError" and "does not exist" in error.get("Message", ""):
            return False
        raise
    # A stack left behind by an unexecuted CREATE change set still needs CREATE
    return bool(stacks) and stacks[0]["StackStatus"] != "REVIEW_IN_PROGRESS"


def submit(stack_name: str, template: dict, client=None, change_set_name: Optional[str] = None) -> DeploymentResult:
    """Create, wait for and execute a single change set for ``stack_name``."""
    client = client or boto3.client("cloudformation")
    change_set_type = "UPDATE" if stack_exists(client, stack_name) else "CREATE"
    change_set_name = change_set_name or f"{stack_name}-{datetime.now(timezone.utc):%Y%m%d%H%M%S}"

    logger.info("Creating %s change set %s for %s", change_set_type, change_set_name, stack_name)
    response = client.create_change_set(
        StackName=stack_name,
        ChangeSetName=change_set_name,
        ChangeSetType=change_set_type,
        TemplateBody=json.dumps(template),
        Capabilities=CAPABILITIES,
    )
    change_set_id = response["Id"]

    try:
        client.get_waiter("change_set_create_complete").wait(
            ChangeSetName=change_set_id,
            StackName=stack_name,
        )
    except WaiterError as e:
        last_response = e.last_response or {}
        reason = last_response.get("StatusReason", "")
        if any(marker in reason for marker in EMPTY_CHANGE_SET_REASONS):
            logger.info("No changes to apply to %s", stack_name)
            client.delete_change_set(ChangeSetName=change_set_id, StackName=stack_name)
            return DeploymentResult(stack_name, NO_CHANGES, change_set_id)
        raise DeploymentError(stack_name, last_response.get("Status", "FAILED"), reason or str(e)) from e

    logger.info("Executing change set %s", change_set_id)
    client.execute_change_set(ChangeSetName=change_set_id, StackName=stack_name)

    waiter_name = "stack_create_complete" if change_set_type == "CREATE" else "stack_update_complete"
    try:
        client.get_waiter(waiter_name).wait(
            StackName=stack_name,
            WaiterConfig={"Delay": 15, "MaxAttempts": 240},
        )
    except WaiterError as e:
        stack = ((e.last_response or {}).get("Stacks") or [{}])[0]
        raise DeploymentError(
            stack_name,
            stack.get("StackStatus", "UNKNOWN"),
            stack.get("StackStatusReason", str(e)),
        ) from e

    status = f"{change_set_type}_COMPLETE"
    logger.info("Stack %s reached %s", stack_name, status)
    return DeploymentResult(stack_name, status, change_set_id)


def main() -> int:
    stage = os.environ.get("STAGE", "dev")
    config = load_config(stage)
    configure_logging(config)

    client = boto3.client("cloudformation", region_name=config.get("region", "us-east-1"))
    try:
        name, template = synthesize(config, CloudFormationExports(client=client))
        result = submit(name, template, client=client)
    except (ConnectorInfraError, IndexError) as e:
        logger.error("Deployment of %s stage aborted: %s", stage, e)
        return 1

    logger.info("Deployment of %s finished with %s", result.stack_name, result.status)
    return 0


if __name__ == "__main__":
    sys.exit(main())
