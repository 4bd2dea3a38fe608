"""Unit tests for direct CloudFormation submission."""
from datetime import datetime, timezone

import boto3
import pytest
from botocore.exceptions import ClientError
from botocore.stub import ANY, Stubber

from infrastructure.deploy import CAPABILITIES, NO_CHANGES, stack_exists, submit, synthesize
from infrastructure.errors import DeploymentError, InvalidFunctionNameError

STACK_NAME = "AthenaRdsConnector-Beta-ConnectorStack"
CHANGE_SET_NAME = "AthenaRdsConnector-Beta-ConnectorStack-test"
CHANGE_SET_ID = f"arn:aws:cloudformation:us-east-1:123456789012:changeSet/{CHANGE_SET_NAME}/abc"
STACK_ID = f"arn:aws:cloudformation:us-east-1:123456789012:stack/{STACK_NAME}/def"
TEMPLATE = {"Resources": {}}


def stack_description(status: str, reason: str = None) -> dict:
    stack = {
        "StackName": STACK_NAME,
        "StackId": STACK_ID,
        "CreationTime": datetime(2024, 1, 1, tzinfo=timezone.utc),
        "StackStatus": status,
    }
    if reason:
        stack["StackStatusReason"] = reason
    return {"Stacks": [stack]}


@pytest.fixture
def cloudformation():
    client = boto3.client("cloudformation", region_name="us-east-1")
    with Stubber(client) as stubber:
        yield client, stubber
        stubber.assert_no_pending_responses()


def stub_missing_stack(stubber):
    stubber.add_client_error(
        "describe_stacks",
        service_error_code="ValidationError",
        service_message=f"Stack with id {STACK_NAME} does not exist",
        http_status_code=400,
        expected_params={"StackName": STACK_NAME},
    )


def stub_create_change_set(stubber, change_set_type: str):
    stubber.add_response(
        "create_change_set",
        {"Id": CHANGE_SET_ID, "StackId": STACK_ID},
        {
            "StackName": STACK_NAME,
            "ChangeSetName": CHANGE_SET_NAME,
            "ChangeSetType": change_set_type,
            "TemplateBody": ANY,
            "Capabilities": CAPABILITIES,
        },
    )


class TestStackExists:
    """Test the stack existence check."""

    def test_missing_stack(self, cloudformation):
        client, stubber = cloudformation
        stub_missing_stack(stubber)

        assert stack_exists(client, STACK_NAME) is False

    def test_existing_stack(self, cloudformation):
        client, stubber = cloudformation
        stubber.add_response("describe_stacks", stack_description("UPDATE_COMPLETE"))

        assert stack_exists(client, STACK_NAME) is True

    def test_review_in_progress_counts_as_missing(self, cloudformation):
        client, stubber = cloudformation
        stubber.add_response("describe_stacks", stack_description("REVIEW_IN_PROGRESS"))

        assert stack_exists(client, STACK_NAME) is False

    def test_other_errors_propagate(self, cloudformation):
        client, stubber = cloudformation
        stubber.add_client_error("describe_stacks", service_error_code="AccessDenied", http_status_code=403)

        with pytest.raises(ClientError) as excinfo:
            stack_exists(client, STACK_NAME)
        assert "AccessDenied" in str(excinfo.value)


class TestSubmit:
    """Test change set submission."""

    def test_create(self, cloudformation):
        client, stubber = cloudformation
        stub_missing_stack(stubber)
        stub_create_change_set(stubber, "CREATE")
        stubber.add_response("describe_change_set", {"Status": "CREATE_COMPLETE"})
        stubber.add_response(
            "execute_change_set",
            {},
            {"ChangeSetName": CHANGE_SET_ID, "StackName": STACK_NAME},
        )
        stubber.add_response("describe_stacks", stack_description("CREATE_COMPLETE"))

        result = submit(STACK_NAME, TEMPLATE, client=client, change_set_name=CHANGE_SET_NAME)

        assert result.status == "CREATE_COMPLETE"
        assert result.changed
        assert result.change_set_id == CHANGE_SET_ID

    def test_update(self, cloudformation):
        client, stubber = cloudformation
        stubber.add_response("describe_stacks", stack_description("CREATE_COMPLETE"))
        stub_create_change_set(stubber, "UPDATE")
        stubber.add_response("describe_change_set", {"Status": "CREATE_COMPLETE"})
        stubber.add_response("execute_change_set", {})
        stubber.add_response("describe_stacks", stack_description("UPDATE_COMPLETE"))

        result = submit(STACK_NAME, TEMPLATE, client=client, change_set_name=CHANGE_SET_NAME)

        assert result.status == "UPDATE_COMPLETE"

    def test_unchanged_template_is_a_no_op(self, cloudformation):
        """Re-submitting the same declaration applies nothing."""
        client, stubber = cloudformation
        stubber.add_response("describe_stacks", stack_description("UPDATE_COMPLETE"))
        stub_create_change_set(stubber, "UPDATE")
        stubber.add_response(
            "describe_change_set",
            {
                "Status": "FAILED",
                "StatusReason": "The submitted information didn't contain changes. "
                                "Submit different information to create a change set.",
            },
        )
        stubber.add_response(
            "delete_change_set",
            {},
            {"ChangeSetName": CHANGE_SET_ID, "StackName": STACK_NAME},
        )

        result = submit(STACK_NAME, TEMPLATE, client=client, change_set_name=CHANGE_SET_NAME)

        assert result.status == NO_CHANGES
        assert not result.changed

    def test_failed_change_set(self, cloudformation):
        client, stubber = cloudformation
        stub_missing_stack(stubber)
        stub_create_change_set(stubber, "CREATE")
        stubber.add_response(
            "describe_change_set",
            {"Status": "FAILED", "StatusReason": "Requires capabilities : [CAPABILITY_AUTO_EXPAND]"},
        )

        with pytest.raises(DeploymentError) as excinfo:
            submit(STACK_NAME, TEMPLATE, client=client, change_set_name=CHANGE_SET_NAME)
        assert excinfo.value.status == "FAILED"
        assert "CAPABILITY_AUTO_EXPAND" in excinfo.value.reason

    def test_rollback_is_reported(self, cloudformation):
        """A failed apply surfaces the status CloudFormation reports."""
        client, stubber = cloudformation
        stubber.add_response("describe_stacks", stack_description("UPDATE_COMPLETE"))
        stub_create_change_set(stubber, "UPDATE")
        stubber.add_response("describe_change_set", {"Status": "CREATE_COMPLETE"})
        stubber.add_response("execute_change_set", {})
        stubber.add_response(
            "describe_stacks",
            stack_description("UPDATE_ROLLBACK_COMPLETE", "Resource handler returned message: AccessDenied"),
        )

        with pytest.raises(DeploymentError) as excinfo:
            submit(STACK_NAME, TEMPLATE, client=client, change_set_name=CHANGE_SET_NAME)
        assert excinfo.value.status == "UPDATE_ROLLBACK_COMPLETE"
        assert excinfo.value.stack_name == STACK_NAME


class TestSynthesize:
    """Test template synthesis for direct submission."""

    def test_template(self, beta_config, resolver, expected_connection_string):
        name, template = synthesize(beta_config, resolver)

        assert name == STACK_NAME
        assert template["Transform"] == "AWS::Serverless-2016-10-31"

        resources = template["Resources"]
        application = resources["PostgresConnector"]
        assert application["Properties"]["Parameters"]["DefaultConnectionString"] == expected_connection_string
        assert resources["PostgresCatalog"]["DependsOn"] == ["PostgresConnector"]

    def test_no_assets_for_direct_submission(self, beta_config, resolver):
        """Bucket auto-delete needs published assets, so it is left out."""
        _, template = synthesize(beta_config, resolver)

        types = {resource["Type"] for resource in template["Resources"].values()}
        assert "Custom::S3AutoDeleteObjects" not in types
        assert "AWS::S3::Bucket" in types

    def test_invalid_function_name_aborts_before_submission(self, beta_config, resolver):
        beta_config["connector"]["functionName"] = "Athena-Connect"
        with pytest.raises(InvalidFunctionNameError):
            synthesize(beta_config, resolver)
