import logging
from typing import Dict, Optional

from aws_cdk import (
    Stack,
    aws_athena as athena,
    aws_iam as iam,
    aws_s3 as s3,
    aws_sam as sam,
    ArnFormat,
    CfnOutput,
    CfnTag,
    Fn,
    RemovalPolicy
)
from constructs import Construct

from ..declarations import (
    APPLICATION,
    APPLICATION_ID,
    BUCKET,
    BUCKET_ID,
    CATALOG_ID,
    DATA_CATALOG,
    NAMED_QUERY,
    ROLE,
    ROLE_ID,
    build_graph,
)
from ..errors import GraphError
from ..graph import Arn, ImportRef, Interpolation, ResourceGraph, SecretPlaceholder, Selection

logger = logging.getLogger(__name__)


class ConnectorStack(Stack):
    """Athena PostgreSQL connector stack rendered from a resource graph.

    Without a resolver, imports render as ``Fn::ImportValue`` tokens and are
    resolved by CloudFormation; with one they render as literal values.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        config: dict,
        graph: Optional[ResourceGraph] = None,
        resolver=None,
        auto_delete_objects: bool = True,
        **kwargs
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.config = config
        self.stage = config["environment"]
        self.graph = graph if graph is not None else build_graph(config)
        self.resolver = resolver
        self.auto_delete_objects = auto_delete_objects

        self.graph.validate()
        if resolver is not None:
            self.graph.resolve_imports(resolver)

        # Create resources in dependency order
        self.resource_constructs: Dict[str, Construct] = {}
        for logical_id in self.graph.creation_order():
            self.resource_constructs[logical_id] = self._create_resource(self.graph[logical_id])

        # Explicit ordering edges
        self._add_dependencies()

        # Create outputs
        self._create_outputs()

    def _create_resource(self, resource) -> Construct:
        factories = {
            ROLE: self._create_role,
            APPLICATION: self._create_application,
            BUCKET: self._create_spill_bucket,
            NAMED_QUERY: self._create_named_query,
            DATA_CATALOG: self._create_data_catalog,
        }
        if resource.kind not in factories:
            raise GraphError(f"No construct for resource kind {resource.kind}")
        return factories[resource.kind](resource)

    def _create_role(self, resource) -> iam.Role:
        """Create the role assumed by the connector function."""
        role = iam.Role(
            self,
            resource.logical_id,
            assumed_by=iam.ServicePrincipal(resource["principal"]),
            description=resource.get("description"),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name(name)
                for name in resource["managed_policies"]
            ]
        )

        for statement in resource["statements"]:
            role.add_to_policy(
                iam.PolicyStatement(
                    effect=iam.Effect.ALLOW,
                    actions=statement["actions"],
                    resources=self._render(statement["resources"])
                )
            )

        return role

    def _create_application(self, resource) -> sam.CfnApplication:
        """Create the connector from the Serverless Application Repository."""
        return sam.CfnApplication(
            self,
            resource.logical_id,
            location=sam.CfnApplication.ApplicationLocationProperty(
                application_id=resource["application_id"],
                semantic_version=resource["semantic_version"]
            ),
            parameters=self._render(resource["parameters"]),
            tags=resource.get("tags") or None
        )

    def _create_spill_bucket(self, resource) -> s3.Bucket:
        """Create the bucket the connector spills large results to."""
        destroy = resource["removal_policy"] == "destroy"
        auto_delete = resource["auto_delete_objects"] and self.auto_delete_objects
        if resource["auto_delete_objects"] and not auto_delete:
            logger.warning(
                "Auto-delete of %s is disabled; objects must be emptied before stack deletion",
                resource["bucket_name"]
            )

        return s3.Bucket(
            self,
            resource.logical_id,
            bucket_name=resource["bucket_name"],
            versioned=resource["versioned"],
            encryption=s3.BucketEncryption.S3_MANAGED,
            block_public_access=s3.BlockPublicAccess.BLOCK_ALL,
            removal_policy=RemovalPolicy.DESTROY if destroy else RemovalPolicy.RETAIN,
            auto_delete_objects=auto_delete
        )

    def _create_named_query(self, resource) -> athena.CfnNamedQuery:
        return athena.CfnNamedQuery(
            self,
            resource.logical_id,
            name=resource["name"],
            database=resource["database"],
            query_string=resource["query_string"],
            work_group=resource["work_group"],
            description=resource.get("description")
        )

    def _create_data_catalog(self, resource) -> athena.CfnDataCatalog:
        tags = resource.get("tags") or {}
        return athena.CfnDataCatalog(
            self,
            resource.logical_id,
            name=resource["name"],
            type=resource["catalog_type"],
            description=resource.get("description"),
            parameters={"function": self._render(resource["function_arn"])},
            tags=[CfnTag(key=key, value=value) for key, value in tags.items()] or None
        )

    def _add_dependencies(self):
        """Mirror every graph edge as a construct dependency."""
        for resource in self.graph:
            for dependency in self.graph.dependencies_of(resource.logical_id):
                self.resource_constructs[resource.logical_id].node.add_dependency(self.resource_constructs[dependency])

    def _render(self, value):
        """Turn a graph value into a CDK value or token."""
        if isinstance(value, (ImportRef, Selection)) and self.resolver is not None:
            return value.resolve(self.resolver)
        if isinstance(value, ImportRef):
            return Fn.import_value(value.export_name)
        if isinstance(value, Selection):
            return Fn.select(value.index, Fn.split(value.delimiter, self._render(value.source)))
        if isinstance(value, SecretPlaceholder):
            return str(value)
        if isinstance(value, Interpolation):
            return "".join(str(self._render(part)) for part in value.parts)
        if isinstance(value, Arn):
            if value.is_concrete:
                return value.resolve()
            return self.format_arn(
                service=value.service,
                resource=value.resource_type,
                resource_name=value.resource_name,
                partition=value.partition,
                arn_format=ArnFormat.COLON_RESOURCE_NAME
            )
        if isinstance(value, dict):
            return {key: self._render(item) for key, item in value.items()}
        if isinstance(value, (list, tuple)):
            return [self._render(item) for item in value]
        return value

    def _create_outputs(self):
        """Create stack outputs."""
        CfnOutput(
            self,
            "ConnectorRoleArn",
            value=self.resource_constructs[ROLE_ID].role_arn,
            description=f"Connector role ARN for {self.stage} environment"
        )

        CfnOutput(
            self,
            "ConnectorFunctionName",
            value=self.graph[APPLICATION_ID]["parameters"]["LambdaFunctionName"],
            description=f"Connector Lambda function name for {self.stage} environment"
        )

        if BUCKET_ID in self.graph:
            CfnOutput(
                self,
                "SpillBucketName",
                value=self.resource_constructs[BUCKET_ID].bucket_name,
                description=f"Spill bucket name for {self.stage} environment"
            )

        if CATALOG_ID in self.graph:
            CfnOutput(
                self,
                "DataCatalogName",
                value=self.graph[CATALOG_ID]["name"],
                description=f"Athena data catalog name for {self.stage} environment"
            )
