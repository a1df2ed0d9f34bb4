"""
Services stack - EC2 backend, HTTP API Gateway, and CI/CD pipeline.

This stack deploys the receipt API backend with:
- A single EC2 instance in the default VPC, managed by SSM and CodeDeploy
- HTTP API Gateway proxying every route to the instance
- API key and usage plan for the mobile app
- CodePipeline: GitHub source -> CodeBuild -> CodeDeploy (one instance at a time)

The instance's public DNS name is only known after CloudFormation creates it.
The gateway integration URL embeds it as a token that is resolved at deploy
time, never during synthesis.
"""

from pathlib import Path

from aws_cdk import (
    CfnOutput,
    Stack,
    Tags,
)
from aws_cdk import (
    aws_apigateway as apigateway,
)
from aws_cdk import (
    aws_apigatewayv2 as apigwv2,
)
from aws_cdk import (
    aws_apigatewayv2_integrations as apigwv2_integrations,
)
from aws_cdk import (
    aws_codebuild as codebuild,
)
from aws_cdk import (
    aws_codedeploy as codedeploy,
)
from aws_cdk import (
    aws_codepipeline as codepipeline,
)
from aws_cdk import (
    aws_codepipeline_actions as codepipeline_actions,
)
from aws_cdk import (
    aws_ec2 as ec2,
)
from aws_cdk import (
    aws_iam as iam,
)
from constructs import Construct

from config.exceptions import StartupScriptError
from config.logging import get_logger

logger = get_logger(__name__)

# Startup script executed by cloud-init on first boot
DEFAULT_USER_DATA_PATH = Path(__file__).parent.parent / "scripts" / "ec2-init.sh"

DEFAULT_APP_PORT = 3000
DEFAULT_APP_TAG_VALUE = "MyBackend"
DEFAULT_GEMINI_API_KEY_PARAMETER = "/zuino/api/gemini-api-key"
DEFAULT_GITHUB_CONNECTION_ARN = (
    "arn:aws:codeconnections:us-east-1:314678225910:"
    "connection/48e26a39-dd56-4de1-8539-d6dc839972a2"
)
DEFAULT_GITHUB_OWNER = "paulo-eduardo"
DEFAULT_GITHUB_REPO = "zuino"
DEFAULT_GITHUB_BRANCH = "main"
DEFAULT_BUILDSPEC_PATH = "services/receipt-api/buildspec.yml"

# Tag key shared by the instance and the CodeDeploy tag filter
APP_TAG_KEY = "App"


def _read_user_data(path: Path) -> ec2.UserData:
    """
    Build Linux user data from the startup script at ``path``.

    The script is appended verbatim after the shebang, no templating.

    Raises:
        StartupScriptError: If the file is missing or unreadable.
    """
    try:
        with open(path, encoding="utf-8") as script_file:
            script = script_file.read()
    except OSError as exc:
        raise StartupScriptError(str(path)) from exc

    logger.info("startup_script_loaded", path=str(path), size=len(script))

    user_data = ec2.UserData.for_linux(shebang="#!/bin/bash")
    user_data.add_commands(script)
    return user_data


def _parameter_read_statement(stack: Stack, parameter_name: str) -> iam.PolicyStatement:
    """
    Allow ssm:GetParameter on exactly one SSM parameter.

    Raises:
        ValueError: If the parameter name contains a wildcard.
    """
    if "*" in parameter_name:
        raise ValueError(f"SSM parameter path must not contain wildcards: {parameter_name}")

    return iam.PolicyStatement(
        effect=iam.Effect.ALLOW,
        actions=["ssm:GetParameter"],
        resources=[
            # Hierarchical names already start with "/", which the ARN separator supplies
            stack.format_arn(
                service="ssm",
                resource="parameter",
                resource_name=parameter_name.lstrip("/"),
            ),
        ],
    )


class ServicesStack(Stack):
    """
    Creates the receipt API backend and its delivery pipeline.

    Features:
    - IAM role for the instance (SSM + S3 read + one SSM parameter)
    - Security group opening only the application port
    - EC2 instance bootstrapped from scripts/ec2-init.sh
    - HTTP API with CORS and a $default route to the instance
    - API key attached to a usage plan (no throttling or quota)
    - CodeBuild project, CodeDeploy application/group, and a 3-stage pipeline
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        user_data_path: Path = DEFAULT_USER_DATA_PATH,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        # Tunables from CDK context (allows customization without code changes)
        app_port = int(self.node.try_get_context("app_port") or DEFAULT_APP_PORT)
        app_tag_value = self.node.try_get_context("app_tag_value") or DEFAULT_APP_TAG_VALUE
        gemini_api_key_parameter = (
            self.node.try_get_context("gemini_api_key_parameter")
            or DEFAULT_GEMINI_API_KEY_PARAMETER
        )
        github_connection_arn = (
            self.node.try_get_context("github_connection_arn") or DEFAULT_GITHUB_CONNECTION_ARN
        )
        github_owner = self.node.try_get_context("github_owner") or DEFAULT_GITHUB_OWNER
        github_repo = self.node.try_get_context("github_repo") or DEFAULT_GITHUB_REPO
        github_branch = self.node.try_get_context("github_branch") or DEFAULT_GITHUB_BRANCH
        buildspec_path = self.node.try_get_context("buildspec_path") or DEFAULT_BUILDSPEC_PATH

        # =================================================================
        # Instance Role
        # =================================================================

        self.instance_role = iam.Role(
            self,
            "EC2InstanceRole",
            assumed_by=iam.ServicePrincipal("ec2.amazonaws.com"),
            description="Role for EC2 instance managed by CodeDeploy and SSM",
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name("AmazonSSMManagedInstanceCore"),
                # CodeDeploy agent pulls revisions from the pipeline artifact bucket
                iam.ManagedPolicy.from_aws_managed_policy_name("AmazonS3ReadOnlyAccess"),
            ],
        )

        self.instance_role.add_to_policy(
            _parameter_read_statement(self, gemini_api_key_parameter)
        )

        # =================================================================
        # Network
        # =================================================================

        self.vpc = ec2.Vpc.from_lookup(self, "DefaultVPC", is_default=True)

        self.security_group = ec2.SecurityGroup(
            self,
            "EC2InstanceSecurityGroup",
            vpc=self.vpc,
            description=f"Allow HTTP traffic on port {app_port} from anywhere",
            allow_all_outbound=True,
        )

        self.security_group.add_ingress_rule(
            peer=ec2.Peer.any_ipv4(),
            connection=ec2.Port.tcp(app_port),
            description=f"Allow HTTP traffic on port {app_port}",
        )

        # =================================================================
        # EC2 Instance
        # =================================================================

        user_data = _read_user_data(user_data_path)

        self.instance = ec2.Instance(
            self,
            "AppEC2Instance",
            vpc=self.vpc,
            instance_type=ec2.InstanceType.of(ec2.InstanceClass.T3, ec2.InstanceSize.MICRO),
            machine_image=ec2.MachineImage.latest_amazon_linux2023(),
            security_group=self.security_group,
            role=self.instance_role,
            user_data=user_data,
            vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PUBLIC),
            associate_public_ip_address=True,
        )

        # CodeDeploy targets the instance through this tag
        Tags.of(self.instance).add(APP_TAG_KEY, app_tag_value)

        # =================================================================
        # HTTP API Gateway
        # =================================================================

        self.http_api = apigwv2.HttpApi(
            self,
            "NewHttpApi",
            api_name="ZuinoServicesApi",
            description="HTTP API Gateway for Zuino Backend Services",
            cors_preflight=apigwv2.CorsPreflightOptions(
                allow_headers=["*"],
                allow_methods=[apigwv2.CorsHttpMethod.POST],
                allow_origins=["*"],
            ),
        )

        # Deferred reference: resolved by CloudFormation once the instance exists
        instance_url = f"http://{self.instance.instance_public_dns_name}:{app_port}"

        ec2_integration = apigwv2_integrations.HttpUrlIntegration(
            "EC2Integration",
            instance_url,
            method=apigwv2.HttpMethod.ANY,
        )

        apigwv2.HttpRoute(
            self,
            "DefaultRoute",
            http_api=self.http_api,
            route_key=apigwv2.HttpRouteKey.DEFAULT,
            integration=ec2_integration,
        )

        # =================================================================
        # API Key & Usage Plan
        # =================================================================

        self.api_key = apigateway.ApiKey(
            self,
            "AppApiKey",
            api_key_name="zuino-mobile-app-key",
            description="API key for the Zuino mobile app",
            enabled=True,
        )

        # No throttle or quota: limits have not been decided yet
        self.usage_plan = apigateway.UsagePlan(
            self,
            "AppUsagePlan",
            name="ZuinoAppUsagePlan",
            description="Usage plan for the Zuino mobile app",
        )

        self.usage_plan.add_api_key(self.api_key)

        # =================================================================
        # Build & Deploy
        # =================================================================

        self.build_project = codebuild.PipelineProject(
            self,
            "AppCodeBuildProject",
            project_name="ZuinoReceiptApiBuild",
            build_spec=codebuild.BuildSpec.from_source_filename(buildspec_path),
            environment=codebuild.BuildEnvironment(
                build_image=codebuild.LinuxBuildImage.STANDARD_7_0,
                compute_type=codebuild.ComputeType.SMALL,
                privileged=False,
            ),
            cache=codebuild.Cache.local(
                codebuild.LocalCacheMode.SOURCE,
                codebuild.LocalCacheMode.CUSTOM,
            ),
        )

        self.deployment_application = codedeploy.ServerApplication(
            self,
            "CodeDeployApplication",
            application_name="ZuinoReceiptApiService-App",
        )

        self.deployment_group = codedeploy.ServerDeploymentGroup(
            self,
            "CodeDeployDeploymentGroup",
            application=self.deployment_application,
            deployment_group_name="ZuinoReceiptApiService-DG",
            ec2_instance_tags=codedeploy.InstanceTagSet({APP_TAG_KEY: [app_tag_value]}),
            install_agent=True,
            deployment_config=codedeploy.ServerDeploymentConfig.ONE_AT_A_TIME,
            auto_rollback=codedeploy.AutoRollbackConfig(failed_deployment=True),
        )

        # =================================================================
        # CI/CD Pipeline
        # =================================================================

        self.source_output = codepipeline.Artifact("SourceOutput")
        self.build_output = codepipeline.Artifact("BuildOutput")

        self.pipeline = codepipeline.Pipeline(
            self,
            "CiCdPipeline",
            pipeline_name="ZuinoReceiptApiPipeline",
            cross_account_keys=False,
        )

        # Source: pull the repository through the CodeStar connection
        self.pipeline.add_stage(
            stage_name="Source",
            actions=[
                codepipeline_actions.CodeStarConnectionsSourceAction(
                    action_name="GitHub_Source",
                    owner=github_owner,
                    repo=github_repo,
                    branch=github_branch,
                    connection_arn=github_connection_arn,
                    output=self.source_output,
                ),
            ],
        )

        # Build: compile and package with CodeBuild
        self.pipeline.add_stage(
            stage_name="Build",
            actions=[
                codepipeline_actions.CodeBuildAction(
                    action_name="CodeBuild",
                    project=self.build_project,
                    input=self.source_output,
                    outputs=[self.build_output],
                ),
            ],
        )

        # Deploy: roll the build artifact onto the tagged instance
        self.pipeline.add_stage(
            stage_name="Deploy",
            actions=[
                codepipeline_actions.CodeDeployServerDeployAction(
                    action_name="CodeDeploy_To_EC2",
                    deployment_group=self.deployment_group,
                    input=self.build_output,
                ),
            ],
        )

        # =================================================================
        # Outputs
        # =================================================================

        CfnOutput(
            self,
            "InstancePublicIpOutput",
            value=self.instance.instance_public_ip,
            description="Public IP address of the EC2 instance",
        )

        CfnOutput(
            self,
            "ApiGatewayUrlOutput",
            value=self.http_api.api_endpoint,
            description="Endpoint URL for the HTTP API Gateway",
        )

        CfnOutput(
            self,
            "ApiKeyIdOutput",
            value=self.api_key.key_id,
            description="ID of the generated API key (read the secret value from the console)",
        )

        logger.info("stack_declared", stack_name=construct_id, app_port=app_port)
