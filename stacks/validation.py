"""
CDK validation aspects for pre-deployment checks.

These aspects run during `cdk synth` and add info annotations for
validation rules, catching issues before deployment.

Usage:
    from stacks.validation import add_validation_aspects
    add_validation_aspects(app)
"""

import aws_cdk as cdk
import jsii
from aws_cdk import aws_codedeploy as codedeploy
from aws_cdk import aws_ec2 as ec2
from aws_cdk import aws_iam as iam
from constructs import IConstruct


@jsii.implements(cdk.IAspect)
class DeploymentSafetyAspect:
    """
    Validates rollout requirements for deployed resources.

    Checks:
    - CodeDeploy server groups keep automatic rollback on failed deployments
    - EC2 instances are flagged as single points of failure
    """

    def __init__(self, enforce_rollback: bool = True, flag_single_instance: bool = True):
        self._enforce_rollback = enforce_rollback
        self._flag_single_instance = flag_single_instance

    def visit(self, node: IConstruct) -> None:
        if self._enforce_rollback and isinstance(node, codedeploy.ServerDeploymentGroup):
            cdk.Annotations.of(node).add_info(
                "Ensure auto_rollback failed_deployment=True so failed rollouts revert"
            )

        if self._flag_single_instance and isinstance(node, ec2.Instance):
            cdk.Annotations.of(node).add_info(
                "Single EC2 instance: deployments and outages are not highly available"
            )


@jsii.implements(cdk.IAspect)
class SecurityAspect:
    """
    Validates security requirements for deployed resources.

    Checks:
    - Security groups only open the application port
    - Roles scope inline permissions to specific resources
    """

    def visit(self, node: IConstruct) -> None:
        if isinstance(node, ec2.SecurityGroup):
            cdk.Annotations.of(node).add_info(
                "Ensure security group ingress is limited to the application port"
            )

        if isinstance(node, iam.Role):
            cdk.Annotations.of(node).add_info(
                "Ensure inline policy statements reference specific resource ARNs, not wildcards"
            )


def add_validation_aspects(
    scope: cdk.App,
    enforce_rollback: bool = True,
    flag_single_instance: bool = True,
    enable_security_checks: bool = True,
) -> None:
    """
    Add validation aspects to all stacks in the CDK app.

    Args:
        scope: The CDK App to add aspects to
        enforce_rollback: Whether to check CodeDeploy rollback configuration
        flag_single_instance: Whether to flag standalone EC2 instances
        enable_security_checks: Whether to run security-related validations
    """
    cdk.Aspects.of(scope).add(
        DeploymentSafetyAspect(
            enforce_rollback=enforce_rollback,
            flag_single_instance=flag_single_instance,
        )
    )

    if enable_security_checks:
        cdk.Aspects.of(scope).add(SecurityAspect())
