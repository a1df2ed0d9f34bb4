"""
Shared pytest fixtures for the infrastructure tests.

Stacks are built against a fixed account/region so that the default VPC
lookup resolves to CDK's dummy VPC and templates are reproducible.

Example usage:

    def test_something(template):
        template.resource_count_is("AWS::EC2::Instance", 1)

    def test_with_context(build_stack):
        stack = build_stack(context={"app_port": "8080"})
"""

from collections.abc import Callable
from pathlib import Path
from typing import Any

import aws_cdk as cdk
import pytest
from aws_cdk.assertions import Template

from stacks.services_stack import ServicesStack

TEST_ACCOUNT = "123456789012"
TEST_REGION = "us-east-1"
USER_DATA_SCRIPT = "echo bootstrap\n"


@pytest.fixture
def test_env() -> cdk.Environment:
    """The environment every test stack is pinned to."""
    return cdk.Environment(account=TEST_ACCOUNT, region=TEST_REGION)


@pytest.fixture
def user_data_script(tmp_path: Path) -> Path:
    """A throwaway startup script."""
    path = tmp_path / "ec2-init.sh"
    path.write_text(USER_DATA_SCRIPT, encoding="utf-8")
    return path


@pytest.fixture
def build_stack(
    test_env: cdk.Environment, user_data_script: Path
) -> Callable[..., ServicesStack]:
    """
    Factory building a ServicesStack in a fresh App.

    Accepts optional CDK context and any ServicesStack keyword argument.
    """

    def _build(context: dict[str, Any] | None = None, **kwargs: Any) -> ServicesStack:
        kwargs.setdefault("user_data_path", user_data_script)
        app = cdk.App(context=context)
        return ServicesStack(app, "TestServicesStack", env=test_env, **kwargs)

    return _build


@pytest.fixture
def stack(build_stack: Callable[..., ServicesStack]) -> ServicesStack:
    """A ServicesStack with default context."""
    return build_stack()


@pytest.fixture
def template(stack: ServicesStack) -> Template:
    """Synthesized CloudFormation template of the default stack."""
    return Template.from_stack(stack)


@pytest.fixture
def deployment_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Export the variables the CDK CLI sets for the active profile."""
    monkeypatch.setenv("CDK_DEFAULT_ACCOUNT", TEST_ACCOUNT)
    monkeypatch.setenv("CDK_DEFAULT_REGION", TEST_REGION)
