"""
Deployment environment settings.

The target account and region come from the variables the CDK CLI exports
for the active AWS profile (CDK_DEFAULT_ACCOUNT / CDK_DEFAULT_REGION).
Both are required: there is no fallback region.
"""

import aws_cdk as cdk
from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings

from config.exceptions import ConfigurationError

MISSING_ENVIRONMENT_MESSAGE = (
    "CDK_DEFAULT_ACCOUNT and CDK_DEFAULT_REGION environment variables are not set. "
    "Configure your AWS profile or export AWS_PROFILE."
)


class DeploymentSettings(BaseSettings):
    """Environment-based configuration using pydantic-settings."""

    CDK_DEFAULT_ACCOUNT: str = Field(min_length=1)
    CDK_DEFAULT_REGION: str = Field(min_length=1)

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    model_config = {"env_file": ".env", "extra": "ignore"}

    def environment(self) -> cdk.Environment:
        """Build the CDK environment the stack is pinned to."""
        return cdk.Environment(
            account=self.CDK_DEFAULT_ACCOUNT,
            region=self.CDK_DEFAULT_REGION,
        )


def load_settings(**overrides) -> DeploymentSettings:
    """
    Load deployment settings from the environment.

    Keyword arguments are passed straight to DeploymentSettings, so tests can
    disable the .env file with ``_env_file=None``.

    Raises:
        ConfigurationError: If the account or region is missing or empty.
    """
    try:
        return DeploymentSettings(**overrides)
    except ValidationError as exc:
        raise ConfigurationError(MISSING_ENVIRONMENT_MESSAGE) from exc
