#!/usr/bin/env python3
"""
AWS CDK app entry point for Zuino infrastructure.
"""

import aws_cdk as cdk

from config.exceptions import ConfigurationError, StartupScriptError
from config.logging import bind_contextvars, clear_contextvars, configure_logging, get_logger
from config.settings import load_settings
from stacks.services_stack import ServicesStack
from stacks.validation import add_validation_aspects

STACK_NAME = "ZuinoServicesStack"

logger = get_logger(__name__)


def main() -> None:
    """
    Declare the services stack and synthesize it.

    Any configuration error aborts before the cloud assembly is written.
    """
    try:
        settings = load_settings()
    except ConfigurationError as exc:
        configure_logging()
        logger.error("configuration_error", error=str(exc))
        raise SystemExit(str(exc)) from exc

    configure_logging(json_format=settings.LOG_JSON, log_level=settings.LOG_LEVEL)

    env = settings.environment()
    bind_contextvars(stack_name=STACK_NAME, env=env)
    try:
        logger.info("settings_loaded")

        app = cdk.App()

        try:
            ServicesStack(app, STACK_NAME, env=env)
        except StartupScriptError as exc:
            logger.error("configuration_error", error=str(exc), path=exc.path)
            raise SystemExit(str(exc)) from exc

        add_validation_aspects(app)

        app.synth()
        logger.info("synth_completed", outdir=app.outdir)
    finally:
        clear_contextvars()


if __name__ == "__main__":
    main()
