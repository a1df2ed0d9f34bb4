"""
Structured logging configuration using structlog.

Synthesis output on stdout is reserved for the CDK CLI, so log records go to
stderr.

Usage:
    from config.logging import get_logger

    logger = get_logger(__name__)
    logger.info("stack_declared", stack_name="ZuinoServicesStack")
"""

import logging
import sys
from typing import Any

import aws_cdk as cdk
import structlog
from structlog.types import EventDict, Processor


def _stringify_environment(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """
    Render a bound cdk.Environment as "account/region".

    jsii proxies do not serialize to JSON on their own.
    """
    env = event_dict.get("env")
    if isinstance(env, cdk.Environment):
        event_dict["env"] = f"{env.account}/{env.region}"
    return event_dict


def configure_logging(json_format: bool = False, log_level: str = "INFO") -> None:
    """
    Configure structlog for the CDK app.

    Args:
        json_format: If True, output JSON (CI). If False, pretty console output.
        log_level: Minimum log level to output.
    """
    log_level_int = getattr(logging, log_level.upper(), logging.INFO)

    pre_chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        _stringify_environment,
    ]

    if json_format:
        renderer: Processor = structlog.processors.JSONRenderer()
        pre_chain.append(structlog.processors.format_exc_info)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            *pre_chain,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level_int)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name, typically __name__ of the calling module.
    """
    return structlog.get_logger(name)


def bind_contextvars(**kwargs: Any) -> None:
    """Bind key-value pairs to every subsequent log line of this synth run."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_contextvars() -> None:
    """Clear all bound context variables."""
    structlog.contextvars.clear_contextvars()
