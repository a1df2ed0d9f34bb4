"""CDK Stacks for Zuino infrastructure."""

from .services_stack import ServicesStack

__all__ = [
    "ServicesStack",
]
