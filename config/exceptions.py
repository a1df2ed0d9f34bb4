"""Configuration exceptions raised before the resource graph is synthesized."""


class InfrastructureConfigError(Exception):
    """Base exception for unrecoverable deployment configuration errors."""

    pass


class ConfigurationError(InfrastructureConfigError):
    """Raised when the target account or region is not configured."""

    pass


class StartupScriptError(InfrastructureConfigError):
    """Raised when the EC2 user data script cannot be read."""

    def __init__(self, path: str):
        super().__init__(f"Failed to read UserData script file: {path}")
        self.path = path
