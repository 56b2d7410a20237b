"""Error taxonomy for fleetssh.

Library code raises these; only the CLI turns them into messages and exit
codes.
"""


class FleetSSHError(Exception):
    """Base class for all fleetssh errors."""

    exit_code = 1


class ConfigurationError(FleetSSHError):
    """Target resolution produced no usable targets."""

    exit_code = 10


class SettingsError(FleetSSHError):
    """Invalid settings, config file, gateway specifier or known_hosts setup."""


class ConnectionError(FleetSSHError):
    """Failed to establish an SSH connection to a host."""

    def __init__(self, host_name: str, original_error: Exception):
        """Initialize connection error.

        Args:
            host_name: Target the connection was for
            original_error: Exception raised by the transport
        """
        self.host_name = host_name
        self.original_error = original_error
        super().__init__(
            f"Cannot connect to {host_name}: "
            f"{type(original_error).__name__}: {original_error}"
        )


class AuthenticationError(FleetSSHError):
    """Gateway authentication failed after the password retry."""

    def __init__(self, host_name: str, user: str | None, original_error: Exception):
        self.host_name = host_name
        self.user = user
        self.original_error = original_error
        target = f"{user}@{host_name}" if user else host_name
        super().__init__(
            f"Authentication to gateway {target} failed: {original_error}. "
            "Check the gateway user and password, or load a key into your agent."
        )


class ExecutionError(FleetSSHError):
    """The remote end refused to start a command."""

    def __init__(self, host_name: str, command: str, reason: str = ""):
        self.host_name = host_name
        self.command = command
        detail = f" ({reason})" if reason else ""
        super().__init__(f"Cannot execute {command} on {host_name}{detail}")


class ExternalToolError(FleetSSHError):
    """A terminal launcher is missing or failed."""
