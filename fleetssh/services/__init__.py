"""Services for fleetssh."""

from fleetssh.services.executor import SUDO_MARKER, ExecutionEngine, fixup_sudo
from fleetssh.services.gateway import GatewayConfigurator, parse_gateway
from fleetssh.services.output import OutputFormatter
from fleetssh.services.pool import SessionManager, SessionOptions

__all__ = [
    "ExecutionEngine",
    "GatewayConfigurator",
    "OutputFormatter",
    "SessionManager",
    "SessionOptions",
    "SUDO_MARKER",
    "fixup_sudo",
    "parse_gateway",
]
