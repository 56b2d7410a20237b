"""Jump host configuration.

Parses a ``[user@]host[:port]`` gateway specifier and connects it through
the session manager before any target is contacted.
"""

import logging
from typing import Any

import asyncssh

from fleetssh.exceptions import AuthenticationError, ConnectionError, SettingsError
from fleetssh.models import Gateway
from fleetssh.services.pool import CONNECT_ERRORS, SessionManager

logger = logging.getLogger(__name__)


def parse_gateway(spec: str) -> Gateway:
    """Parse a gateway specifier.

    Args:
        spec: ``[user@]host[:port]``

    Returns:
        Gateway with user and port left as None when absent

    Raises:
        SettingsError: If the host is empty or the port is not a number
    """
    spec = spec.strip()
    user: str | None = None
    if "@" in spec:
        user, _, spec = spec.rpartition("@")
        user = user or None

    host, sep, port_str = spec.partition(":")
    if not host:
        raise SettingsError(f"Invalid gateway {spec!r}: missing host")

    port: int | None = None
    if sep:
        try:
            port = int(port_str)
        except ValueError:
            raise SettingsError(
                f"Invalid gateway port {port_str!r}; expected [user@]host[:port]"
            ) from None

    return Gateway(host=host, user=user, port=port)


class GatewayConfigurator:
    """Registers the gateway hop with a SessionManager."""

    def __init__(self, manager: SessionManager, default_user: str | None = None):
        """Initialize configurator.

        Args:
            manager: Session manager that will route through the gateway
            default_user: User to fall back to when the specifier has none
        """
        self.manager = manager
        self.default_user = default_user

    async def configure(self, spec: str | None) -> Gateway | None:
        """Connect the gateway described by ``spec``.

        Does nothing when ``spec`` is empty.

        Returns:
            The connected gateway, or None

        Raises:
            SettingsError: If the specifier is malformed
            AuthenticationError: If authentication fails after the password retry
            ConnectionError: If the gateway cannot be reached
        """
        if not spec:
            return None

        gateway = parse_gateway(spec)
        user = gateway.user or self.default_user
        options: dict[str, Any] = {}
        if gateway.port is not None:
            options["port"] = gateway.port

        logger.debug("Configuring gateway %s", spec)
        try:
            await self.manager.via(gateway.host, user, options)
        except asyncssh.PermissionDenied as e:
            raise AuthenticationError(gateway.host, user, e) from e
        except CONNECT_ERRORS as e:
            logger.debug("Gateway failure for %s", gateway.host, exc_info=True)
            raise ConnectionError(gateway.host, e) from e

        return self.manager.gateway
