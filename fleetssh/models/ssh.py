"""SSH-related data models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import asyncssh


@dataclass
class Connection:
    """One resolved target and the options used to reach it."""

    host: str
    user: str | None = None
    port: int = 22
    identity_file: str | None = None
    password: str | None = None
    forward_agent: bool = False
    verify_host_key: bool = True
    client: "asyncssh.SSHClientConnection | None" = field(
        default=None, repr=False, compare=False
    )
    opened_at: datetime | None = field(default=None, repr=False, compare=False)

    @property
    def label(self) -> str:
        """Name shown in front of every output line."""
        return self.host

    @property
    def hostspec(self) -> str:
        """Return ``user@host`` when a user is known, else ``host``."""
        return f"{self.user}@{self.host}" if self.user else self.host

    @property
    def is_open(self) -> bool:
        """Check if an SSH connection is established and not closed."""
        if self.client is None:
            return False
        return not self.client.is_closed()

    def attach(self, client: "asyncssh.SSHClientConnection") -> None:
        """Record an established SSH connection."""
        self.client = client
        self.opened_at = datetime.now()


@dataclass
class Gateway:
    """Jump host every target connection is routed through."""

    host: str
    user: str | None = None
    port: int | None = None
    password: str | None = None

    @property
    def hostspec(self) -> str:
        """Return ``user@host`` when a user is known, else ``host``."""
        return f"{self.user}@{self.host}" if self.user else self.host
