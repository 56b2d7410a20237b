"""Command execution data models."""

from dataclasses import dataclass, field


@dataclass
class CommandResult:
    """Aggregate result of one command run across the pool."""

    exit_status: int = 0
    statuses: dict[str, int] = field(default_factory=dict)
    errors: dict[str, Exception] = field(default_factory=dict)

    def record(self, host: str, status: int) -> None:
        """Record a host's exit status, keeping the running maximum."""
        self.statuses[host] = status
        self.exit_status = max(self.exit_status, status)

    @property
    def failed_hosts(self) -> list[str]:
        """Hosts that exited non-zero."""
        return [host for host, status in self.statuses.items() if status != 0]
