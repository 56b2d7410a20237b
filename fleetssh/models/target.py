"""Host resolution data models."""

from dataclasses import dataclass, field


@dataclass
class Resolution:
    """Targets produced by a host resolver."""

    targets: list[str] = field(default_factory=list)
    node_count: int | None = None
