"""Data models for fleetssh."""

from fleetssh.models.command import CommandResult
from fleetssh.models.ssh import Connection, Gateway
from fleetssh.models.target import Resolution

__all__ = [
    "CommandResult",
    "Connection",
    "Gateway",
    "Resolution",
]
