"""SSH config file parser.

Reads ~/.ssh/config so per-target User and Port settings can be used as
fallbacks when no user or port is given explicitly.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from fnmatch import fnmatch
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class HostBlock:
    """One ``Host`` section of an SSH config file."""

    patterns: list[str]
    options: dict[str, str] = field(default_factory=dict)

    def matches(self, host: str) -> bool:
        """Check if a host matches this block's patterns.

        A matching negated pattern (``!pattern``) excludes the host.
        """
        matched = False
        for pattern in self.patterns:
            if pattern.startswith("!"):
                if fnmatch(host, pattern[1:]):
                    return False
            elif fnmatch(host, pattern):
                matched = True
        return matched


class SSHConfigParser:
    """Parser for SSH config files.

    Options are resolved the way OpenSSH does: for each key, the first
    matching block that sets it wins.
    """

    def __init__(self, config_path: Path | str | None = None):
        """Initialize SSH config parser.

        Args:
            config_path: Path to SSH config file (default: ~/.ssh/config)
        """
        if config_path is None:
            config_path = Path.home() / ".ssh" / "config"

        self.config_path = Path(config_path)
        self._blocks: list[HostBlock] | None = None

    def parse(self) -> list[HostBlock]:
        """Parse SSH config into host blocks.

        Returns:
            Host blocks in file order (empty if the file is missing or unreadable)
        """
        if self._blocks is not None:
            return self._blocks

        if not self.config_path.exists():
            logger.debug("SSH config not found: %s", self.config_path)
            self._blocks = []
            return self._blocks

        try:
            content = self.config_path.read_text()
            logger.debug("Reading SSH config from %s", self.config_path)
        except (OSError, PermissionError) as e:
            logger.warning("Cannot read SSH config %s: %s", self.config_path, e)
            self._blocks = []
            return self._blocks

        blocks: list[HostBlock] = []
        current: HostBlock | None = None

        for line in content.splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue

            host_match = re.match(r"^Host\s+(.+)$", line, re.IGNORECASE)
            if host_match:
                current = HostBlock(patterns=host_match.group(1).split())
                blocks.append(current)
                continue

            # Match blocks are not evaluated; skip their options
            if re.match(r"^Match\s", line, re.IGNORECASE):
                current = None
                continue

            kv_match = re.match(r"^(\w+)\s*=?\s*(.+)$", line)
            if kv_match and current is not None:
                key = kv_match.group(1).lower()
                value = kv_match.group(2).strip().strip('"')
                if key == "identityfile":
                    value = os.path.expanduser(value)
                current.options.setdefault(key, value)

        logger.debug("Parsed %d host block(s) from %s", len(blocks), self.config_path)
        self._blocks = blocks
        return blocks

    def lookup(self, host: str) -> dict[str, str]:
        """Resolve the effective options for a host.

        Args:
            host: Target host as given on the command line

        Returns:
            Lower-cased option names mapped to their values
        """
        options: dict[str, str] = {}
        for block in self.parse():
            if block.matches(host):
                for key, value in block.options.items():
                    options.setdefault(key, value)
        return options

    def user_for(self, host: str) -> str | None:
        """Return the configured ``User`` for a host, if any."""
        return self.lookup(host).get("user")

    def port_for(self, host: str) -> int | None:
        """Return the configured ``Port`` for a host, if any."""
        value = self.lookup(host).get("port")
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            logger.warning("Invalid Port %r for %s in %s", value, host, self.config_path)
            return None
