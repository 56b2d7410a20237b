"""SSH host key verification.

Resolves the known_hosts file handed to asyncssh.
"""

import logging
import os
from pathlib import Path

from fleetssh.exceptions import SettingsError

logger = logging.getLogger(__name__)


class HostKeyVerifier:
    """SSH host key verification manager."""

    def __init__(
        self,
        known_hosts_path: str | None = None,
        verify: bool = True,
    ):
        """Initialize host key verifier.

        Args:
            known_hosts_path: Path to known_hosts file (default: ~/.ssh/known_hosts)
            verify: Whether host keys are verified at all

        Raises:
            SettingsError: If verification is on and the file is missing
        """
        self.verify = verify
        self._known_hosts = self._resolve_known_hosts(known_hosts_path)

    def _resolve_known_hosts(self, path_value: str | None) -> str | None:
        """Resolve known_hosts path.

        Returns:
            Path to known_hosts file or None to disable verification
        """
        if not self.verify:
            logger.warning(
                "SSH host key verification disabled (--no-host-key-verify). "
                "Connections are vulnerable to man-in-the-middle attacks."
            )
            return None

        path = (
            Path(os.path.expanduser(path_value))
            if path_value
            else Path.home() / ".ssh" / "known_hosts"
        )
        if not path.exists():
            raise SettingsError(
                f"SSH host key verification required but known_hosts not found "
                f"at {path}.\n\n"
                f"To fix this:\n"
                f"1. Add host keys: ssh-keyscan <hostname> >> {path}\n"
                f"2. Or connect once: ssh <hostname> (answer 'yes' to add key)\n"
                f"3. Or disable verification (NOT RECOMMENDED): --no-host-key-verify"
            )
        return str(path)

    def get_known_hosts_path(self) -> str | None:
        """Get path to known_hosts file.

        Returns:
            Path string or None if verification disabled
        """
        return self._known_hosts

    def is_enabled(self) -> bool:
        """Check if host key verification is enabled."""
        return self._known_hosts is not None
