"""Configuration module for fleetssh.

Provides focused classes for different configuration concerns:
- Settings: Config file and environment variable settings
- SSHConfigParser: Per-host fallbacks from ~/.ssh/config
- HostKeyVerifier: known_hosts resolution
"""

from fleetssh.config.host_keys import HostKeyVerifier
from fleetssh.config.parser import SSHConfigParser
from fleetssh.config.settings import Settings, TmuxSettings

__all__ = ["HostKeyVerifier", "SSHConfigParser", "Settings", "TmuxSettings"]
