"""fleetssh: run one shell command on many hosts over SSH."""

__version__ = "0.1.0"
