"""Colorful console helpers: log formatter and host label styling."""

import logging
import re
import sys
from datetime import datetime
from typing import TextIO

# ANSI color codes
COLORS = {
    "reset": "\033[0m",
    "bold": "\033[1m",
    "dim": "\033[2m",
    # Foreground colors
    "red": "\033[31m",
    "green": "\033[32m",
    "yellow": "\033[33m",
    "blue": "\033[34m",
    "magenta": "\033[35m",
    "cyan": "\033[36m",
    "white": "\033[37m",
    # Bright foreground colors
    "bright_black": "\033[90m",
    "bright_red": "\033[91m",
    "bright_green": "\033[92m",
    "bright_yellow": "\033[93m",
    "bright_blue": "\033[94m",
    "bright_magenta": "\033[95m",
    "bright_cyan": "\033[96m",
    # Background colors
    "bg_red": "\033[41m",
}

# Log level colors
LEVEL_COLORS = {
    "DEBUG": COLORS["bright_black"],
    "INFO": COLORS["bright_green"],
    "WARNING": COLORS["bright_yellow"],
    "ERROR": COLORS["bright_red"],
    "CRITICAL": COLORS["bg_red"] + COLORS["white"] + COLORS["bold"],
}

# Component colors for logger names
COMPONENT_COLORS = {
    "fleetssh.services.pool": COLORS["bright_magenta"],
    "fleetssh.services.gateway": COLORS["magenta"],
    "fleetssh.services.executor": COLORS["bright_blue"],
    "fleetssh.shell": COLORS["bright_cyan"],
    "fleetssh.launchers": COLORS["yellow"],
    "fleetssh.config": COLORS["green"],
    "default": COLORS["white"],
}

HOSTSPEC_PATTERN = re.compile(r"(\w+@[\w\.\-]+(?::\d+)?)")


def colorize(text: str, color: str, enabled: bool = True) -> str:
    """Wrap text in an ANSI color when enabled.

    Args:
        text: Text to color
        color: Key of COLORS
        enabled: When False the text is returned unchanged
    """
    if not enabled:
        return text
    return f"{COLORS[color]}{text}{COLORS['reset']}"


def supports_color(stream: TextIO | None = None) -> bool:
    """Check whether a stream is an interactive terminal."""
    stream = stream if stream is not None else sys.stdout
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


class ColorfulFormatter(logging.Formatter):
    """Colorful log formatter with level and component highlighting."""

    def __init__(self, use_colors: bool = True) -> None:
        """Initialize the formatter.

        Args:
            use_colors: Whether to use ANSI colors.
        """
        super().__init__()
        self.use_colors = use_colors

    def _colorize(self, text: str, color: str) -> str:
        if not self.use_colors:
            return text
        return f"{color}{text}{COLORS['reset']}"

    def _get_component_color(self, name: str) -> str:
        """Get color for a logger name/component."""
        for prefix, color in COMPONENT_COLORS.items():
            if prefix != "default" and name.startswith(prefix):
                return color
        return COMPONENT_COLORS["default"]

    def _format_timestamp(self, record: logging.LogRecord) -> str:
        dt = datetime.fromtimestamp(record.created)
        return f"{dt.strftime('%H:%M:%S')}.{int(record.msecs):03d}"

    def _format_level(self, record: logging.LogRecord) -> str:
        """Format log level with color and fixed width."""
        level = record.levelname
        color = LEVEL_COLORS.get(level, COLORS["white"])
        return self._colorize(f"{level:<8}", color)

    def _format_component(self, record: logging.LogRecord) -> str:
        """Format component/logger name with color."""
        name = record.name
        if name.startswith("fleetssh."):
            name = name[len("fleetssh."):]
        color = self._get_component_color(record.name)
        return self._colorize(f"{name:<18}", color)

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record with colors."""
        timestamp = self._colorize(self._format_timestamp(record), COLORS["dim"])
        level = self._format_level(record)
        component = self._format_component(record)
        sep = self._colorize("|", COLORS["dim"])

        message = record.getMessage()
        if self.use_colors and "@" in message:
            message = HOSTSPEC_PATTERN.sub(
                f"{COLORS['bright_magenta']}\\1{COLORS['reset']}",
                message,
            )

        line = f"{timestamp} {sep} {level} {sep} {component} {sep} {message}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line
