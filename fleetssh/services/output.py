"""Line-buffered, host-labelled output.

Remote output arrives in arbitrary chunks. Each host keeps its own leftover
partial line, so only complete lines are printed and lines from different
hosts never mix. A trailing fragment that never gets its newline is never
printed.
"""

from collections.abc import Callable

import click

from fleetssh.utils.console import colorize, supports_color

HostLine = tuple[str, str]


class OutputFormatter:
    """Buffers partial output per host and renders complete lines."""

    def __init__(
        self,
        width: int = 0,
        write: Callable[[str], None] | None = None,
        use_colors: bool | None = None,
    ) -> None:
        """Initialize formatter.

        Args:
            width: Label width, the length of the longest target
            write: Sink for rendered lines (default: click.echo)
            use_colors: Color host labels (default: when stdout is a TTY)
        """
        self.width = width
        self._write = write or click.echo
        self.use_colors = supports_color() if use_colors is None else use_colors
        self._buffers: dict[str, str] = {}

    def feed(self, host: str, chunk: str) -> list[HostLine]:
        """Add a chunk of output and return the lines it completes.

        Args:
            host: Host the chunk came from
            chunk: Raw output

        Returns:
            (host, line) pairs in arrival order, newlines stripped
        """
        data = self._buffers.pop(host, "") + chunk
        lines: list[HostLine] = []
        cursor = 0
        while (newline := data.find("\n", cursor)) != -1:
            lines.append((host, data[cursor:newline]))
            cursor = newline + 1
        if cursor < len(data):
            self._buffers[host] = data[cursor:]
        return lines

    def pending(self, host: str) -> str:
        """Return the buffered partial line for a host."""
        return self._buffers.get(host, "")

    def render(self, host: str, line: str) -> str:
        """Render one line with a padded, colored host label."""
        padding = " " * (max(self.width - len(host), 0) + 1)
        return colorize(host, "cyan", self.use_colors) + padding + line.rstrip("\r")

    def print_data(self, host: str, chunk: str) -> list[HostLine]:
        """Feed a chunk and write every completed line."""
        lines = self.feed(host, chunk)
        for line_host, line in lines:
            self._write(self.render(line_host, line))
        return lines
