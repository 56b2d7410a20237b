"""Interactive command loop over an open session pool."""

import asyncio
import logging
import re
from collections.abc import Callable

import click

from fleetssh.services.executor import ExecutionEngine
from fleetssh.services.pool import SessionManager
from fleetssh.utils.console import colorize, supports_color

logger = logging.getLogger(__name__)

QUIT_COMMAND = "quit!"
EOF_COMMAND = "exit"
SUBSET_PATTERN = re.compile(r"^on (.+?); (.+)$")

Reader = Callable[[str], "str | None"]


def read_input(prompt: str) -> str | None:
    """Read one line from the terminal, returning None at end of input."""
    import readline  # noqa: F401  enables line editing and history for input()

    try:
        return input(prompt)
    except EOFError:
        return None


def join_hosts(hosts: list[str]) -> str:
    """Join names as ``a, b and c``."""
    if len(hosts) <= 1:
        return "".join(hosts)
    return f"{', '.join(hosts[:-1])} and {hosts[-1]}"


class InteractiveShell:
    """Reads commands and runs them on all hosts or a named subset.

    ``on HOST1 HOST2; COMMAND`` runs COMMAND on the listed hosts only,
    ``quit!`` leaves the loop, and anything else runs on every host.
    """

    def __init__(
        self,
        manager: SessionManager,
        engine: ExecutionEngine,
        reader: Reader = read_input,
        write: Callable[[str], None] | None = None,
        use_colors: bool | None = None,
    ) -> None:
        self.manager = manager
        self.engine = engine
        self._reader = reader
        self._write = write or click.echo
        self.use_colors = supports_color() if use_colors is None else use_colors
        self.history: list[str] = []
        self.exhausted = False

    @property
    def prompt(self) -> str:
        return colorize("fleetssh>", "bold", self.use_colors) + " "

    def banner(self) -> str:
        hosts = [colorize(host, "cyan", self.use_colors) for host in self.manager.hosts]
        return "\n".join(
            [
                f"Connected to {join_hosts(hosts)}",
                "",
                "To run a command on a list of servers, do:",
                "  on SERVER1 SERVER2 SERVER3; COMMAND",
                "  Example: on latte foamy; echo foobar",
                "",
                f"To exit interactive mode, use '{QUIT_COMMAND}'",
                "",
            ]
        )

    async def read_line(self) -> str:
        """Prompt until a non-empty line is read.

        End of input is returned as ``exit`` after echoing it.
        """
        while True:
            line = await asyncio.to_thread(self._reader, self.prompt)
            if line is None:
                self.exhausted = True
                self._write(EOF_COMMAND)
                command = EOF_COMMAND
            else:
                command = line.strip()

            if command:
                self.history.append(command)
                return command

    async def dispatch(self, command: str) -> int:
        """Run a command line on the whole pool or the subset it names.

        Returns:
            Aggregate exit status of the command
        """
        match = SUBSET_PATTERN.match(command)
        if match is None:
            return await self.engine.run(command)

        requested = match.group(1).split()
        targets = self.manager.subset(requested)
        if not targets:
            logger.warning("No connected hosts match %s", " ".join(requested))
            return 0
        return await self.engine.run(match.group(2), targets)

    async def run(self) -> int:
        """Run the loop until ``quit!`` or end of input."""
        self._write(self.banner())
        while True:
            command = await self.read_line()
            if command == QUIT_COMMAND:
                self._write("Bye!")
                break

            status = await self.dispatch(command)
            logger.debug("%r finished with exit status %d", command, status)
            if self.exhausted:
                break
        return 0
