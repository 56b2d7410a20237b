"""Run one command across the session pool.

Every host gets its own PTY channel. Output is streamed to the
OutputFormatter as it arrives, sudo password prompts are answered from a
per-engine password cache, and the run's exit status is the highest status
any host reported.
"""

import asyncio
import logging
import re
from collections.abc import Iterable

import asyncssh

from fleetssh.exceptions import ConnectionError, ExecutionError
from fleetssh.models import CommandResult, Connection
from fleetssh.services.output import OutputFormatter
from fleetssh.services.pool import CONNECT_ERRORS, SessionManager
from fleetssh.utils.prompt import PasswordPrompt, prompt_for_password

logger = logging.getLogger(__name__)

SUDO_MARKER = "fleetssh sudo password: "
MARKER_PATTERN = re.compile("^" + re.escape(SUDO_MARKER), re.MULTILINE)
READ_SIZE = 8192


def fixup_sudo(command: str) -> str:
    """Make a leading ``sudo`` prompt with the recognizable marker."""
    return re.sub(r"^sudo", lambda _: f"sudo -p '{SUDO_MARKER}'", command, count=1)


class ExecutionEngine:
    """Runs commands on every connection of a SessionManager."""

    def __init__(
        self,
        manager: SessionManager,
        formatter: OutputFormatter | None = None,
        prompt: PasswordPrompt = prompt_for_password,
        password: str | None = None,
        term_type: str = "xterm",
    ) -> None:
        """Initialize engine.

        Args:
            manager: Pool whose connections commands run on
            formatter: Output sink (default: one sized to the pool's longest label)
            prompt: Masked prompt used when sudo asks for a password
            password: Pre-seeded sudo password
            term_type: Terminal type requested for each PTY
        """
        self.manager = manager
        self.formatter = formatter or OutputFormatter(width=manager.longest)
        self.term_type = term_type
        self._prompt = prompt
        self._password = password

    def get_password(self) -> str:
        """Return the cached sudo password, prompting the first time."""
        if self._password is None:
            self._password = self._prompt("Enter your password: ")
        return self._password

    async def run(
        self, command: str, targets: Iterable[Connection] | None = None
    ) -> int:
        """Run a command and return the aggregate exit status.

        Args:
            command: Shell command to run on every host
            targets: Subset of connections (default: the whole pool)

        Returns:
            Highest exit status reported by any host, 0 if none ran
        """
        result = await self.run_result(command, targets)
        return result.exit_status

    async def run_result(
        self, command: str, targets: Iterable[Connection] | None = None
    ) -> CommandResult:
        """Run a command and return per-host statuses and skipped errors.

        Raises:
            ExecutionError: If any host refuses to start the command
            ConnectionError: Under the "raise" policy, if a host cannot connect
                or loses its connection mid-command
        """
        command = fixup_sudo(command)
        self.formatter.width = max(self.formatter.width, self.manager.longest)
        await self.manager.open()

        if targets is None:
            connections = self.manager.connections
        else:
            connections = [conn for conn in targets if conn.host in self.manager]

        result = CommandResult(errors=dict(self.manager.errors))
        if not connections:
            logger.warning("No connected hosts to run %r on", command)
            return result

        logger.info("Running %r on %d host(s)", command, len(connections))
        tasks = [
            asyncio.ensure_future(self._run_channel(conn, command, result))
            for conn in connections
        ]
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    raise task.exception()  # type: ignore[misc]
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        if result.failed_hosts:
            logger.info(
                "Command exited non-zero on %s (exit_status=%d)",
                ", ".join(result.failed_hosts),
                result.exit_status,
            )
        return result

    async def _run_channel(
        self, conn: Connection, command: str, result: CommandResult
    ) -> None:
        """Run the command on one connection and record its exit status."""
        assert conn.client is not None, f"{conn.host} is not connected"
        try:
            process = await conn.client.create_process(
                command,
                term_type=self.term_type,
                encoding="utf-8",
                errors="replace",
            )
        except asyncssh.ChannelOpenError as e:
            raise ExecutionError(conn.host, command, e.reason) from e
        except CONNECT_ERRORS as e:
            self._transport_failed(conn, e, result)
            return

        try:
            while chunk := await process.stdout.read(READ_SIZE):
                self._on_data(conn.host, chunk, process)
            completed = await process.wait()
        except CONNECT_ERRORS as e:
            self._transport_failed(conn, e, result)
            return
        finally:
            process.close()

        if completed.exit_status is None:
            logger.warning(
                "%s closed without an exit status (signal=%s)",
                conn.host,
                completed.exit_signal,
            )
            return
        logger.debug("%s exited with status %d", conn.host, completed.exit_status)
        result.record(conn.host, completed.exit_status)

    def _transport_failed(
        self, conn: Connection, error: Exception, result: CommandResult
    ) -> None:
        """Apply the pool's error policy to a connection lost mid-command."""
        if self.manager.on_error == "raise":
            logger.error("Lost connection to %s, aborting: %s", conn.host, error)
            raise ConnectionError(conn.host, error) from error

        logger.warning(
            "Lost connection to %s -- %s: %s",
            conn.host,
            type(error).__name__,
            error,
        )
        logger.debug("Transport failure for %s", conn.host, exc_info=True)
        result.errors[conn.host] = error

    def _on_data(
        self, host: str, chunk: str, process: "asyncssh.SSHClientProcess[str]"
    ) -> None:
        self.formatter.print_data(host, chunk)
        if MARKER_PATTERN.search(chunk):
            self.formatter.print_data(host, "\n")
            process.stdin.write(f"{self.get_password()}\n")
