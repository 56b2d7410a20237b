"""Terminal launchers.

Open one interactive ssh session per target in screen, tmux, Terminal.app or
cluster-ssh. These only build command lines from the resolved targets and
hand off to external programs; no SSH connection is made by fleetssh itself.

Security:
- No shell=True; every command is an argv list
- Host names are quoted before they reach a shell or AppleScript
"""

import logging
import os
import shlex
import shutil
import subprocess
import sys
import tempfile
from collections.abc import Callable, Sequence
from pathlib import Path

from fleetssh.config import TmuxSettings
from fleetssh.exceptions import ExternalToolError
from fleetssh.models import Connection

logger = logging.getLogger(__name__)

LAUNCH_MODES = ("screen", "tmux", "tmux-split", "macterm", "cssh", "csshx")
CSSH_COMMANDS = ("csshX", "cssh")

Runner = Callable[..., "subprocess.CompletedProcess[str]"]
Exec = Callable[[str, Sequence[str]], None]


class Launcher:
    """Hands resolved targets to an external terminal program."""

    def __init__(
        self,
        connections: Sequence[Connection],
        identity_file: str | None = None,
        jump: str | None = None,
        title: str = "",
        tmux: TmuxSettings | None = None,
        runner: Runner = subprocess.run,
        execvp: Exec = os.execvp,
    ) -> None:
        """Initialize launcher.

        Args:
            connections: Targets, in order
            identity_file: Key passed to every ssh with -i
            jump: Gateway specifier passed to every ssh with -J
            title: Shown in the screen status line and tmux session name
            tmux: tmux layout settings
            runner: Runs a command and returns a CompletedProcess
            execvp: Replaces the current process
        """
        if not connections:
            raise ExternalToolError("No targets to open terminals for")
        self.connections = list(connections)
        self.identity_file = identity_file
        self.jump = jump
        self.title = title
        self.tmux_settings = tmux or TmuxSettings()
        self._runner = runner
        self._execvp = execvp

    def launch(self, mode: str) -> None:
        """Start the launcher named by ``mode``."""
        if mode == "screen":
            self.screen()
        elif mode == "tmux":
            self.tmux(use_panes=False)
        elif mode == "tmux-split":
            self.tmux(use_panes=True)
        elif mode == "macterm":
            self.macterm()
        elif mode == "cssh":
            self.cssh()
        elif mode == "csshx":
            logger.warning("fleetssh csshx will be removed in a future release")
            logger.warning("please use fleetssh cssh instead")
            self.cssh()
        else:
            raise ValueError(f"Unknown launch mode: {mode}")

    def ssh_command(self, conn: Connection) -> str:
        """Build the ssh command line for one target."""
        parts = ["ssh"]
        if self.identity_file:
            parts += ["-i", shlex.quote(self.identity_file)]
        if self.jump:
            parts += ["-J", shlex.quote(self.jump)]
        parts.append(shlex.quote(conn.hostspec))
        return " ".join(parts)

    def _exec(self, argv: list[str]) -> None:
        logger.debug("Exec: %s", shlex.join(argv))
        try:
            self._execvp(argv[0], argv)
        except OSError as e:
            raise ExternalToolError(f"Cannot run {argv[0]}: {e}") from e

    def _run(self, argv: list[str]) -> "subprocess.CompletedProcess[str]":
        logger.debug("Running: %s", shlex.join(argv))
        try:
            return self._runner(argv, capture_output=True, text=True, check=False)
        except OSError as e:
            raise ExternalToolError(f"Cannot run {argv[0]}: {e}") from e

    def _check(self, argv: list[str]) -> "subprocess.CompletedProcess[str]":
        result = self._run(argv)
        if result.returncode != 0:
            raise ExternalToolError(
                f"{argv[0]} exited with status {result.returncode}: "
                f"{(result.stderr or '').strip()}"
            )
        return result

    def screen(self, screenrc: Path | None = None) -> None:
        """Open one screen window per target."""
        screenrc = screenrc or Path.home() / ".screenrc"
        lines = []
        if screenrc.exists():
            lines.append(f"source {screenrc}")
        lines.append("caption always '%-Lw%{= BW}%50>%n%f* %t%{-}%+Lw%<'")
        lines.append(f"hardstatus alwayslastline 'fleetssh {self.title}'")
        for window, conn in enumerate(self.connections):
            lines.append(f'screen -t "{conn.host}" {window} {self.ssh_command(conn)}')

        with tempfile.NamedTemporaryFile(
            "w", prefix="fleetssh-screen", suffix=".rc", delete=False
        ) as rc:
            rc.write("\n".join(lines) + "\n")
        self._exec(["screen", "-c", rc.name])

    def tmux(self, use_panes: bool = False) -> None:
        """Open one tmux window, or pane, per target and attach."""
        opts = self.tmux_settings
        use_panes = use_panes or opts.use_panes
        sync_state = "on" if opts.sync_panes else "off"
        session = f"fleetssh {self.title.replace(':', '=')}".strip()
        first = self.connections[0]
        first_window = None if use_panes else first.host

        def rename_window(pane_start: int, pane_end: int) -> None:
            nonlocal first_window
            if pane_start == pane_end:
                window_name = f"host {pane_start}"
            else:
                window_name = f"hosts {pane_start}-{pane_end}"
            first_window = first_window or window_name
            self._check(["tmux", "rename-window", "-t", session, window_name])

        command = [
            "tmux", "new-session", "-d", "-n", first.host, "-s", session,
            self.ssh_command(first),
            ";", "setw", "automatic-rename", "off",
            ";", "setw", "allow-rename", "off",
        ]
        if use_panes:
            command += [
                ";", "setw", "synchronize-panes", sync_state,
                ";", "bind-key", opts.sync_panes_key, "set", "synchronize-panes",
                ";", "set", "display-time", "3000",
            ]
        self._check(command)

        pane_start = pane_count = 1
        for conn in self.connections[1:]:
            ssh = self.ssh_command(conn)
            if not use_panes:
                self._check(["tmux", "new-window", "-t", session, "-n", conn.host, ssh])
                continue

            split = self._run(
                ["tmux", "split-window", "-t", session, ssh,
                 ";", "select-layout", opts.pane_layout]
            )
            if split.returncode != 0:
                # Window is full: name it after its panes and start a new one
                rename_window(pane_start, pane_count)
                pane_start = pane_count + 1
                self._check(
                    ["tmux", "new-window", "-t", session, "-n", conn.host, ssh,
                     ";", "setw", "synchronize-panes", sync_state]
                )
            pane_count += 1

        if use_panes:
            rename_window(pane_start, pane_count)

        attach = ["tmux", "attach-session", "-t", session]
        attach += [";", "select-window", "-t", str(first_window)]
        if use_panes:
            attach += [
                ";", "display-message",
                f"use PREFIX + {opts.sync_panes_key} to toggle synchronized panes",
            ]
        attach += [";", "refresh-client"]
        self._exec(attach)

    def macterm(self) -> None:
        """Open one Terminal.app tab per target (macOS only)."""
        if sys.platform != "darwin":
            raise ExternalToolError("macterm requires macOS Terminal.app")

        script = ['tell application "Terminal" to activate']
        for index, conn in enumerate(self.connections):
            cmd = (
                f'unset PROMPT_COMMAND; echo -e "\\033]0;{conn.host}\\007"; '
                f"{self.ssh_command(conn)}"
            )
            escaped = cmd.replace("\\", "\\\\").replace('"', '\\"')
            if index == 0:
                script.append(f'tell application "Terminal" to do script "{escaped}"')
            else:
                script.append(
                    'tell application "System Events" to tell process "Terminal" '
                    'to keystroke "t" using command down'
                )
                script.append(
                    f'tell application "Terminal" to do script "{escaped}" '
                    "in selected tab of front window"
                )

        self._check(["osascript", "-e", "\n".join(script)])
        logger.info("Opened %d Terminal tab(s)", len(self.connections))

    def cssh(self) -> None:
        """Start cluster-ssh (csshX or cssh) on every target."""
        cssh_cmd = next((path for name in CSSH_COMMANDS if (path := shutil.which(name))), None)
        if cssh_cmd is None:
            raise ExternalToolError(
                "no command found for cssh; install csshX (macOS) or clusterssh"
            )

        argv = [cssh_cmd] + [conn.hostspec for conn in self.connections]
        logger.debug("starting cssh session with command: %s", shlex.join(argv))
        self._exec(argv)
