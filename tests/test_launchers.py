"""Tests for terminal launchers."""

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from fleetssh.config import TmuxSettings
from fleetssh.exceptions import ExternalToolError
from fleetssh.launchers import Launcher
from fleetssh.models import Connection


def completed(returncode: int = 0) -> "subprocess.CompletedProcess[str]":
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout="", stderr="")


@pytest.fixture
def connections() -> list[Connection]:
    return [
        Connection(host="web1", user="deploy"),
        Connection(host="web2"),
        Connection(host="db1", user="deploy"),
    ]


def make_launcher(connections: list[Connection], **kwargs: object) -> Launcher:
    kwargs.setdefault("runner", MagicMock(return_value=completed()))
    kwargs.setdefault("execvp", MagicMock())
    return Launcher(connections, **kwargs)  # type: ignore[arg-type]


def test_requires_targets() -> None:
    with pytest.raises(ExternalToolError):
        Launcher([])


def test_ssh_command(connections: list[Connection]) -> None:
    launcher = make_launcher(
        connections, identity_file="/keys/id fleet", jump="ops@bastion:2222"
    )

    assert launcher.ssh_command(connections[0]) == (
        "ssh -i '/keys/id fleet' -J ops@bastion:2222 deploy@web1"
    )
    assert launcher.ssh_command(connections[1]) == "ssh -J ops@bastion:2222 web2"


def test_screen(connections: list[Connection], tmp_path: Path) -> None:
    screenrc = tmp_path / ".screenrc"
    screenrc.write_text("startup_message off\n")
    launcher = make_launcher(connections, identity_file="/keys/id", title="role:web")

    launcher.screen(screenrc=screenrc)

    argv = launcher._execvp.call_args[0][1]  # type: ignore[attr-defined]
    assert argv[:2] == ["screen", "-c"]
    content = Path(argv[2]).read_text()
    assert content.startswith(f"source {screenrc}\n")
    assert "hardstatus alwayslastline 'fleetssh role:web'" in content
    assert 'screen -t "web1" 0 ssh -i /keys/id deploy@web1' in content
    assert 'screen -t "web2" 1 ssh -i /keys/id web2' in content
    assert 'screen -t "db1" 2 ssh -i /keys/id deploy@db1' in content


def test_tmux_windows(connections: list[Connection]) -> None:
    launcher = make_launcher(connections, title="role:web")

    launcher.launch("tmux")

    calls = [c.args[0] for c in launcher._runner.call_args_list]  # type: ignore[attr-defined]
    assert calls[0][:7] == [
        "tmux", "new-session", "-d", "-n", "web1", "-s", "fleetssh role=web",
    ]
    assert calls[1] == [
        "tmux", "new-window", "-t", "fleetssh role=web", "-n", "web2", "ssh web2",
    ]
    assert calls[2][-1] == "ssh deploy@db1"
    attach = launcher._execvp.call_args[0][1]  # type: ignore[attr-defined]
    assert attach[:4] == ["tmux", "attach-session", "-t", "fleetssh role=web"]
    assert ["select-window", "-t", "web1"] == attach[5:8]
    assert "display-message" not in attach


def test_tmux_split_rolls_over_to_new_window(connections: list[Connection]) -> None:
    """A failed split names the full window and opens a new one."""
    results = {"split-window": iter([completed(0), completed(1), completed(0)])}

    def runner(argv: list[str], **kwargs: object) -> "subprocess.CompletedProcess[str]":
        if argv[1] == "split-window":
            return next(results["split-window"])
        return completed()

    extra = Connection(host="cache1")
    launcher = make_launcher(
        [*connections, extra],
        runner=MagicMock(side_effect=runner),
        tmux=TmuxSettings(pane_layout="even-vertical", sync_panes=False),
    )

    launcher.launch("tmux-split")

    calls = [c.args[0] for c in launcher._runner.call_args_list]  # type: ignore[attr-defined]
    new_session = calls[0]
    assert ["setw", "synchronize-panes", "off"] == new_session[-12:-9]
    assert "even-vertical" in calls[1]
    renames = [c for c in calls if c[1] == "rename-window"]
    assert renames[0][-1] == "hosts 1-2"
    assert renames[-1][-1] == "hosts 3-4"
    assert any(c[1] == "new-window" and "ssh db1" in c for c in calls)
    attach = launcher._execvp.call_args[0][1]  # type: ignore[attr-defined]
    assert ["select-window", "-t", "hosts 1-2"] == attach[5:8]
    assert "use PREFIX + s to toggle synchronized panes" in attach


def test_tmux_failure_reported(connections: list[Connection]) -> None:
    launcher = make_launcher(connections, runner=MagicMock(return_value=completed(1)))

    with pytest.raises(ExternalToolError, match="tmux exited with status 1"):
        launcher.launch("tmux")


def test_missing_tool_reported(connections: list[Connection]) -> None:
    launcher = make_launcher(
        connections, runner=MagicMock(side_effect=FileNotFoundError("tmux"))
    )

    with pytest.raises(ExternalToolError, match="Cannot run tmux"):
        launcher.tmux()


def test_cssh(connections: list[Connection]) -> None:
    launcher = make_launcher(connections)

    with patch("fleetssh.launchers.shutil.which", side_effect=[None, "/usr/bin/cssh"]):
        launcher.launch("cssh")

    launcher._execvp.assert_called_once_with(  # type: ignore[attr-defined]
        "/usr/bin/cssh", ["/usr/bin/cssh", "deploy@web1", "web2", "deploy@db1"]
    )


def test_cssh_missing(connections: list[Connection]) -> None:
    launcher = make_launcher(connections)

    with patch("fleetssh.launchers.shutil.which", return_value=None):
        with pytest.raises(ExternalToolError, match="no command found for cssh"):
            launcher.launch("csshx")


def test_macterm_requires_macos(
    connections: list[Connection], monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr("fleetssh.launchers.sys.platform", "linux")
    launcher = make_launcher(connections)

    with pytest.raises(ExternalToolError, match="macOS"):
        launcher.launch("macterm")


def test_macterm_script(
    connections: list[Connection], monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr("fleetssh.launchers.sys.platform", "darwin")
    launcher = make_launcher(connections)

    launcher.launch("macterm")

    argv = launcher._runner.call_args[0][0]  # type: ignore[attr-defined]
    assert argv[:2] == ["osascript", "-e"]
    script = argv[2]
    assert script.count("do script") == 3
    assert script.count('keystroke "t"') == 2
    assert "ssh deploy@web1" in script


def test_unknown_mode(connections: list[Connection]) -> None:
    with pytest.raises(ValueError):
        make_launcher(connections).launch("xterm")
