"""Tests for the SSH session pool."""

import asyncio
import logging
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import asyncssh
import pytest

from fleetssh.config import SSHConfigParser
from fleetssh.exceptions import ConfigurationError, ConnectionError
from fleetssh.services.pool import SessionManager, SessionOptions


def make_client() -> MagicMock:
    """Create a mock SSH client connection."""
    client = MagicMock()
    client.is_closed.return_value = False
    client.wait_closed = AsyncMock()
    return client


class TestConfigure:
    """Target registration and empty-target handling."""

    def test_no_targets_no_nodes(self) -> None:
        """Zero resolved hosts is a configuration error with exit code 10."""
        manager = SessionManager()

        with pytest.raises(ConfigurationError) as exc_info:
            manager.configure([])

        assert "No nodes returned from search" in str(exc_info.value)
        assert exc_info.value.exit_code == 10

    def test_nodes_without_attribute(self) -> None:
        """Nodes found without an address name the count and suggest --attribute."""
        manager = SessionManager()

        with pytest.raises(ConfigurationError) as exc_info:
            manager.configure([], node_count=3)

        message = str(exc_info.value)
        assert message.startswith("3 nodes found")
        assert "--attribute" in message
        assert exc_info.value.exit_code == 10

    def test_single_node_without_attribute(self) -> None:
        manager = SessionManager()

        with pytest.raises(ConfigurationError, match="^1 node found"):
            manager.configure([], node_count=1)

    def test_longest_label_tracked(self) -> None:
        """Label width is the length of the longest target."""
        manager = SessionManager().configure(["a", "bb", "ccc"])

        assert manager.longest == 3
        assert manager.hosts == ["a", "bb", "ccc"]

    def test_duplicate_targets_collapse(self) -> None:
        manager = SessionManager().configure(["a", "a", "b"])

        assert manager.hosts == ["a", "b"]

    def test_options_applied(self) -> None:
        """Shared options end up on every connection."""
        options = SessionOptions(
            user="deploy",
            port=2200,
            password="pw",
            identity_file="~/.ssh/id_fleet",
            forward_agent=True,
            verify_host_key=False,
        )
        manager = SessionManager().configure(["web1"], options)

        conn = manager.get("web1")
        assert conn is not None
        assert conn.user == "deploy"
        assert conn.port == 2200
        assert conn.password == "pw"
        assert conn.identity_file == str(Path("~/.ssh/id_fleet").expanduser())
        assert conn.forward_agent is True
        assert conn.verify_host_key is False

    def test_ssh_config_fallback(self, tmp_path: Path) -> None:
        """User and port fall back to ~/.ssh/config entries."""
        ssh_config = tmp_path / "config"
        ssh_config.write_text("""
Host web*
    User admin
    Port 2222
""")
        manager = SessionManager(ssh_config=SSHConfigParser(ssh_config))
        manager.configure(["web1", "db1"])

        web = manager.get("web1")
        db = manager.get("db1")
        assert web is not None and db is not None
        assert (web.user, web.port) == ("admin", 2222)
        assert (db.user, db.port) == (None, 22)

    def test_explicit_user_beats_ssh_config(self, tmp_path: Path) -> None:
        ssh_config = tmp_path / "config"
        ssh_config.write_text("Host *\n    User admin\n")
        manager = SessionManager(ssh_config=SSHConfigParser(ssh_config))
        manager.configure(["web1"], SessionOptions(user="me"))

        assert manager.get("web1").user == "me"  # type: ignore[union-attr]

    def test_invalid_policy(self) -> None:
        with pytest.raises(ValueError):
            SessionManager(on_error="ignore")


class TestOpen:
    """Connection establishment and error policy."""

    @pytest.mark.asyncio
    async def test_open_connects_every_target(self) -> None:
        manager = SessionManager().configure(
            ["a", "b"], SessionOptions(user="deploy", port=2200)
        )

        with patch("asyncssh.connect", new_callable=AsyncMock) as mock_connect:
            mock_connect.side_effect = lambda host, **kwargs: make_client()

            connections = await manager.open()

        assert [c.host for c in connections] == ["a", "b"]
        assert all(c.is_open for c in connections)
        mock_connect.assert_any_call("a", port=2200, username="deploy")
        mock_connect.assert_any_call("b", port=2200, username="deploy")

    @pytest.mark.asyncio
    async def test_open_identity_file_only(self) -> None:
        """An identity file is the only key offered."""
        manager = SessionManager().configure(
            ["a"], SessionOptions(identity_file="/keys/id_fleet")
        )

        with patch("asyncssh.connect", new_callable=AsyncMock) as mock_connect:
            mock_connect.return_value = make_client()
            await manager.open()

        kwargs = mock_connect.call_args[1]
        assert kwargs["client_keys"] == ["/keys/id_fleet"]
        assert kwargs["agent_path"] is None

    @pytest.mark.asyncio
    async def test_open_without_host_key_verification(self) -> None:
        manager = SessionManager(known_hosts="/tmp/known").configure(
            ["a"], SessionOptions(verify_host_key=False)
        )

        with patch("asyncssh.connect", new_callable=AsyncMock) as mock_connect:
            mock_connect.return_value = make_client()
            await manager.open()

        assert mock_connect.call_args[1]["known_hosts"] is None

    @pytest.mark.asyncio
    async def test_open_uses_known_hosts(self) -> None:
        manager = SessionManager(known_hosts="/tmp/known").configure(["a"])

        with patch("asyncssh.connect", new_callable=AsyncMock) as mock_connect:
            mock_connect.return_value = make_client()
            await manager.open()

        assert mock_connect.call_args[1]["known_hosts"] == "/tmp/known"

    @pytest.mark.asyncio
    async def test_open_is_idempotent(self) -> None:
        manager = SessionManager().configure(["a"])

        with patch("asyncssh.connect", new_callable=AsyncMock) as mock_connect:
            mock_connect.return_value = make_client()
            await manager.open()
            await manager.open()

        assert mock_connect.call_count == 1

    @pytest.mark.asyncio
    async def test_skip_policy_drops_failed_host(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Under skip, a failed host is warned about and excluded."""
        manager = SessionManager(on_error="skip").configure(["good", "bad", "fine"])

        async def fake_connect(host: str, **kwargs: object) -> MagicMock:
            if host == "bad":
                raise OSError("Connection refused")
            return make_client()

        with patch("asyncssh.connect", new=AsyncMock(side_effect=fake_connect)):
            with caplog.at_level(logging.WARNING, logger="fleetssh"):
                connections = await manager.open()

        assert [c.host for c in connections] == ["good", "fine"]
        assert "bad" not in manager
        assert isinstance(manager.errors["bad"], OSError)
        assert "Failed to connect to bad -- OSError: Connection refused" in caplog.text
        # Width stays fixed to the original targets
        assert manager.longest == 4

    @pytest.mark.asyncio
    async def test_raise_policy_aborts(self) -> None:
        """Under raise, the first failure aborts setup."""
        manager = SessionManager(on_error="raise").configure(["good", "bad"])

        async def fake_connect(host: str, **kwargs: object) -> MagicMock:
            if host == "bad":
                raise asyncssh.PermissionDenied("Permission denied")
            await asyncio.sleep(0)
            return make_client()

        with patch("asyncssh.connect", new=AsyncMock(side_effect=fake_connect)):
            with pytest.raises(ConnectionError) as exc_info:
                await manager.open()

        assert exc_info.value.host_name == "bad"
        assert isinstance(exc_info.value.original_error, asyncssh.PermissionDenied)
        assert "bad" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_concurrency_limits_handshakes(self) -> None:
        """No more than `concurrency` handshakes run at once."""
        manager = SessionManager(concurrency=2).configure([f"h{i}" for i in range(6)])
        in_flight = 0
        peak = 0

        async def fake_connect(host: str, **kwargs: object) -> MagicMock:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return make_client()

        with patch("asyncssh.connect", new=AsyncMock(side_effect=fake_connect)):
            connections = await manager.open()

        assert len(connections) == 6
        assert peak == 2


class TestLookupAndClose:
    """Subset lookup and teardown."""

    def test_subset_exact_match(self) -> None:
        manager = SessionManager().configure(["web1", "web2", "db1"])

        subset = manager.subset(["db1", "web1", "web"])

        assert [c.host for c in subset] == ["db1", "web1"]

    def test_subset_unknown_hosts(self) -> None:
        manager = SessionManager().configure(["web1"])

        assert manager.subset(["nope"]) == []

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self) -> None:
        manager = SessionManager().configure(["a", "b"])
        clients = [make_client(), make_client()]

        with patch("asyncssh.connect", new_callable=AsyncMock) as mock_connect:
            mock_connect.side_effect = clients
            await manager.open()

        await manager.close()
        await manager.close()

        for client in clients:
            client.close.assert_called_once()
        assert manager.closed
        assert not any(c.is_open for c in manager.connections)

    @pytest.mark.asyncio
    async def test_close_without_connections(self) -> None:
        manager = SessionManager().configure(["a"])

        await manager.close()

        assert manager.closed
