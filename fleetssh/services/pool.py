"""SSH session pool for one fleetssh invocation.

Owns one Connection per resolved target, the optional gateway hop and the
error policy applied when a connection cannot be established.

Concurrency:
- `open()` establishes every pending connection at once; an optional
  semaphore bounds how many handshakes are in flight.
- Once established, connections are used concurrently without limit.

Error policy:
- "skip": a failed host is logged, dropped from the pool, and the run goes on
- "raise": the first failure cancels the remaining handshakes and aborts
"""

import asyncio
import logging
import os
from collections import OrderedDict
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import asyncssh

from fleetssh.exceptions import ConfigurationError, ConnectionError
from fleetssh.models import Connection, Gateway
from fleetssh.utils.prompt import PasswordPrompt, prompt_for_password

if TYPE_CHECKING:
    from fleetssh.config import SSHConfigParser

logger = logging.getLogger(__name__)

ON_ERROR_POLICIES = ("skip", "raise")

# Errors a single host can raise while connecting
CONNECT_ERRORS = (OSError, asyncssh.Error, asyncio.TimeoutError)


@dataclass
class SessionOptions:
    """Connection options applied to every target added to the pool."""

    user: str | None = None
    port: int | None = None
    password: str | None = None
    identity_file: str | None = None
    forward_agent: bool = False
    verify_host_key: bool = True


class SessionManager:
    """Pool of SSH connections with gateway routing and an error policy."""

    def __init__(
        self,
        concurrency: int | None = None,
        on_error: str = "skip",
        known_hosts: str | None = None,
        ssh_config: "SSHConfigParser | None" = None,
        prompt: PasswordPrompt = prompt_for_password,
        connect_timeout: float | None = None,
    ) -> None:
        """Initialize an empty pool.

        Args:
            concurrency: Maximum simultaneous connection handshakes (None: unlimited)
            on_error: "skip" or "raise"
            known_hosts: known_hosts file for verified hosts (None: asyncssh default)
            ssh_config: Parser used for per-target User/Port fallbacks
            prompt: Masked prompt used for the gateway password retry
            connect_timeout: Seconds allowed for each handshake

        Raises:
            ValueError: If on_error is not a known policy or concurrency <= 0
        """
        if on_error not in ON_ERROR_POLICIES:
            raise ValueError(f"on_error must be one of {ON_ERROR_POLICIES}, got {on_error!r}")
        if concurrency is not None and concurrency <= 0:
            raise ValueError(f"concurrency must be > 0, got {concurrency}")

        self.concurrency = concurrency
        self.on_error = on_error
        self.known_hosts = known_hosts
        self.ssh_config = ssh_config
        self.connect_timeout = connect_timeout
        self._prompt = prompt

        self._connections: OrderedDict[str, Connection] = OrderedDict()
        self.errors: dict[str, Exception] = {}
        self.longest = 0

        self.gateway: Gateway | None = None
        self._gateway_client: asyncssh.SSHClientConnection | None = None
        self.verify_host_key = True
        self._closed = False

        logger.debug(
            "SessionManager initialized (concurrency=%s, on_error=%s)",
            concurrency,
            on_error,
        )

    def configure(
        self,
        targets: Iterable[str],
        options: SessionOptions | None = None,
        node_count: int | None = None,
    ) -> "SessionManager":
        """Register one connection per target.

        Args:
            targets: Resolved target strings, in order
            options: Options shared by every target
            node_count: Inventory records matched, when targets came from a search

        Returns:
            This manager, for chaining

        Raises:
            ConfigurationError: If there are no targets
        """
        targets = list(targets)
        if not targets:
            if not node_count:
                raise ConfigurationError("No nodes returned from search!")
            noun = "nodes" if node_count > 1 else "node"
            raise ConfigurationError(
                f"{node_count} {noun} found, but does not have the required "
                "attribute to establish the connection. Try setting another "
                "attribute to open the connection using --attribute."
            )

        options = options or SessionOptions()
        self.verify_host_key = options.verify_host_key
        for target in targets:
            self.add(target, options)
        return self

    def add(self, target: str, options: SessionOptions | None = None) -> Connection:
        """Register a connection for a single target.

        Args:
            target: Host to connect to
            options: Per-target options

        Returns:
            The registered Connection
        """
        options = options or SessionOptions()
        existing = self._connections.get(target)
        if existing is not None:
            logger.debug("Ignoring duplicate target %s", target)
            return existing

        user = options.user
        port = options.port
        if self.ssh_config is not None:
            user = user or self.ssh_config.user_for(target)
            port = port or self.ssh_config.port_for(target)

        identity_file = (
            os.path.expanduser(options.identity_file) if options.identity_file else None
        )
        conn = Connection(
            host=target,
            user=user,
            port=port or 22,
            identity_file=identity_file,
            password=options.password,
            forward_agent=options.forward_agent,
            verify_host_key=options.verify_host_key,
        )
        logger.debug("Adding %s (port=%d)", conn.hostspec, conn.port)
        self._connections[target] = conn
        self.longest = max(self.longest, len(conn.label))
        return conn

    async def via(
        self,
        host: str,
        user: str | None = None,
        options: dict[str, Any] | None = None,
    ) -> asyncssh.SSHClientConnection:
        """Route subsequent connections through a jump host.

        The gateway is connected immediately. On an authentication failure the
        user is prompted once for a password and the connection is retried; a
        second failure propagates unchanged.

        Args:
            host: Gateway host
            user: Gateway user
            options: Extra gateway options ("port", "password")

        Returns:
            The gateway connection
        """
        options = options or {}
        gateway = Gateway(
            host=host,
            user=user,
            port=options.get("port"),
            password=options.get("password"),
        )

        try:
            client = await self._connect_gateway(gateway)
        except asyncssh.PermissionDenied as first_error:
            logger.warning(
                "Authentication to gateway %s failed: %s, prompting for password",
                gateway.hostspec,
                first_error,
            )
            gateway.password = self._prompt(
                f"Enter the password for {gateway.hostspec}: "
            )
            client = await self._connect_gateway(gateway)

        self.gateway = gateway
        self._gateway_client = client
        logger.info("Routing connections through gateway %s", gateway.hostspec)
        return client

    async def _connect_gateway(self, gateway: Gateway) -> asyncssh.SSHClientConnection:
        kwargs: dict[str, Any] = {}
        if gateway.port is not None:
            kwargs["port"] = gateway.port
        if gateway.user:
            kwargs["username"] = gateway.user
        if gateway.password is not None:
            kwargs["password"] = gateway.password
        if not self.verify_host_key:
            kwargs["known_hosts"] = None
        elif self.known_hosts is not None:
            kwargs["known_hosts"] = self.known_hosts

        logger.info("Opening gateway connection to %s", gateway.hostspec)
        return await asyncssh.connect(gateway.host, **kwargs)

    def _connect_kwargs(self, conn: Connection) -> dict[str, Any]:
        """Build asyncssh.connect keyword arguments for a connection."""
        kwargs: dict[str, Any] = {"port": conn.port}
        if conn.user:
            kwargs["username"] = conn.user
        if conn.identity_file:
            kwargs["client_keys"] = [conn.identity_file]
            if not conn.forward_agent:
                # Only the given key is offered
                kwargs["agent_path"] = None
        if conn.password is not None:
            kwargs["password"] = conn.password
        if conn.forward_agent:
            kwargs["agent_forwarding"] = True
        if not conn.verify_host_key:
            kwargs["known_hosts"] = None
        elif self.known_hosts is not None:
            kwargs["known_hosts"] = self.known_hosts
        if self._gateway_client is not None:
            kwargs["tunnel"] = self._gateway_client
        if self.connect_timeout is not None:
            kwargs["connect_timeout"] = self.connect_timeout
        return kwargs

    async def _connect(self, conn: Connection, limit: asyncio.Semaphore | None) -> None:
        kwargs = self._connect_kwargs(conn)
        logger.info("Opening SSH connection to %s:%d", conn.hostspec, conn.port)
        if limit is None:
            client = await asyncssh.connect(conn.host, **kwargs)
        else:
            async with limit:
                client = await asyncssh.connect(conn.host, **kwargs)
        conn.attach(client)
        logger.debug("SSH connection established to %s", conn.host)

    async def _connect_or_skip(
        self, conn: Connection, limit: asyncio.Semaphore | None
    ) -> None:
        try:
            await self._connect(conn, limit)
        except CONNECT_ERRORS as e:
            logger.warning(
                "Failed to connect to %s -- %s: %s",
                conn.host,
                type(e).__name__,
                e,
            )
            logger.debug("Connection failure for %s", conn.host, exc_info=True)
            self.errors[conn.host] = e
            self._connections.pop(conn.host, None)

    async def open(self) -> list[Connection]:
        """Establish every registered connection that is not open yet.

        Returns:
            Connections left in the pool

        Raises:
            ConnectionError: Under the "raise" policy, for the first failure
        """
        pending = [conn for conn in self._connections.values() if not conn.is_open]
        if not pending:
            return self.connections

        limit = asyncio.Semaphore(self.concurrency) if self.concurrency else None
        logger.info(
            "Connecting to %d host(s) (concurrency=%s)",
            len(pending),
            self.concurrency or "unlimited",
        )

        if self.on_error == "skip":
            await asyncio.gather(*(self._connect_or_skip(c, limit) for c in pending))
            return self.connections

        tasks = {asyncio.ensure_future(self._connect(c, limit)): c for c in pending}
        done, still_running = await asyncio.wait(
            tasks, return_when=asyncio.FIRST_EXCEPTION
        )
        failed = next(
            (task for task in tasks if task in done and task.exception() is not None),
            None,
        )
        if failed is None:
            return self.connections

        for task in still_running:
            task.cancel()
        await asyncio.gather(*still_running, return_exceptions=True)
        conn = tasks[failed]
        error = failed.exception()
        assert error is not None
        logger.error("Failed to connect to %s, aborting: %s", conn.host, error)
        raise ConnectionError(conn.host, error) from error

    def subset(self, hosts: Iterable[str]) -> list[Connection]:
        """Look up connections by exact host name.

        Unknown hosts are ignored; duplicates collapse.
        """
        selected: dict[str, Connection] = {}
        for host in hosts:
            conn = self._connections.get(host)
            if conn is not None:
                selected.setdefault(host, conn)
        return list(selected.values())

    def get(self, host: str) -> Connection | None:
        """Return the connection for a host, if it is in the pool."""
        return self._connections.get(host)

    @property
    def connections(self) -> list[Connection]:
        """Connections currently in the pool, in target order."""
        return list(self._connections.values())

    @property
    def hosts(self) -> list[str]:
        """Host names currently in the pool, in target order."""
        return list(self._connections.keys())

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, host: object) -> bool:
        return host in self._connections

    async def close(self) -> None:
        """Close every connection and the gateway. Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True

        clients = [conn.client for conn in self._connections.values() if conn.client]
        if clients:
            logger.info("Closing %d connection(s)", len(clients))
        for client in clients:
            client.close()
        await asyncio.gather(
            *(client.wait_closed() for client in clients), return_exceptions=True
        )
        for conn in self._connections.values():
            conn.client = None

        if self._gateway_client is not None:
            logger.debug("Closing gateway connection")
            self._gateway_client.close()
            await self._gateway_client.wait_closed()
            self._gateway_client = None
