"""fleetssh command line interface.

    fleetssh [OPTIONS] QUERY COMMAND...

QUERY is an inventory search (``role:web env:prod``) or, with -m, a
space-separated host list. COMMAND is run on every host, unless it is one of
``interactive``, ``screen``, ``tmux``, ``tmux-split``, ``macterm``, ``cssh``.
"""

import asyncio
import logging
import os
import sys

import click

from fleetssh.config import HostKeyVerifier, Settings, SSHConfigParser
from fleetssh.exceptions import ExternalToolError, FleetSSHError, SettingsError
from fleetssh.launchers import LAUNCH_MODES, Launcher
from fleetssh.models import Resolution
from fleetssh.resolver import DEFAULT_ATTRIBUTE, InventoryResolver, resolve_manual
from fleetssh.services import (
    ExecutionEngine,
    GatewayConfigurator,
    OutputFormatter,
    SessionManager,
    SessionOptions,
)
from fleetssh.shell import InteractiveShell
from fleetssh.utils.console import ColorfulFormatter, supports_color

logger = logging.getLogger(__name__)

EXIT_INTERRUPTED = 130


def configure_logging(level: str, verbose: int = 0, use_colors: bool = True) -> None:
    """Configure colorful logging for the fleetssh package.

    Args:
        level: Base level name from settings
        verbose: -V count; 1 raises to INFO, 2 or more to DEBUG
        use_colors: Whether to color log output on a TTY
    """
    if verbose >= 2:
        level = "DEBUG"
    elif verbose == 1 and level not in ("DEBUG", "INFO"):
        level = "INFO"

    if not sys.stderr.isatty():
        use_colors = False

    fleet_logger = logging.getLogger("fleetssh")
    fleet_logger.setLevel(getattr(logging, level.upper(), logging.WARNING))

    if not fleet_logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(ColorfulFormatter(use_colors=use_colors))
        fleet_logger.addHandler(handler)
        fleet_logger.propagate = False

    # asyncssh logs every channel at INFO
    asyncssh_level = logging.DEBUG if level.upper() == "DEBUG" else logging.WARNING
    logging.getLogger("asyncssh").setLevel(asyncssh_level)


def resolve_targets(
    query: str,
    manual: bool,
    settings: Settings,
    cli_attribute: str | None,
) -> Resolution:
    """Turn the QUERY argument into target strings.

    The attribute given on the command line or in the config file overrides
    the cloud public hostname; otherwise the configured attribute, or
    ``fqdn``, is the fallback.
    """
    if manual:
        return resolve_manual(query)

    if not settings.inventory:
        raise SettingsError(
            "No inventory configured. Set 'inventory' in the config file, "
            "pass --inventory PATH, or use --manual-list for a plain host list."
        )

    override = cli_attribute or settings.ssh_attribute
    attribute = (settings.ssh_attribute or cli_attribute or DEFAULT_ATTRIBUTE).strip()
    resolver = InventoryResolver(
        settings.inventory,
        attribute=attribute,
        override_attribute=override.strip() if override else None,
    )
    return resolver.resolve(query)


async def run_session(
    query: str,
    command: list[str],
    resolution: Resolution,
    settings: Settings,
    options: SessionOptions,
    known_hosts: str | None,
) -> int:
    """Connect, run the requested mode and close the pool.

    Returns:
        Exit status for the process
    """
    mode = command[0] if len(command) == 1 else None
    manager = SessionManager(
        concurrency=settings.concurrency,
        on_error=settings.on_error,
        known_hosts=known_hosts,
        ssh_config=SSHConfigParser(),
    )
    try:
        manager.configure(resolution.targets, options, resolution.node_count)

        if mode in LAUNCH_MODES:
            launcher = Launcher(
                manager.connections,
                identity_file=options.identity_file,
                jump=settings.ssh_gateway,
                title=query,
                tmux=settings.tmux,
            )
            launcher.launch(mode)
            return 0

        await GatewayConfigurator(manager, default_user=options.user).configure(
            settings.ssh_gateway
        )
        formatter = OutputFormatter(
            width=manager.longest,
            use_colors=settings.color and supports_color(),
        )
        engine = ExecutionEngine(manager, formatter)

        if mode == "interactive":
            await manager.open()
            shell = InteractiveShell(manager, engine, use_colors=formatter.use_colors)
            return await shell.run()

        return await engine.run(" ".join(command))
    finally:
        await manager.close()


@click.command(context_settings={"allow_interspersed_args": False})
@click.argument("query")
@click.argument("command", nargs=-1, required=True)
@click.option("-C", "--concurrency", type=int, help="The number of concurrent connections")
@click.option(
    "-a",
    "--attribute",
    help="The attribute to use for opening the connection (default: fqdn)",
)
@click.option(
    "-m",
    "--manual-list",
    "manual",
    is_flag=True,
    help="QUERY is a space separated list of servers",
)
@click.option("-x", "--ssh-user", help="The ssh username")
@click.option("-P", "--ssh-password", help="The ssh password")
@click.option("-p", "--ssh-port", type=int, help="The ssh port")
@click.option("-G", "--ssh-gateway", help="The ssh gateway, [user@]host[:port]")
@click.option("-A", "--forward-agent", is_flag=True, help="Enable SSH agent forwarding")
@click.option("-i", "--identity-file", help="The SSH identity file used for authentication")
@click.option(
    "--host-key-verify/--no-host-key-verify",
    default=True,
    help="Verify host key, enabled by default.",
)
@click.option(
    "--on-error",
    type=click.Choice(["skip", "raise"]),
    help="What to do when a host cannot be reached (default: skip)",
)
@click.option("--inventory", help="Inventory file searched by QUERY")
@click.option("-V", "--verbose", count=True, help="More verbose output (repeatable)")
def main(
    query: str,
    command: tuple[str, ...],
    concurrency: int | None,
    attribute: str | None,
    manual: bool,
    ssh_user: str | None,
    ssh_password: str | None,
    ssh_port: int | None,
    ssh_gateway: str | None,
    forward_agent: bool,
    identity_file: str | None,
    host_key_verify: bool,
    on_error: str | None,
    inventory: str | None,
    verbose: int,
) -> None:
    """Run COMMAND on every host matched by QUERY.

    Options must come before QUERY; everything after it is the command.
    """
    try:
        settings = Settings.from_env()
    except SettingsError as e:
        click.echo(f"FATAL: {e}", err=True)
        sys.exit(e.exit_code)

    if concurrency is not None:
        settings.concurrency = concurrency if concurrency > 0 else None
    if on_error:
        settings.on_error = on_error
    if ssh_gateway:
        settings.ssh_gateway = ssh_gateway.strip()
    if inventory:
        settings.inventory = inventory

    configure_logging(settings.log_level, verbose, settings.color)

    options = SessionOptions(
        user=(ssh_user or settings.ssh_user or "").strip() or None,
        port=ssh_port or settings.ssh_port,
        password=ssh_password,
        identity_file=(identity_file or settings.identity_file or "").strip() or None,
        forward_agent=forward_agent,
        verify_host_key=host_key_verify,
    )

    try:
        resolution = resolve_targets(query, manual, settings, attribute)
        known_hosts = HostKeyVerifier(
            os.getenv("FLEETSSH_KNOWN_HOSTS"), verify=host_key_verify
        ).get_known_hosts_path()
        status = asyncio.run(
            run_session(query, list(command), resolution, settings, options, known_hosts)
        )
    except KeyboardInterrupt:
        click.echo("Interrupted", err=True)
        sys.exit(EXIT_INTERRUPTED)
    except ExternalToolError as e:
        click.echo(f"ERROR: {e}", err=True)
        sys.exit(e.exit_code)
    except FleetSSHError as e:
        click.echo(f"FATAL: {e}", err=True)
        sys.exit(e.exit_code)

    sys.exit(status)
