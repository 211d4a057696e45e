"""
sshm/cli.py

Command-line interface for sshm.

Usage:
    sshm list
    sshm connect web-1
    sshm connect web-1 --insecure --width 120 --height 40
    sshm ping 203.0.113.5 --port 2222
    sshm check web-1
"""

import sys
import json
import logging
import signal
from typing import Optional

import click

from .api import check_connection, connect_and_interact
from .config import SettingsManager, POLICY_INSECURE, build_host_key_policy
from .hosts import find_host, load_hosts
from .models import HostRecord
from .session.auth import AuthResolver
from .session.cancel import CancelToken
from .session.driver import SessionDriver
from .session.hostkeys import UNKNOWN_HOST_ACTIONS, fingerprint
from .session.probe import probe
from .session.terminal import terminal_size

# ssh(1) uses 255 for its own failures
EXIT_FAILURE = 255


def format_table(items: list, columns: list[tuple[str, str, int]]) -> str:
    """
    Format items as a simple table.

    Args:
        items: List of objects with attributes
        columns: List of (attr_name, header, width) tuples
    """
    if not items:
        return "No results."

    header = ""
    separator = ""
    for attr, name, width in columns:
        header += f"{name:<{width}} "
        separator += "-" * width + " "

    lines = [header.rstrip(), separator.rstrip()]

    for item in items:
        row = ""
        for attr, name, width in columns:
            val = getattr(item, attr, "")
            if val is None:
                val = ""
            if isinstance(val, (list, tuple)):
                val = ",".join(val)
            val_str = str(val)[:width - 1]
            row += f"{val_str:<{width}} "
        lines.append(row.rstrip())

    return "\n".join(lines)


def _confirm_host_key(hostname: str, key) -> bool:
    click.echo(
        f"The authenticity of host '{hostname}' can't be established.\n"
        f"{key.get_name()} key fingerprint is {fingerprint(key)}.",
        err=True,
    )
    return click.confirm("Are you sure you want to continue connecting?", err=True)


def _lookup_host(ctx, name: str) -> HostRecord:
    host = find_host(load_hosts(ctx.obj["hosts_file"]), name)
    if host is None:
        raise click.ClickException(f"No host named '{name}' in {ctx.obj['hosts_file']}")
    return host


def _install_signal_handlers(cancel: CancelToken, driver: SessionDriver) -> None:
    def on_terminate(signum, frame):
        cancel.cancel()

    for signame in ("SIGTERM", "SIGHUP"):
        if hasattr(signal, signame):
            signal.signal(getattr(signal, signame), on_terminate)

    if hasattr(signal, "SIGWINCH"):
        def on_winch(signum, frame):
            size = terminal_size()
            driver.resize(size.cols, size.rows)

        signal.signal(signal.SIGWINCH, on_winch)


@click.group()
@click.option("--config", "config_path", default=None, type=click.Path(dir_okay=False),
              help="Settings file (default ~/.sshm/config.json)")
@click.option("--hosts", "hosts_file", default=None, type=click.Path(dir_okay=False),
              help="Host store file (JSON or YAML)")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging to stderr")
@click.pass_context
def cli(ctx, config_path, hosts_file, verbose):
    """sshm - connect to managed hosts over SSH."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    manager = SettingsManager(config_path)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = manager.settings
    ctx.obj["hosts_file"] = hosts_file or manager.settings.hosts_file


@cli.command("list")
@click.option("-t", "--tag", default=None, help="Only hosts carrying this tag")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def list_hosts(ctx, tag, output_json):
    """List hosts from the host store."""
    hosts = load_hosts(ctx.obj["hosts_file"])
    if tag:
        hosts = [h for h in hosts if tag in h.tags]

    if output_json:
        click.echo(json.dumps([h.to_dict() for h in hosts], indent=2))
        return

    columns = [
        ("name", "NAME", 20),
        ("address", "ADDRESS", 24),
        ("effective_port", "PORT", 6),
        ("user", "USER", 14),
        ("tags", "TAGS", 20),
    ]
    click.echo(format_table(hosts, columns))
    click.echo(f"\n{len(hosts)} host(s)")


@cli.command("connect")
@click.argument("name")
@click.option("--insecure", is_flag=True,
              help="UNSAFE: accept any host key without verification")
@click.option("--unknown-hosts", type=click.Choice(UNKNOWN_HOST_ACTIONS), default=None,
              help="What to do with hosts missing from known_hosts")
@click.option("--width", type=int, default=None, help="Terminal columns")
@click.option("--height", type=int, default=None, help="Terminal rows")
@click.option("--timeout", type=float, default=None, help="Connect timeout in seconds")
@click.pass_context
def connect(ctx, name, insecure, unknown_hosts, width, height, timeout):
    """Open an interactive shell on a host."""
    settings = ctx.obj["settings"]
    host = _lookup_host(ctx, name)

    if insecure:
        settings.host_key_policy = POLICY_INSECURE
        click.echo("WARNING: host key verification disabled", err=True)
    if unknown_hosts:
        settings.unknown_hosts = unknown_hosts
    if timeout:
        settings.connect_timeout = timeout

    resolver = AuthResolver(host_key_policy=build_host_key_policy(settings, _confirm_host_key))

    cancel = CancelToken()
    driver = SessionDriver(term_type=settings.term_type, cancel=cancel)
    _install_signal_handlers(cancel, driver)

    outcome = connect_and_interact(
        host,
        settings=settings,
        resolver=resolver,
        size=terminal_size(width, height),
        driver=driver,
    )

    if not outcome.ok:
        click.echo(f"sshm: {host.name}: {outcome}", err=True)
        sys.exit(EXIT_FAILURE)
    sys.exit(outcome.exit_status)


@cli.command("ping")
@click.argument("target")
@click.option("-p", "--port", type=int, default=None, help="TCP port (default: host's port or 22)")
@click.option("--timeout", type=float, default=None, help="Probe timeout in seconds")
@click.pass_context
def ping(ctx, target, port, timeout):
    """Check TCP reachability of a host name or address."""
    settings = ctx.obj["settings"]
    host = find_host(load_hosts(ctx.obj["hosts_file"]), target)

    address = host.address if host else target
    port = port or (host.effective_port if host else 22)

    result = probe(address, port, timeout or settings.probe_timeout)
    click.echo(str(result), err=not result.reachable)
    if not result.reachable:
        sys.exit(1)


@cli.command("check")
@click.argument("name")
@click.pass_context
def check(ctx, name):
    """Pre-flight check: reachability and available credentials."""
    settings = ctx.obj["settings"]
    host = _lookup_host(ctx, name)

    outcome = check_connection(host, settings, confirm=_confirm_host_key)
    if outcome.ok:
        click.echo(outcome.message)
        return

    click.echo(f"{host.name}: {outcome}", err=True)
    for method in outcome.attempted_methods:
        click.echo(f"  tried {method}", err=True)
    sys.exit(1)


def main(argv: Optional[list] = None):
    cli(args=argv, prog_name="sshm")


if __name__ == "__main__":
    main()
