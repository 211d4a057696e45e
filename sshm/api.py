"""
sshm/api.py

High-level entry points: connect and interact, pre-flight checks.

Usage:
    from sshm.api import connect_and_interact, check_connection

    outcome = check_connection(host)
    if outcome.ok:
        outcome = connect_and_interact(host)
        sys.exit(outcome.exit_status)
"""

from __future__ import annotations
import logging
from typing import Callable, Optional, BinaryIO

import paramiko

from .config import Settings, build_host_key_policy
from .errors import SSHMError
from .models import HostRecord, Outcome, parse_proxy_jump
from .session.auth import AuthResolver
from .session.cancel import CancelToken
from .session.driver import SessionDriver
from .session.probe import probe_host
from .session.terminal import TerminalSize, terminal_size
from .session.transport import LiveConnection, TransportConnector

logger = logging.getLogger(__name__)


def _resolver_for(
    settings: Settings,
    resolver: Optional[AuthResolver],
    confirm: Optional[Callable[[str, paramiko.PKey], bool]] = None,
) -> AuthResolver:
    return resolver or AuthResolver(host_key_policy=build_host_key_policy(settings, confirm))


def _connect_hop(
    host: HostRecord,
    settings: Settings,
    resolver: AuthResolver,
    cancel: CancelToken,
    via: Optional[LiveConnection],
) -> LiveConnection:
    config = resolver.resolve_config(host)
    connector = TransportConnector(
        connect_timeout=settings.connect_timeout,
        banner_timeout=settings.banner_timeout,
        keepalive_interval=settings.keepalive_interval,
    )
    return connector.connect(host, config, cancel=cancel, via=via)


def open_connection(
    host: HostRecord,
    settings: Optional[Settings] = None,
    resolver: Optional[AuthResolver] = None,
    cancel: Optional[CancelToken] = None,
) -> LiveConnection:
    """
    Resolve credentials and connect, following ``proxy_jump`` hops.

    Each hop gets its own credentials and connector; the returned
    connection owns every hop before it.

    Raises:
        SSHMError: any configuration, reachability, auth or protocol failure
    """
    settings = settings or Settings()
    resolver = _resolver_for(settings, resolver)
    cancel = cancel or CancelToken()

    host.validate()
    hops = parse_proxy_jump(host.proxy_jump, host.user) if host.proxy_jump else []

    via = None
    try:
        for hop in hops:
            via = _connect_hop(hop, settings, resolver, cancel, via)
        return _connect_hop(host, settings, resolver, cancel, via)
    except BaseException:
        if via is not None:
            via.close()
        raise


def connect_and_interact(
    host: HostRecord,
    settings: Optional[Settings] = None,
    resolver: Optional[AuthResolver] = None,
    size: Optional[TerminalSize] = None,
    cancel: Optional[CancelToken] = None,
    driver: Optional[SessionDriver] = None,
    stdin: Optional[BinaryIO] = None,
    stdout: Optional[BinaryIO] = None,
    stderr: Optional[BinaryIO] = None,
) -> Outcome:
    """
    Connect to ``host`` and run an interactive shell to completion.

    Returns an Outcome: EXITED with the remote status, or the failure kind
    with the phase it happened in. Nothing is retried.
    """
    settings = settings or Settings()
    if driver is None:
        driver = SessionDriver(
            stdin=stdin,
            stdout=stdout,
            stderr=stderr,
            term_type=settings.term_type,
            cancel=cancel,
        )

    try:
        connection = open_connection(host, settings, resolver, driver.cancel)
        status = driver.interact(connection, size or terminal_size())
    except SSHMError as e:
        logger.error(f"{host.name}: {e}")
        return Outcome.from_error(e)

    return Outcome.exited(status)


def check_connection(
    host: HostRecord,
    settings: Optional[Settings] = None,
    resolver: Optional[AuthResolver] = None,
    confirm: Optional[Callable[[str, paramiko.PKey], bool]] = None,
) -> Outcome:
    """
    Pre-flight diagnostics without a handshake.

    Probes TCP reachability, then resolves credentials. Reports the first
    failing phase. Settings that cannot be turned into a resolver come back
    as a CONFIGURATION outcome.
    """
    settings = settings or Settings()

    try:
        resolver = _resolver_for(settings, resolver, confirm)
        host.validate()
    except SSHMError as e:
        return Outcome.from_error(e)

    result = probe_host(host, settings.probe_timeout)
    if not result.reachable:
        return Outcome.from_error(result.error)

    try:
        config = resolver.resolve_config(host)
    except SSHMError as e:
        return Outcome.from_error(e)

    if config.agent is not None:
        config.agent.close()

    return Outcome.success(
        f"{host.target} reachable ({result.elapsed * 1000:.0f} ms), "
        f"credentials: {config.method_label}"
    )
