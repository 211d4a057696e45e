"""
SSH transport establishment using Paramiko.

TransportConnector dials TCP (or tunnels through a jump connection),
runs key exchange, applies the host-key policy and authenticates with
the signers from a ClientSessionConfig. The result is a LiveConnection
that owns every resource created along the way.
"""

from __future__ import annotations
import errno
import logging
import os
import selectors
import socket
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Optional, Sequence

import paramiko

from ..errors import (
    ConnectorBusyError,
    HandshakeFailedError,
    SessionCancelledError,
    UnreachableError,
)
from ..models import HostRecord
from .auth import ClientSessionConfig
from .cancel import CancelToken

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_BANNER_TIMEOUT = 15.0
DEFAULT_KEEPALIVE_INTERVAL = 30

_CONNECT_IN_PROGRESS = {
    errno.EINPROGRESS,
    errno.EWOULDBLOCK,
    errno.EAGAIN,
    getattr(errno, "WSAEWOULDBLOCK", errno.EWOULDBLOCK),
}


# =============================================================================
# Dialing
# =============================================================================

class _Deadline:
    """Remaining time for a bounded multi-step operation."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        self._end = time.monotonic() + timeout

    @property
    def remaining(self) -> float:
        return max(self._end - time.monotonic(), 0.0)

    @property
    def expired(self) -> bool:
        return self.remaining <= 0


def _connect_socket(
    sock: socket.socket,
    sockaddr,
    deadline: _Deadline,
    wake: socket.socket,
) -> None:
    """Non-blocking connect waited on together with the cancel wake socket."""
    sock.setblocking(False)
    err = sock.connect_ex(sockaddr)
    if err and err not in _CONNECT_IN_PROGRESS:
        raise OSError(err, os.strerror(err))

    if err:
        with selectors.DefaultSelector() as selector:
            selector.register(sock, selectors.EVENT_WRITE)
            selector.register(wake, selectors.EVENT_READ)
            events = selector.select(deadline.remaining)

        if not events:
            raise socket.timeout("timed out")
        if any(key.fileobj is wake for key, _ in events):
            raise SessionCancelledError("dial")

        err = sock.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)
        if err:
            raise OSError(err, os.strerror(err))

    sock.setblocking(True)


def _resolve(address: str, port: int, deadline: _Deadline) -> list:
    """getaddrinfo bounded by the dial deadline."""
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="sshm-resolve")
    future = executor.submit(socket.getaddrinfo, address, port, type=socket.SOCK_STREAM)
    executor.shutdown(wait=False)
    try:
        return future.result(timeout=deadline.remaining)
    except FutureTimeout:
        raise UnreachableError(
            address, port, f"name resolution timed out after {deadline.timeout:g}s"
        ) from None
    except socket.gaierror as e:
        raise UnreachableError(address, port, f"name resolution failed: {e}") from e


def dial(
    address: str,
    port: int,
    timeout: float,
    cancel: Optional[CancelToken] = None,
) -> socket.socket:
    """
    Open a TCP connection bounded by ``timeout``.

    Every resolved address is tried in turn within the same deadline.

    Raises:
        UnreachableError: resolution, refusal, routing or timeout
        SessionCancelledError: ``cancel`` fired during the dial
    """
    cancel = cancel or CancelToken()
    deadline = _Deadline(timeout)

    infos = _resolve(address, port, deadline)

    last_error = "no usable address"
    wake_r, wake_w = socket.socketpair()
    try:
        with cancel.on_cancel(lambda: wake_w.send(b"\0")):
            for family, socktype, proto, _, sockaddr in infos:
                cancel.raise_if_cancelled("dial")
                if deadline.expired:
                    last_error = f"timed out after {timeout:g}s"
                    break

                sock = socket.socket(family, socktype, proto)
                try:
                    _connect_socket(sock, sockaddr, deadline, wake_r)
                except socket.timeout:
                    sock.close()
                    last_error = f"timed out after {timeout:g}s"
                    continue
                except OSError as e:
                    sock.close()
                    last_error = e.strerror or str(e)
                    logger.debug(f"Dial {sockaddr} failed: {last_error}")
                    continue
                except BaseException:
                    sock.close()
                    raise

                logger.debug(f"Connected TCP to {sockaddr}")
                return sock
    finally:
        wake_r.close()
        wake_w.close()

    raise UnreachableError(address, port, last_error)


# =============================================================================
# Live connection
# =============================================================================

class LiveConnection:
    """
    An authenticated SSH transport.

    Owns the socket (or tunnel channel), the Paramiko transport, the agent
    connection backing agent signers, and any upstream jump connections.
    ``close()`` releases all of them and may be called any number of times.
    """

    def __init__(
        self,
        host: HostRecord,
        transport: paramiko.Transport,
        sock,
        config: ClientSessionConfig,
        upstream: Sequence[LiveConnection] = (),
    ):
        self.host = host
        self.transport = transport
        self.config = config
        self._sock = sock
        self._upstream = list(upstream)
        self._closed = False
        self._lock = threading.Lock()

    @property
    def is_active(self) -> bool:
        return not self._closed and self.transport.is_active()

    @property
    def closed(self) -> bool:
        return self._closed

    def open_tunnel(self, address: str, port: int, timeout: float) -> paramiko.Channel:
        """Open a direct-tcpip channel to ``address:port`` through this connection."""
        return self.transport.open_channel(
            "direct-tcpip",
            dest_addr=(address, port),
            src_addr=("127.0.0.1", 0),
            timeout=timeout,
        )

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True

        logger.info(f"Closing connection to {self.host.target}")
        try:
            self.transport.close()
        except Exception as e:
            logger.debug(f"Transport close error: {e}")
        try:
            self._sock.close()
        except Exception as e:
            logger.debug(f"Socket close error: {e}")
        if self.config.agent is not None:
            self.config.agent.close()

        for hop in reversed(self._upstream):
            hop.close()
        self._upstream.clear()

    def __enter__(self) -> LiveConnection:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def __repr__(self) -> str:
        status = "active" if self.is_active else "closed"
        return f"<LiveConnection {self.host.target} {status}>"


# =============================================================================
# Connector
# =============================================================================

class TransportConnector:
    """
    Establishes at most one LiveConnection at a time.

    Connecting again while the previous connection is still active raises
    ConnectorBusyError; a dead previous connection is closed and replaced.
    """

    def __init__(
        self,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        banner_timeout: float = DEFAULT_BANNER_TIMEOUT,
        keepalive_interval: int = DEFAULT_KEEPALIVE_INTERVAL,
    ):
        self.connect_timeout = connect_timeout
        self.banner_timeout = banner_timeout
        self.keepalive_interval = keepalive_interval

        self._connection: Optional[LiveConnection] = None
        self._connecting = False
        self._lock = threading.Lock()

    @property
    def connection(self) -> Optional[LiveConnection]:
        return self._connection

    @property
    def is_connected(self) -> bool:
        return self._connection is not None and self._connection.is_active

    def connect(
        self,
        host: HostRecord,
        config: ClientSessionConfig,
        timeout: Optional[float] = None,
        cancel: Optional[CancelToken] = None,
        via: Optional[LiveConnection] = None,
    ) -> LiveConnection:
        """
        Dial, handshake, verify host key and authenticate.

        The whole sequence is bounded by ``timeout`` (default
        ``connect_timeout``). When ``via`` is given the target is reached
        through a direct-tcpip channel and the returned connection takes
        ownership of ``via``; on failure ``via`` stays with the caller.

        Raises:
            ConfigurationError: invalid host record, or connector busy
            UnreachableError: TCP dial failed
            HandshakeFailedError: key exchange or authentication failed
            HostKeyError: host key rejected by policy
            SessionCancelledError: ``cancel`` fired
        """
        host.validate()
        self._claim()

        try:
            connection = self._establish(
                host,
                config,
                _Deadline(timeout if timeout is not None else self.connect_timeout),
                cancel or CancelToken(),
                via,
            )
        except BaseException:
            if config.agent is not None:
                config.agent.close()
            with self._lock:
                self._connecting = False
            raise

        with self._lock:
            self._connection = connection
            self._connecting = False
        return connection

    def close(self) -> None:
        with self._lock:
            connection, self._connection = self._connection, None
        if connection is not None:
            connection.close()

    # -------------------------------------------------------------------------

    def _claim(self) -> None:
        with self._lock:
            if self._connecting:
                raise ConnectorBusyError("a connection attempt is already in progress")
            if self._connection is not None:
                if self._connection.is_active:
                    raise ConnectorBusyError(
                        f"connector already holds {self._connection.host.target}"
                    )
                self._connection.close()
                self._connection = None
            self._connecting = True

    def _open_socket(self, host, deadline, cancel, via):
        address, port = host.address, host.effective_port

        if via is None:
            logger.info(f"Connecting to {address}:{port}")
            return dial(address, port, deadline.remaining, cancel)

        logger.info(f"Connecting to {address}:{port} via {via.host.address}")
        try:
            with cancel.on_cancel(via.close):
                return via.open_tunnel(address, port, deadline.remaining)
        except (paramiko.SSHException, EOFError, OSError) as e:
            cancel.raise_if_cancelled("dial")
            raise UnreachableError(address, port, f"via {via.host.address}: {e}") from e

    def _establish(self, host, config, deadline, cancel, via) -> LiveConnection:
        cancel.raise_if_cancelled("dial")
        sock = self._open_socket(host, deadline, cancel, via)

        transport = None
        try:
            transport = paramiko.Transport(sock)
            transport.banner_timeout = min(self.banner_timeout, max(deadline.remaining, 0.1))

            with cancel.on_cancel(transport.close):
                server_key = self._handshake(host, config, transport, deadline, cancel)
                config.host_key_policy.verify(host.address, host.effective_port, server_key)
                self._authenticate(config, transport, deadline, cancel)
        except BaseException:
            if transport is not None:
                transport.close()
            sock.close()
            raise

        transport.set_keepalive(self.keepalive_interval)
        logger.debug(
            f"Negotiated: cipher={transport.remote_cipher}, "
            f"mac={transport.remote_mac}, host_key={transport.host_key_type}"
        )
        logger.info(f"Authenticated to {host.target} using {config.method_label}")

        upstream = (via,) if via is not None else ()
        return LiveConnection(host, transport, sock, config, upstream)

    def _handshake(self, host, config, transport, deadline, cancel) -> paramiko.PKey:
        try:
            transport.start_client(timeout=max(deadline.remaining, 0.1))
            # start_client returns silently on timeout; no server key means no kex
            server_key = transport.get_remote_server_key()
        except (paramiko.SSHException, EOFError, OSError) as e:
            cancel.raise_if_cancelled("handshake")
            raise HandshakeFailedError(
                config.method_label, f"key exchange with {host.address} failed: {e}"
            ) from e
        cancel.raise_if_cancelled("handshake")
        return server_key

    def _authenticate(self, config, transport, deadline, cancel) -> None:
        last_error = "no signers offered"

        for signer in config.signers:
            cancel.raise_if_cancelled("authentication")
            if deadline.expired:
                last_error = f"timed out after {deadline.timeout:g}s"
                break

            transport.auth_timeout = max(deadline.remaining, 0.1)
            try:
                transport.auth_publickey(config.user, signer)
            except paramiko.BadAuthenticationType as e:
                last_error = f"server allows only {', '.join(e.allowed_types)}"
                break
            except paramiko.AuthenticationException as e:
                last_error = str(e) or "key rejected"
                logger.debug(f"Key {signer.get_name()} rejected: {last_error}")
                continue
            except (paramiko.SSHException, EOFError, OSError) as e:
                cancel.raise_if_cancelled("authentication")
                raise HandshakeFailedError(config.method_label, f"authentication error: {e}") from e

            if transport.is_authenticated():
                return

        cancel.raise_if_cancelled("authentication")
        raise HandshakeFailedError(
            config.method_label,
            f"authentication as {config.user} rejected: {last_error}",
        )
