import socket
import threading
import time

import pytest

from sshm.errors import (
    ConfigurationError,
    ConnectorBusyError,
    HandshakeFailedError,
    HostKeyMismatchError,
    SessionCancelledError,
    UnknownHostKeyError,
    UnreachableError,
)
from sshm.models import HostRecord
from sshm.session.cancel import CancelToken
from sshm.session.hostkeys import KnownHostsPolicy, fingerprint
from sshm.session.transport import TransportConnector, dial

from .sshserver import client_config, host_for, write_ed25519_key


def closed_port() -> int:
    """A localhost port with nothing listening."""
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def silent_listener():
    """Accepts TCP (via backlog) but never speaks SSH."""
    sock = socket.socket()
    sock.bind(("127.0.0.1", 0))
    sock.listen(8)
    yield sock.getsockname()[1]
    sock.close()


class TestDial:

    def test_refused_is_unreachable_within_timeout(self):
        port = closed_port()
        start = time.monotonic()
        with pytest.raises(UnreachableError) as exc_info:
            dial("127.0.0.1", port, timeout=2.0)
        assert time.monotonic() - start < 2.5
        assert exc_info.value.port == port

    def test_name_resolution_failure(self):
        with pytest.raises(UnreachableError, match="name resolution"):
            dial("no-such-host.invalid", 22, timeout=2.0)

    def test_connects(self, silent_listener):
        sock = dial("127.0.0.1", silent_listener, timeout=2.0)
        assert sock.getpeername()[1] == silent_listener
        sock.close()

    def test_already_cancelled(self, silent_listener):
        cancel = CancelToken()
        cancel.cancel()
        with pytest.raises(SessionCancelledError):
            dial("127.0.0.1", silent_listener, timeout=2.0, cancel=cancel)


class TestConnect:

    def test_connect_and_authenticate(self, server, user_key):
        connector = TransportConnector()
        connection = connector.connect(host_for(server), client_config(user_key))
        try:
            assert connection.is_active
            assert connector.is_connected
            assert server.last.auth_users == ["alice"]
        finally:
            connection.close()
        assert connection.closed
        assert not connector.is_connected

    def test_invalid_host_before_network(self, user_key):
        host = HostRecord(name="bad", address="127.0.0.1", user="")
        with pytest.raises(ConfigurationError):
            TransportConnector().connect(host, client_config(user_key))

    def test_unreachable(self, user_key):
        host = HostRecord(name="down", address="127.0.0.1", user="alice", port=closed_port())
        with pytest.raises(UnreachableError):
            TransportConnector(connect_timeout=2.0).connect(host, client_config(user_key))

    def test_silent_server_times_out_in_handshake(self, silent_listener, user_key):
        host = HostRecord(name="mute", address="127.0.0.1", user="alice", port=silent_listener)
        start = time.monotonic()
        with pytest.raises(HandshakeFailedError) as exc_info:
            TransportConnector(connect_timeout=1.0).connect(host, client_config(user_key))
        assert time.monotonic() - start < 5
        assert exc_info.value.method == "KeyFile(test-key)"

    def test_rejected_key(self, server, tmp_path):
        stranger = write_ed25519_key(tmp_path / "stranger")
        with pytest.raises(HandshakeFailedError, match="rejected"):
            TransportConnector().connect(host_for(server), client_config(stranger))

    def test_unknown_host_key_rejected_by_default(self, server, user_key, tmp_path):
        policy = KnownHostsPolicy(str(tmp_path / "known_hosts"))
        with pytest.raises(UnknownHostKeyError):
            TransportConnector().connect(host_for(server), client_config(user_key, policy))
        assert server.interfaces[-1].auth_users == []

    def test_changed_host_key_fails_closed(self, server, user_key, other_host_key, tmp_path):
        path = tmp_path / "known_hosts"
        KnownHostsPolicy(str(path), on_unknown="pin").verify(
            "127.0.0.1", server.port, other_host_key
        )

        policy = KnownHostsPolicy(str(path), on_unknown="pin")
        with pytest.raises(HostKeyMismatchError) as exc_info:
            TransportConnector().connect(host_for(server), client_config(user_key, policy))
        assert exc_info.value.expected == fingerprint(other_host_key)

    def test_pinned_host_key_accepted(self, server, user_key, host_key, tmp_path):
        path = tmp_path / "known_hosts"
        KnownHostsPolicy(str(path), on_unknown="pin").verify("127.0.0.1", server.port, host_key)

        policy = KnownHostsPolicy(str(path))
        with TransportConnector().connect(host_for(server), client_config(user_key, policy)) as conn:
            assert conn.is_active


class TestConnectorOwnership:

    def test_busy_while_active(self, server, user_key):
        connector = TransportConnector()
        first = connector.connect(host_for(server), client_config(user_key))
        try:
            with pytest.raises(ConnectorBusyError):
                connector.connect(host_for(server), client_config(user_key))
            assert first.is_active
        finally:
            connector.close()
        assert first.closed

    def test_reconnect_after_close(self, server, user_key):
        connector = TransportConnector()
        connector.connect(host_for(server), client_config(user_key)).close()

        second = connector.connect(host_for(server), client_config(user_key))
        assert second.is_active
        second.close()

    def test_cancel_during_handshake(self, silent_listener, user_key):
        host = HostRecord(name="mute", address="127.0.0.1", user="alice", port=silent_listener)
        cancel = CancelToken()
        threading.Timer(0.3, cancel.cancel).start()

        start = time.monotonic()
        with pytest.raises(SessionCancelledError):
            TransportConnector(connect_timeout=10.0).connect(
                host, client_config(user_key), cancel=cancel
            )
        assert time.monotonic() - start < 5
