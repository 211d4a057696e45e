import socket
import time

from sshm.models import HostRecord
from sshm.session.probe import probe, probe_host


def test_reachable():
    with socket.socket() as listener:
        listener.bind(("127.0.0.1", 0))
        listener.listen(1)
        port = listener.getsockname()[1]

        result = probe("127.0.0.1", port, timeout=2.0)

    assert result.reachable
    assert result.error is None
    assert "reachable" in str(result)


def test_refused():
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        port = s.getsockname()[1]

    result = probe_host(HostRecord(name="down", address="127.0.0.1", user="u", port=port), 2.0)
    assert not result.reachable
    assert result.error.phase == "reachability"
    assert result.error.port == port


def test_slow_resolution_bounded_by_timeout(monkeypatch):
    real_getaddrinfo = socket.getaddrinfo

    def slow_getaddrinfo(*args, **kwargs):
        time.sleep(2.0)
        return real_getaddrinfo(*args, **kwargs)

    monkeypatch.setattr(socket, "getaddrinfo", slow_getaddrinfo)

    result = probe("slow.example", 22, timeout=0.3)
    assert not result.reachable
    assert "name resolution timed out" in result.error.reason
    assert result.elapsed < 1.5
