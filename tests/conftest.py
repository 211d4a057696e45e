"""
Shared fixtures: keys, in-process SSH servers, isolated home directories.
"""

from __future__ import annotations

from pathlib import Path

import paramiko
import pytest

from sshm.session.auth import AuthResolver
from sshm.session.hostkeys import InsecurePolicy

from .sshserver import SSHTestServer, write_ed25519_key


@pytest.fixture(scope="session")
def host_key() -> paramiko.RSAKey:
    return paramiko.RSAKey.generate(2048)


@pytest.fixture(scope="session")
def other_host_key() -> paramiko.RSAKey:
    return paramiko.RSAKey.generate(2048)


@pytest.fixture
def home(tmp_path) -> Path:
    """Isolated home directory with an empty ~/.ssh."""
    home = tmp_path / "home"
    (home / ".ssh").mkdir(parents=True)
    return home


@pytest.fixture
def user_key(home) -> paramiko.Ed25519Key:
    """Default ed25519 identity written to ~/.ssh/id_ed25519."""
    return write_ed25519_key(home / ".ssh" / "id_ed25519")


@pytest.fixture
def ssh_server(host_key, user_key):
    """Factory for in-process servers that trust ``user_key``."""
    servers = []

    def factory(**kwargs) -> SSHTestServer:
        kwargs.setdefault("authorized_keys", [user_key])
        server = SSHTestServer(host_key, **kwargs).start()
        servers.append(server)
        return server

    yield factory

    for server in servers:
        server.stop()


@pytest.fixture
def server(ssh_server) -> SSHTestServer:
    return ssh_server()


@pytest.fixture
def resolver(home) -> AuthResolver:
    """Resolver confined to the test home, no agent, insecure host keys."""
    return AuthResolver(host_key_policy=InsecurePolicy(), home=home, environ={})
