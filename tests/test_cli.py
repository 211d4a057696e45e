import json
import socket

import pytest
from click.testing import CliRunner

from sshm import cli as cli_module
from sshm.cli import cli, format_table


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def env(tmp_path, home, monkeypatch):
    """Isolated HOME, no agent, insecure settings and an empty host store."""
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.delenv("SSH_AUTH_SOCK", raising=False)
    monkeypatch.setattr(cli_module, "_install_signal_handlers", lambda cancel, driver: None)

    config = tmp_path / "config.json"
    config.write_text(json.dumps({"host_key_policy": "insecure", "connect_timeout": 5.0}))
    hosts = tmp_path / "hosts.json"
    hosts.write_text(json.dumps({"hosts": []}))
    return config, hosts


def write_hosts(path, *entries):
    path.write_text(json.dumps({"hosts": list(entries)}))


def invoke(runner, env, *args, **kwargs):
    config, hosts = env
    return runner.invoke(cli, ["--config", str(config), "--hosts", str(hosts), *args], **kwargs)


def closed_port() -> int:
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def test_format_table_empty():
    assert format_table([], [("name", "NAME", 10)]) == "No results."


def test_list(runner, env):
    write_hosts(env[1],
                {"name": "web-1", "host": "10.0.0.1", "user": "deploy", "tags": ["prod"]},
                {"name": "lab", "host": "10.9.9.9", "user": "root"})

    result = invoke(runner, env, "list")
    assert result.exit_code == 0
    assert "web-1" in result.output
    assert "lab" in result.output
    assert "2 host(s)" in result.output

    result = invoke(runner, env, "list", "--tag", "prod", "--json")
    assert [h["name"] for h in json.loads(result.output)] == ["web-1"]


def test_connect_returns_remote_status(runner, env, server, user_key):
    write_hosts(env[1], {"name": "stub", "host": "127.0.0.1", "port": server.port, "user": "alice"})

    result = invoke(runner, env, "connect", "stub", "--width", "120", "--height", "30",
                    input=b"echo via-cli\nexit 4\n")
    assert result.exit_code == 4
    assert "via-cli" in result.output
    pty = server.last.pty_requests[0]
    assert (pty.width, pty.height) == (120, 30)


def test_connect_failure_exits_255(runner, env, user_key):
    write_hosts(env[1], {"name": "down", "host": "127.0.0.1", "port": closed_port(), "user": "alice"})

    result = invoke(runner, env, "connect", "down", input=b"")
    assert result.exit_code == 255
    assert "reachability" in result.output


def test_connect_unknown_name(runner, env):
    result = invoke(runner, env, "connect", "ghost")
    assert result.exit_code == 1
    assert "No host named 'ghost'" in result.output


def test_ping(runner, env):
    with socket.socket() as listener:
        listener.bind(("127.0.0.1", 0))
        listener.listen(1)
        port = listener.getsockname()[1]
        result = invoke(runner, env, "ping", "127.0.0.1", "--port", str(port))
    assert result.exit_code == 0
    assert "reachable" in result.output

    result = invoke(runner, env, "ping", "127.0.0.1", "--port", str(closed_port()), "--timeout", "1")
    assert result.exit_code == 1


def test_check(runner, env, server, user_key):
    write_hosts(env[1], {"name": "stub", "host": "127.0.0.1", "port": server.port, "user": "alice"})
    result = invoke(runner, env, "check", "stub")
    assert result.exit_code == 0
    assert "credentials: KeyFile(default ed25519)" in result.output


def test_check_lists_attempted_methods(runner, env, server, tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path / "nobody"))
    write_hosts(env[1], {"name": "stub", "host": "127.0.0.1", "port": server.port, "user": "alice"})

    result = invoke(runner, env, "check", "stub")
    assert result.exit_code == 1
    assert "tried Agent" in result.output
    assert "tried KeyFile(default rsa)" in result.output


def test_check_with_prompt_settings(runner, env, server, user_key, tmp_path):
    config, hosts = env
    config.write_text(json.dumps({
        "host_key_policy": "known_hosts",
        "unknown_hosts": "prompt",
        "known_hosts_path": str(tmp_path / "known_hosts"),
    }))
    write_hosts(hosts, {"name": "stub", "host": "127.0.0.1", "port": server.port, "user": "alice"})

    result = invoke(runner, env, "check", "stub")
    assert result.exit_code == 0
    assert "credentials: KeyFile(default ed25519)" in result.output
