import paramiko
import pytest

from sshm.errors import AuthError, AuthExhaustedError, ConfigurationError
from sshm.models import AgentAuth, HostRecord, KeyFileAuth, NoneAuth, PasswordAuth
from sshm.session.auth import (
    AuthResolver,
    collect_signers,
    expand_path,
    load_key_file,
    parse_private_key,
)
from sshm.session.hostkeys import InsecurePolicy

from .sshserver import FakeAgent, ed25519_private_text, write_ed25519_key


HOST = HostRecord(name="edge", address="203.0.113.5", port=22, user="admin", identity_path="")


def make_resolver(home, environ=None, agent=None, **kwargs):
    return AuthResolver(
        host_key_policy=InsecurePolicy(),
        home=home,
        environ=environ or {},
        agent_factory=lambda: agent,
        **kwargs,
    )


class TestKeyLoading:

    def test_parse_ed25519(self):
        key = parse_private_key(ed25519_private_text())
        assert key.get_name() == "ssh-ed25519"

    def test_parse_garbage(self):
        with pytest.raises(AuthError, match="unable to parse"):
            parse_private_key("not a key\n")

    def test_encrypted_key(self, tmp_path):
        path = tmp_path / "id_rsa"
        paramiko.RSAKey.generate(2048).write_private_key_file(str(path), password="hunter2")
        with pytest.raises(AuthError, match="passphrase"):
            load_key_file(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(AuthError, match="not found"):
            load_key_file(tmp_path / "nope")

    def test_expand_path(self, tmp_path):
        assert expand_path("~/.ssh/id_rsa", tmp_path) == tmp_path / ".ssh" / "id_rsa"
        assert expand_path("/etc/key", tmp_path).as_posix() == "/etc/key"


class TestCollectSigners:

    def test_failure_does_not_stop_later_entries(self):
        good = object()

        def loader(method):
            if method.path == "bad":
                raise AuthError("bad is broken")
            return good

        result = collect_signers([KeyFileAuth("bad"), KeyFileAuth("good")], loader)
        assert result.signers == (good,)
        assert result.loaded == (KeyFileAuth("good"),)
        assert [a.reason for a in result.failures] == ["bad is broken"]


class TestResolve:

    def test_order_agent_identity_defaults(self, home):
        host = HostRecord(name="web", address="h", user="u", identity_path="~/.ssh/work")
        methods = list(make_resolver(home).resolve(host))

        assert methods[0] == AgentAuth()
        assert methods[1] == KeyFileAuth("~/.ssh/work")
        assert [str(m) for m in methods[2:]] == [
            "KeyFile(default ed25519)",
            "KeyFile(default rsa)",
            "KeyFile(default ecdsa)",
            "KeyFile(default dsa)",
        ]

    def test_password_and_none_are_not_usable(self, home):
        resolver = make_resolver(home)
        with pytest.raises(AuthError):
            resolver.build_config(HOST, PasswordAuth())
        with pytest.raises(AuthError):
            resolver.build_config(HOST, NoneAuth())


class TestResolveConfig:

    def test_invalid_host(self, home):
        with pytest.raises(ConfigurationError):
            make_resolver(home).resolve_config(HostRecord(name="x", address="h", user=""))

    def test_agent_wins(self, home, user_key):
        agent = FakeAgent([user_key])
        resolver = make_resolver(home, environ={"SSH_AUTH_SOCK": "/tmp/agent"}, agent=agent)

        config = resolver.resolve_config(HOST)
        assert config.methods == (AgentAuth(),)
        assert config.signers == (user_key,)
        assert config.agent is agent
        assert config.user == "admin"

    def test_empty_agent_falls_through_and_is_closed(self, home, user_key):
        agent = FakeAgent([])
        resolver = make_resolver(home, environ={"SSH_AUTH_SOCK": "/tmp/agent"}, agent=agent)

        config = resolver.resolve_config(HOST)
        assert agent.closed
        assert config.agent is None
        assert str(config.methods[0]) == "KeyFile(default ed25519)"

    def test_explicit_identity(self, home):
        key = write_ed25519_key(home / "keys" / "work")
        host = HostRecord(name="web", address="h", user="u", identity_path="~/keys/work")

        config = make_resolver(home).resolve_config(host)
        assert config.methods == (KeyFileAuth("~/keys/work"),)
        assert config.signers[0].asbytes() == key.asbytes()

    def test_unreadable_identity_falls_back_to_defaults(self, home, user_key):
        host = HostRecord(name="web", address="h", user="u", identity_path="~/keys/missing")
        config = make_resolver(home).resolve_config(host)
        assert config.signers[0].asbytes() == user_key.asbytes()

    def test_all_loadable_defaults_kept(self, home):
        write_ed25519_key(home / ".ssh" / "id_ed25519")
        paramiko.RSAKey.generate(2048).write_private_key_file(str(home / ".ssh" / "id_rsa"))
        (home / ".ssh" / "id_ecdsa").write_text("garbage")

        config = make_resolver(home).resolve_config(HOST)
        assert [str(m) for m in config.methods] == [
            "KeyFile(default ed25519)",
            "KeyFile(default rsa)",
        ]
        assert len(config.signers) == 2

    def test_exhausted_lists_every_method(self, home):
        with pytest.raises(AuthExhaustedError) as exc_info:
            make_resolver(home).resolve_config(HOST)

        assert exc_info.value.attempted_methods == [
            "Agent",
            "KeyFile(default ed25519)",
            "KeyFile(default rsa)",
            "KeyFile(default ecdsa)",
            "KeyFile(default dsa)",
        ]
        assert "SSH_AUTH_SOCK not set" in str(exc_info.value)
