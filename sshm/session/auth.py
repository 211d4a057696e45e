"""
Credential resolution.

Turns a HostRecord into the signer set used for one connection attempt.
Precedence is agent, then an explicitly pinned identity file, then the
conventional default keys. Failures of individual default keys are soft:
they are recorded, never raised on their own.
"""

from __future__ import annotations
import logging
import os
from dataclasses import dataclass, field
from io import StringIO
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional, Sequence

import paramiko

from ..errors import AuthError, AuthExhaustedError
from ..models import (
    HostRecord, AuthMethod, AuthAttempt,
    NoneAuth, PasswordAuth, AgentAuth, KeyFileAuth,
)
from .hostkeys import HostKeyPolicy, KnownHostsPolicy

logger = logging.getLogger(__name__)


# Conventional key names under ~/.ssh, in the order they are tried
DEFAULT_KEY_FILES = (
    ("id_ed25519", "default ed25519"),
    ("id_rsa", "default rsa"),
    ("id_ecdsa", "default ecdsa"),
    ("id_dsa", "default dsa"),
)

AGENT_SOCKET_ENV = "SSH_AUTH_SOCK"


@dataclass(frozen=True)
class ClientSessionConfig:
    """
    Everything the connector needs for one handshake.

    Built fresh per connection attempt and never mutated afterwards.
    ``agent`` is set when the signers live in an agent; the connection
    that uses this config takes ownership of it.
    """
    user: str
    signers: tuple[paramiko.PKey, ...]
    host_key_policy: HostKeyPolicy
    methods: tuple[AuthMethod, ...] = ()
    agent: Optional[paramiko.Agent] = field(default=None, compare=False)

    @property
    def method_label(self) -> str:
        if not self.methods:
            return "no method"
        return ", ".join(str(m) for m in self.methods)


@dataclass(frozen=True)
class SignerCollection:
    """Result of trying a list of key files: what loaded and what did not."""
    signers: tuple[paramiko.PKey, ...] = ()
    loaded: tuple[AuthMethod, ...] = ()
    failures: tuple[AuthAttempt, ...] = ()


# =============================================================================
# Key loading
# =============================================================================

def _key_classes() -> list:
    key_classes = [
        paramiko.Ed25519Key,
        paramiko.RSAKey,
        paramiko.ECDSAKey,
    ]
    # DSS was removed from newer paramiko releases
    if hasattr(paramiko, "DSSKey"):
        key_classes.append(paramiko.DSSKey)
    return key_classes


def parse_private_key(key_data: str) -> paramiko.PKey:
    """
    Parse private key text, trying each key type in turn.

    Raises:
        AuthError: encrypted key, or no key class accepts the data
    """
    if not key_data.strip():
        raise AuthError("key file is empty")

    for key_class in _key_classes():
        try:
            return key_class.from_private_key(StringIO(key_data))
        except paramiko.PasswordRequiredException:
            raise AuthError("key is passphrase protected") from None
        except (paramiko.SSHException, ValueError):
            continue

    raise AuthError("unable to parse private key")


def expand_path(path: str, home: Path) -> Path:
    """Expand a leading ``~`` against ``home``."""
    if path == "~":
        return home
    if path.startswith("~/") or path.startswith("~\\"):
        return home / path[2:]
    return Path(path)


def load_key_file(path: Path) -> paramiko.PKey:
    """
    Read and parse one private key file.

    Raises:
        AuthError: unreadable or unparsable
    """
    try:
        key_data = path.read_text()
    except FileNotFoundError:
        raise AuthError(f"{path} not found") from None
    except (OSError, UnicodeDecodeError) as e:
        raise AuthError(f"cannot read {path}: {e}") from None

    return parse_private_key(key_data)


def collect_signers(
    methods: Sequence[KeyFileAuth],
    loader: Callable[[KeyFileAuth], paramiko.PKey],
) -> SignerCollection:
    """
    Try every key file and accumulate what loads.

    A failing entry never stops later entries from being tried; its reason
    is kept in ``failures``.
    """
    signers = []
    loaded = []
    failures = []

    for method in methods:
        try:
            signer = loader(method)
        except AuthError as e:
            logger.debug(f"Skipping {method}: {e}")
            failures.append(AuthAttempt(method, e.detail))
            continue
        signers.append(signer)
        loaded.append(method)

    return SignerCollection(tuple(signers), tuple(loaded), tuple(failures))


# =============================================================================
# Resolver
# =============================================================================

class AuthResolver:
    """
    Resolve authentication for a host.

    Usage:
        resolver = AuthResolver()
        config = resolver.resolve_config(host)

    ``environ``, ``home`` and ``agent_factory`` exist so callers (and tests)
    can supply the process-boundary inputs explicitly.
    """

    def __init__(
        self,
        host_key_policy: Optional[HostKeyPolicy] = None,
        home: Optional[Path] = None,
        environ: Optional[dict] = None,
        agent_factory: Callable[[], paramiko.Agent] = paramiko.Agent,
        default_keys: Iterable[tuple[str, str]] = DEFAULT_KEY_FILES,
    ):
        self.host_key_policy = host_key_policy or KnownHostsPolicy()
        self.home = Path(home) if home else Path.home()
        self.environ = os.environ if environ is None else environ
        self.agent_factory = agent_factory
        self.default_keys = tuple(default_keys)

    @property
    def ssh_dir(self) -> Path:
        return self.home / ".ssh"

    def default_methods(self) -> list[KeyFileAuth]:
        return [
            KeyFileAuth(str(self.ssh_dir / filename), label=label, default=True)
            for filename, label in self.default_keys
        ]

    def resolve(self, host: HostRecord) -> Iterator[AuthMethod]:
        """Candidate methods in precedence order. Nothing is validated here."""
        yield AgentAuth()
        if host.identity_path:
            yield KeyFileAuth(host.identity_path)
        yield from self.default_methods()

    def build_config(self, host: HostRecord, method: AuthMethod) -> ClientSessionConfig:
        """
        Build a config from a single method.

        Raises:
            AuthError: the method yielded no usable signer
        """
        if isinstance(method, AgentAuth):
            agent, signers = self._agent_signers()
            return self._config(host, signers, (method,), agent=agent)

        if isinstance(method, KeyFileAuth):
            signer = self._load(method)
            return self._config(host, (signer,), (method,))

        if isinstance(method, PasswordAuth):
            raise AuthError("password authentication not implemented")

        if isinstance(method, NoneAuth):
            raise AuthError("method carries no credentials")

        raise TypeError(f"unsupported auth method {method!r}")

    def resolve_config(self, host: HostRecord) -> ClientSessionConfig:
        """
        Walk the precedence order and return the first usable config.

        Agent and explicit identity short-circuit on success. Default keys
        are tried as one group and every key that loads is kept.

        Raises:
            ConfigurationError: host record lacks address or user
            AuthExhaustedError: nothing produced a signer
        """
        host.validate()

        attempts: list[AuthAttempt] = []
        default_methods: list[KeyFileAuth] = []

        for method in self.resolve(host):
            if isinstance(method, KeyFileAuth) and method.default:
                default_methods.append(method)
                continue
            try:
                config = self.build_config(host, method)
            except AuthError as e:
                logger.debug(f"Auth method {method} unavailable: {e}")
                attempts.append(AuthAttempt(method, e.detail))
                continue
            logger.info(f"Using {method} for {host.target}")
            return config

        collection = collect_signers(default_methods, self._load)
        attempts.extend(collection.failures)

        if collection.signers:
            logger.info(
                f"Using {len(collection.signers)} default key(s) for {host.target}"
            )
            return self._config(host, collection.signers, collection.loaded)

        logger.warning(f"No usable credentials for {host.target}")
        raise AuthExhaustedError(attempts)

    # -------------------------------------------------------------------------

    def _config(self, host, signers, methods, agent=None) -> ClientSessionConfig:
        return ClientSessionConfig(
            user=host.user,
            signers=tuple(signers),
            host_key_policy=self.host_key_policy,
            methods=tuple(methods),
            agent=agent,
        )

    def _load(self, method: KeyFileAuth) -> paramiko.PKey:
        return load_key_file(expand_path(method.path, self.home))

    def _agent_signers(self) -> tuple[paramiko.Agent, tuple[paramiko.PKey, ...]]:
        if not self.environ.get(AGENT_SOCKET_ENV):
            raise AuthError(f"{AGENT_SOCKET_ENV} not set")

        try:
            agent = self.agent_factory()
        except (paramiko.SSHException, OSError) as e:
            raise AuthError(f"failed to connect to SSH agent: {e}") from None

        try:
            signers = tuple(agent.get_keys())
        except (paramiko.SSHException, OSError) as e:
            agent.close()
            raise AuthError(f"failed to list agent keys: {e}") from None

        if not signers:
            agent.close()
            raise AuthError("no keys available from SSH agent")

        logger.debug(f"Agent offered {len(signers)} key(s)")
        return agent, signers
