"""
sshm/models.py

Data models shared by the connection subsystem.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union, List, Dict, Any

from .errors import (
    SSHMError,
    ConfigurationError,
    UnreachableError,
    AuthExhaustedError,
    HandshakeFailedError,
    HostKeyMismatchError,
    UnknownHostKeyError,
    PtyRequestFailedError,
    ShellStartFailedError,
    SessionError,
    SessionCancelledError,
)

DEFAULT_SSH_PORT = 22


# =============================================================================
# Host records
# =============================================================================

@dataclass(frozen=True)
class HostRecord:
    """
    A host entry as supplied by the host store.

    Read-only to the connection subsystem.
    """
    name: str
    address: str
    user: str
    port: int = DEFAULT_SSH_PORT
    identity_path: Optional[str] = None
    proxy_jump: Optional[str] = None
    tags: tuple[str, ...] = ()

    @property
    def effective_port(self) -> int:
        """Port used for dialing; 22 when unset or zero."""
        return self.port or DEFAULT_SSH_PORT

    @property
    def target(self) -> str:
        return f"{self.user}@{self.address}:{self.effective_port}"

    def validate(self) -> None:
        """Reject records that cannot be dialled or authenticated."""
        if not self.address or not self.address.strip():
            raise ConfigurationError(f"host '{self.name}' has no address")
        if not self.user or not self.user.strip():
            raise ConfigurationError(f"host '{self.name}' has no user")
        if not 0 <= self.effective_port <= 65535:
            raise ConfigurationError(
                f"host '{self.name}' has invalid port {self.port}"
            )

    @classmethod
    def from_dict(cls, data: dict) -> HostRecord:
        """
        Build from a host store entry.

        Accepts both the store's short keys (``host``, ``identity``,
        ``proxy``) and the long attribute names.
        """
        address = data.get("address", data.get("host", ""))
        return cls(
            name=data.get("name") or address,
            address=address,
            user=data.get("user", ""),
            port=int(data.get("port") or 0) or DEFAULT_SSH_PORT,
            identity_path=data.get("identity_path", data.get("identity")) or None,
            proxy_jump=data.get("proxy_jump", data.get("proxy")) or None,
            tags=tuple(data.get("tags") or ()),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "host": self.address,
            "port": self.port,
            "user": self.user,
            "identity": self.identity_path,
            "proxy": self.proxy_jump,
            "tags": list(self.tags),
        }


def parse_proxy_jump(spec: str, default_user: str) -> List[HostRecord]:
    """
    Parse ``[user@]host[:port][,...]`` into hop records, first hop first.

    ``[v6addr]:port`` is accepted for IPv6 literals.
    """
    hops = []
    for raw in spec.split(","):
        raw = raw.strip()
        if not raw:
            continue

        user = default_user
        if "@" in raw:
            user, raw = raw.rsplit("@", 1)

        port = DEFAULT_SSH_PORT
        if raw.startswith("["):
            address, _, rest = raw[1:].partition("]")
            if rest.startswith(":"):
                port = _parse_port(rest[1:], spec)
        elif raw.count(":") == 1:
            address, port_text = raw.split(":")
            port = _parse_port(port_text, spec)
        else:
            address = raw

        if not address:
            raise ConfigurationError(f"invalid proxy jump '{spec}'")
        hops.append(HostRecord(name=address, address=address, user=user, port=port))

    return hops


def _parse_port(text: str, spec: str) -> int:
    try:
        return int(text)
    except ValueError:
        raise ConfigurationError(f"invalid port in proxy jump '{spec}'") from None


# =============================================================================
# Authentication methods
# =============================================================================

@dataclass(frozen=True)
class NoneAuth:
    """The SSH "none" method. Carries no credentials."""

    def __str__(self) -> str:
        return "None"


@dataclass(frozen=True)
class PasswordAuth:
    """Recognised but unsupported: interactive prompting is deferred."""

    def __str__(self) -> str:
        return "Password"


@dataclass(frozen=True)
class AgentAuth:
    """Signers held by the local SSH agent."""

    def __str__(self) -> str:
        return "Agent"


@dataclass(frozen=True)
class KeyFileAuth:
    """A private key on disk."""
    path: str
    label: Optional[str] = None
    default: bool = False

    def __str__(self) -> str:
        return f"KeyFile({self.label or self.path})"


AuthMethod = Union[NoneAuth, PasswordAuth, AgentAuth, KeyFileAuth]


@dataclass(frozen=True)
class AuthAttempt:
    """One failed authentication method and why."""
    method: AuthMethod
    reason: str

    def __str__(self) -> str:
        return f"{self.method}: {self.reason}"


# =============================================================================
# Outcomes
# =============================================================================

class OutcomeKind(Enum):
    """Caller-facing result categories."""
    SUCCESS = "success"
    EXITED = "exited"
    CONFIGURATION = "configuration"
    UNREACHABLE = "unreachable"
    AUTH_EXHAUSTED = "auth_exhausted"
    HANDSHAKE_FAILED = "handshake_failed"
    HOST_KEY_MISMATCH = "host_key_mismatch"
    HOST_KEY_UNKNOWN = "host_key_unknown"
    PTY_REQUEST_FAILED = "pty_request_failed"
    SHELL_START_FAILED = "shell_start_failed"
    SESSION_ERROR = "session_error"
    SESSION_CANCELLED = "session_cancelled"


# Most specific classes first
_ERROR_KINDS = (
    (ConfigurationError, OutcomeKind.CONFIGURATION),
    (UnreachableError, OutcomeKind.UNREACHABLE),
    (AuthExhaustedError, OutcomeKind.AUTH_EXHAUSTED),
    (HandshakeFailedError, OutcomeKind.HANDSHAKE_FAILED),
    (HostKeyMismatchError, OutcomeKind.HOST_KEY_MISMATCH),
    (UnknownHostKeyError, OutcomeKind.HOST_KEY_UNKNOWN),
    (PtyRequestFailedError, OutcomeKind.PTY_REQUEST_FAILED),
    (ShellStartFailedError, OutcomeKind.SHELL_START_FAILED),
    (SessionCancelledError, OutcomeKind.SESSION_CANCELLED),
    (SessionError, OutcomeKind.SESSION_ERROR),
)


@dataclass
class Outcome:
    """Result of a connect/interact/check operation."""
    kind: OutcomeKind
    phase: Optional[str] = None
    message: str = ""
    exit_status: Optional[int] = None
    attempted_methods: List[str] = field(default_factory=list)
    method: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.kind in (OutcomeKind.SUCCESS, OutcomeKind.EXITED)

    @classmethod
    def success(cls, message: str = "") -> Outcome:
        return cls(OutcomeKind.SUCCESS, message=message)

    @classmethod
    def exited(cls, status: int) -> Outcome:
        return cls(OutcomeKind.EXITED, exit_status=status,
                   message=f"remote exited with status {status}")

    @classmethod
    def from_error(cls, error: SSHMError) -> Outcome:
        for error_type, kind in _ERROR_KINDS:
            if isinstance(error, error_type):
                break
        else:
            kind = OutcomeKind.SESSION_ERROR

        outcome = cls(kind, phase=error.phase, message=str(error))
        if isinstance(error, AuthExhaustedError):
            outcome.attempted_methods = error.attempted_methods
        if isinstance(error, HandshakeFailedError):
            outcome.method = error.method
        return outcome

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "phase": self.phase,
            "message": self.message,
            "exit_status": self.exit_status,
            "attempted_methods": self.attempted_methods,
            "method": self.method,
        }

    def __str__(self) -> str:
        return self.message or self.kind.value
