"""
sshm/errors.py

Exception hierarchy for the connection subsystem.

Every error carries the phase it occurred in so callers can tell
"host is down" from "wrong key" from "host key changed" without
parsing messages.
"""

from __future__ import annotations
from typing import Optional, Sequence


PHASE_CONFIGURATION = "configuration"
PHASE_REACHABILITY = "reachability"
PHASE_AUTHENTICATION = "authentication"
PHASE_PROTOCOL = "protocol"
PHASE_SESSION = "session"
PHASE_CANCELLATION = "cancellation"


class SSHMError(Exception):
    """Base class for all sshm errors."""

    phase = "unknown"

    @property
    def detail(self) -> str:
        """Message without the phase prefix."""
        return super().__str__()

    def __str__(self) -> str:
        return f"[{self.phase}] {self.detail}"


# =============================================================================
# Configuration
# =============================================================================

class ConfigurationError(SSHMError, ValueError):
    """Host record or settings unusable; raised before any network activity."""

    phase = PHASE_CONFIGURATION


class ConnectorBusyError(ConfigurationError):
    """Connector already holds an active connection."""


# =============================================================================
# Reachability
# =============================================================================

class UnreachableError(SSHMError):
    """TCP dial failed: DNS, refused, no route or timeout."""

    phase = PHASE_REACHABILITY

    def __init__(self, address: str, port: int, reason: str):
        super().__init__(f"cannot reach {address}:{port}: {reason}")
        self.address = address
        self.port = port
        self.reason = reason


# =============================================================================
# Authentication
# =============================================================================

class AuthError(SSHMError):
    """A single authentication method produced no usable signer."""

    phase = PHASE_AUTHENTICATION


class AuthExhaustedError(AuthError):
    """
    No authentication method yielded a signer.

    ``attempts`` holds every method tried, in order, with the reason it
    failed.
    """

    def __init__(self, attempts: Sequence):
        self.attempts = tuple(attempts)
        if self.attempts:
            detail = "; ".join(f"{a.method}: {a.reason}" for a in self.attempts)
        else:
            detail = "no methods available"
        super().__init__(f"no usable credentials ({detail})")

    @property
    def attempted_methods(self) -> list[str]:
        return [str(a.method) for a in self.attempts]


# =============================================================================
# Protocol
# =============================================================================

class ProtocolError(SSHMError):
    """TCP connected but the SSH layer refused to proceed."""

    phase = PHASE_PROTOCOL


class HandshakeFailedError(ProtocolError):
    """Key exchange or authentication negotiation failed."""

    def __init__(self, method: str, reason: str):
        super().__init__(f"handshake failed using {method}: {reason}")
        self.method = method
        self.reason = reason


class HostKeyError(ProtocolError):
    """Host key rejected by policy. Never retried automatically."""

    def __init__(self, message: str, hostname: str, presented: str):
        super().__init__(message)
        self.hostname = hostname
        self.presented = presented


class HostKeyMismatchError(HostKeyError):
    """Server presented a key that differs from the pinned one."""

    def __init__(self, hostname: str, key_type: str, expected: str, presented: str):
        super().__init__(
            f"host key for {hostname} has changed ({key_type}): "
            f"expected {expected}, got {presented}",
            hostname,
            presented,
        )
        self.key_type = key_type
        self.expected = expected


class UnknownHostKeyError(HostKeyError):
    """First-seen host and the policy does not pin unknown keys."""

    def __init__(self, hostname: str, key_type: str, presented: str):
        super().__init__(
            f"host {hostname} is not in known hosts ({key_type} {presented})",
            hostname,
            presented,
        )
        self.key_type = key_type


# =============================================================================
# Session
# =============================================================================

class SessionError(SSHMError):
    """Channel failure or abnormal closure during an interactive session."""

    phase = PHASE_SESSION


class PtyRequestFailedError(SessionError):
    """Server refused the pseudo-terminal request."""


class ShellStartFailedError(SessionError):
    """Server refused to start a shell."""


# =============================================================================
# Cancellation
# =============================================================================

class SessionCancelledError(SSHMError):
    """Connect or session aborted by a cancel request."""

    phase = PHASE_CANCELLATION

    def __init__(self, stage: str, message: Optional[str] = None):
        super().__init__(message or f"cancelled during {stage}")
        self.stage = stage
