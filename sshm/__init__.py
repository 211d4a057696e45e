"""
sshm - connection subsystem of an SSH host manager.

Given a stored host record, sshm:
- Resolves credentials (agent, identity file, default keys)
- Dials, handshakes and authenticates with host-key verification
- Runs an interactive PTY shell wired to the local terminal
- Reports how the session ended, or in which phase it failed

Jump hosts are followed through ``proxy_jump``.
"""

__version__ = "0.1.0"

from .api import check_connection, connect_and_interact, open_connection
from .config import Settings, SettingsManager
from .errors import (
    SSHMError,
    ConfigurationError,
    UnreachableError,
    AuthError,
    AuthExhaustedError,
    ProtocolError,
    HandshakeFailedError,
    HostKeyError,
    HostKeyMismatchError,
    UnknownHostKeyError,
    SessionError,
    PtyRequestFailedError,
    ShellStartFailedError,
    SessionCancelledError,
)
from .hosts import find_host, load_hosts
from .models import (
    HostRecord,
    AgentAuth,
    KeyFileAuth,
    PasswordAuth,
    NoneAuth,
    Outcome,
    OutcomeKind,
)
from .session import (
    AuthResolver,
    CancelToken,
    SessionDriver,
    TransportConnector,
    KnownHostsPolicy,
    InsecurePolicy,
    probe,
)

__all__ = [
    # Entry points
    "check_connection",
    "connect_and_interact",
    "open_connection",
    # Config
    "Settings",
    "SettingsManager",
    "load_hosts",
    "find_host",
    # Models
    "HostRecord",
    "AgentAuth",
    "KeyFileAuth",
    "PasswordAuth",
    "NoneAuth",
    "Outcome",
    "OutcomeKind",
    # Errors
    "SSHMError",
    "ConfigurationError",
    "UnreachableError",
    "AuthError",
    "AuthExhaustedError",
    "ProtocolError",
    "HandshakeFailedError",
    "HostKeyError",
    "HostKeyMismatchError",
    "UnknownHostKeyError",
    "SessionError",
    "PtyRequestFailedError",
    "ShellStartFailedError",
    "SessionCancelledError",
    # Session
    "AuthResolver",
    "CancelToken",
    "SessionDriver",
    "TransportConnector",
    "KnownHostsPolicy",
    "InsecurePolicy",
    "probe",
]
