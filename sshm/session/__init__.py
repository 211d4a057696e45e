"""
Connection subsystem - credentials, transport, interactive shell, probing.

Components, leaves first:

- AuthResolver: ordered credential candidates and the signer set per host
- TransportConnector: TCP dial, SSH handshake, host-key policy, auth
- SessionDriver: channel, PTY, shell and concurrent I/O until exit
- probe: auth-free TCP reachability check

Host-key trust is decided by a HostKeyPolicy. KnownHostsPolicy is the
default; InsecurePolicy accepts anything and must be chosen explicitly.
"""

from .auth import (
    AuthResolver,
    ClientSessionConfig,
    SignerCollection,
    collect_signers,
    load_key_file,
    parse_private_key,
    DEFAULT_KEY_FILES,
)
from .cancel import CancelToken
from .driver import (
    SessionDriver,
    InteractiveSession,
    SessionState,
    DEFAULT_TERMINAL_MODES,
    encode_terminal_modes,
)
from .hostkeys import (
    HostKeyPolicy,
    InsecurePolicy,
    KnownHostsPolicy,
    fingerprint,
)
from .probe import ProbeResult, probe, probe_host, DEFAULT_PROBE_TIMEOUT
from .terminal import TerminalSize, terminal_size, raw_mode
from .transport import LiveConnection, TransportConnector, dial

__all__ = [
    # Auth
    "AuthResolver",
    "ClientSessionConfig",
    "SignerCollection",
    "collect_signers",
    "load_key_file",
    "parse_private_key",
    "DEFAULT_KEY_FILES",
    # Cancellation
    "CancelToken",
    # Session
    "SessionDriver",
    "InteractiveSession",
    "SessionState",
    "DEFAULT_TERMINAL_MODES",
    "encode_terminal_modes",
    # Host keys
    "HostKeyPolicy",
    "InsecurePolicy",
    "KnownHostsPolicy",
    "fingerprint",
    # Probe
    "ProbeResult",
    "probe",
    "probe_host",
    "DEFAULT_PROBE_TIMEOUT",
    # Terminal
    "TerminalSize",
    "terminal_size",
    "raw_mode",
    # Transport
    "LiveConnection",
    "TransportConnector",
    "dial",
]
