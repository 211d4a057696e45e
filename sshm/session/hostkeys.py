"""
Host-key verification policies.

The connector hands every presented server key to a policy after key
exchange and before authentication. The default is verification against a
persisted known-hosts file; accepting any key is an explicit opt-in.
"""

from __future__ import annotations
import base64
import hashlib
import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Optional

import paramiko

from ..errors import ConfigurationError, HostKeyMismatchError, UnknownHostKeyError
from ..models import DEFAULT_SSH_PORT

logger = logging.getLogger(__name__)

DEFAULT_KNOWN_HOSTS = "~/.ssh/known_hosts"

UNKNOWN_REJECT = "reject"
UNKNOWN_PIN = "pin"
UNKNOWN_PROMPT = "prompt"
UNKNOWN_HOST_ACTIONS = (UNKNOWN_REJECT, UNKNOWN_PIN, UNKNOWN_PROMPT)


def fingerprint(key: paramiko.PKey) -> str:
    """OpenSSH-style SHA256 fingerprint."""
    digest = hashlib.sha256(key.asbytes()).digest()
    return "SHA256:" + base64.b64encode(digest).decode("ascii").rstrip("=")


def known_hosts_name(hostname: str, port: int) -> str:
    """Entry name as written by OpenSSH: bare host on 22, ``[host]:port`` otherwise."""
    if port == DEFAULT_SSH_PORT:
        return hostname
    return f"[{hostname}]:{port}"


class HostKeyPolicy(ABC):
    """Decides whether to trust a server's host key."""

    name = "abstract"

    @abstractmethod
    def verify(self, hostname: str, port: int, key: paramiko.PKey) -> None:
        """Return normally to accept; raise a HostKeyError to reject."""
        pass

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"


class InsecurePolicy(HostKeyPolicy):
    """
    Accept any host key.

    UNSAFE: no protection against man-in-the-middle. Diagnostic and
    development use only.
    """

    name = "insecure"

    def verify(self, hostname: str, port: int, key: paramiko.PKey) -> None:
        logger.warning(
            f"INSECURE: accepting unverified {key.get_name()} host key "
            f"{fingerprint(key)} for {known_hosts_name(hostname, port)}"
        )


class KnownHostsPolicy(HostKeyPolicy):
    """
    Verify against a known_hosts file.

    A known name with a different key of the same type fails closed with
    HostKeyMismatchError. An unknown name, or a key type not yet recorded,
    is handled by ``on_unknown``:

    - ``reject``: fail closed with UnknownHostKeyError
    - ``pin``: append the key to the file and accept
    - ``prompt``: ask ``confirm(hostname, key)``; pin on True, reject otherwise

    A new key type for a name that already has keys is never pinned
    silently: ``pin`` rejects it and ``prompt`` still asks.
    """

    name = "known_hosts"

    def __init__(
        self,
        path: str = DEFAULT_KNOWN_HOSTS,
        on_unknown: str = UNKNOWN_REJECT,
        confirm: Optional[Callable[[str, paramiko.PKey], bool]] = None,
    ):
        if on_unknown not in UNKNOWN_HOST_ACTIONS:
            raise ConfigurationError(
                f"unknown host action must be one of {UNKNOWN_HOST_ACTIONS}, "
                f"not '{on_unknown}'"
            )
        if on_unknown == UNKNOWN_PROMPT and confirm is None:
            raise ConfigurationError("prompt mode requires a confirm callback")

        self.path = Path(os.path.expanduser(path))
        self.on_unknown = on_unknown
        self.confirm = confirm
        self._lock = threading.Lock()

    def _load(self) -> paramiko.HostKeys:
        host_keys = paramiko.HostKeys()
        if self.path.exists():
            try:
                host_keys.load(str(self.path))
            except OSError as e:
                logger.warning(f"Could not read known hosts {self.path}: {e}")
        return host_keys

    def verify(self, hostname: str, port: int, key: paramiko.PKey) -> None:
        name = known_hosts_name(hostname, port)
        key_type = key.get_name()
        presented = fingerprint(key)

        with self._lock:
            host_keys = self._load()
            known = host_keys.lookup(name)

            if known is not None and key_type in known:
                expected = known[key_type]
                if expected.asbytes() == key.asbytes():
                    logger.debug(f"Host key for {name} matches known hosts")
                    return
                logger.error(
                    f"Host key mismatch for {name}: expected "
                    f"{fingerprint(expected)}, got {presented}"
                )
                raise HostKeyMismatchError(name, key_type, fingerprint(expected), presented)

            if self.on_unknown == UNKNOWN_REJECT:
                raise UnknownHostKeyError(name, key_type, presented)

            if known and self.on_unknown == UNKNOWN_PIN:
                logger.error(
                    f"{name} is known with {sorted(known.keys())} but presented "
                    f"{key_type} {presented}; refusing to pin"
                )
                raise UnknownHostKeyError(name, key_type, presented)

            if self.on_unknown == UNKNOWN_PROMPT and not self.confirm(name, key):
                raise UnknownHostKeyError(name, key_type, presented)

            self._pin(host_keys, name, key)

    def _pin(self, host_keys: paramiko.HostKeys, name: str, key: paramiko.PKey) -> None:
        host_keys.add(name, key.get_name(), key)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        host_keys.save(str(self.path))
        logger.info(f"Pinned {key.get_name()} host key {fingerprint(key)} for {name}")

    def __repr__(self) -> str:
        return f"<KnownHostsPolicy {self.path} unknown={self.on_unknown}>"
