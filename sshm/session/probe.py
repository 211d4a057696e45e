"""
Auth-free reachability check: TCP connect, then close.
"""

from __future__ import annotations
import logging
import time
from dataclasses import dataclass
from typing import Optional

from ..errors import UnreachableError
from ..models import HostRecord
from .transport import dial

logger = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT = 5.0


@dataclass
class ProbeResult:
    """Outcome of a single probe."""
    address: str
    port: int
    reachable: bool
    elapsed: float
    error: Optional[UnreachableError] = None

    def __str__(self) -> str:
        if self.reachable:
            return f"{self.address}:{self.port} reachable ({self.elapsed * 1000:.0f} ms)"
        return str(self.error)


def probe(address: str, port: int, timeout: float = DEFAULT_PROBE_TIMEOUT) -> ProbeResult:
    """
    Check that ``address:port`` accepts a TCP connection within ``timeout``.

    No SSH traffic is exchanged and no credentials are consulted. Name
    resolution and every resolved address share the one deadline.
    """
    start = time.monotonic()
    try:
        sock = dial(address, port, timeout)
    except UnreachableError as e:
        error = e
    else:
        sock.close()
        elapsed = time.monotonic() - start
        logger.debug(f"Probe {address}:{port} ok in {elapsed:.3f}s")
        return ProbeResult(address, port, True, elapsed)

    elapsed = time.monotonic() - start
    logger.debug(f"Probe {address}:{port} failed: {error.reason}")
    return ProbeResult(address, port, False, elapsed, error)


def probe_host(host: HostRecord, timeout: float = DEFAULT_PROBE_TIMEOUT) -> ProbeResult:
    """Probe a host record's address on its effective port."""
    return probe(host.address, host.effective_port, timeout)
