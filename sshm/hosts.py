"""
Read-only access to the host store file.

The host manager owns and writes the store; this module only reads it so
the connection subsystem can be driven from the command line. JSON is the
store's native format; YAML is accepted for hand-written host lists.
"""

from __future__ import annotations
import json
import logging
import os
from pathlib import Path
from typing import Optional, Sequence, List, Union

import yaml

from .errors import ConfigurationError
from .models import HostRecord

logger = logging.getLogger(__name__)

YAML_SUFFIXES = (".yaml", ".yml")


def load_hosts(path: Union[str, Path]) -> List[HostRecord]:
    """
    Load host records from a JSON or YAML file.

    Accepts ``{"hosts": [...]}`` or a bare list. A missing file yields an
    empty list.

    Raises:
        ConfigurationError: the file exists but cannot be parsed
    """
    path = Path(os.path.expanduser(str(path)))
    if not path.exists():
        logger.debug(f"No host store at {path}")
        return []

    try:
        with open(path) as f:
            if path.suffix.lower() in YAML_SUFFIXES:
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(f"failed to read host store {path}: {e}") from e

    if isinstance(data, dict):
        entries = data.get("hosts") or []
    elif isinstance(data, list):
        entries = data
    elif data is None:
        entries = []
    else:
        raise ConfigurationError(f"unexpected host store layout in {path}")

    hosts = []
    for entry in entries:
        if not isinstance(entry, dict):
            logger.warning(f"Skipping malformed host entry in {path}: {entry!r}")
            continue
        try:
            hosts.append(HostRecord.from_dict(entry))
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"bad host entry in {path}: {e}") from e

    logger.debug(f"Loaded {len(hosts)} host(s) from {path}")
    return hosts


def find_host(hosts: Sequence[HostRecord], name: str) -> Optional[HostRecord]:
    """Find by name first, then by address."""
    for host in hosts:
        if host.name == name:
            return host
    for host in hosts:
        if host.address == name:
            return host
    return None
