"""DNSSEC and TSIG key material.

One file per key. Files ending in ``.tsig`` hold a PowerDNS TSIG key as a
JSON object and are named after the key; every other file is private DNSSEC
key material for the zone it is named after.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Optional

from powerdns_manager.models import DNSKey, DNSKeyType
from powerdns_manager.powerdns import DNSServer, PowerDNSError

logger = logging.getLogger(__name__)

TSIG_EXTENSION = ".tsig"


def load_keys(key_directory: str) -> List[DNSKey]:
    """Load every key file in key_directory. Raises OSError/ValueError."""
    if not key_directory:
        raise ValueError("blank key directory")

    keys: List[DNSKey] = []
    for path in sorted(Path(key_directory).iterdir()):
        if path.is_dir() or path.name.startswith("."):
            continue

        data = path.read_text("utf-8")
        if path.name.endswith(TSIG_EXTENSION):
            keys.append(
                DNSKey(name=path.name[: -len(TSIG_EXTENSION)], data=data, type=DNSKeyType.TSIG)
            )
        else:
            keys.append(DNSKey(name=path.name, data=data, type=DNSKeyType.DNSSEC))
    return keys


def tsig_key_ids(keys: List[DNSKey]) -> List[str]:
    return [k.name for k in keys if k.type is DNSKeyType.TSIG]


def dnssec_key_for_zone(keys: List[DNSKey], zone_name: str) -> Optional[DNSKey]:
    """Custom DNSSEC key named after zone_name (trailing dot ignored), if any."""
    bare = zone_name.rstrip(".")
    for key in keys:
        if key.type is DNSKeyType.DNSSEC and key.name == bare:
            return key
    return None


def add_or_update_tsig_key(server: DNSServer, key: DNSKey) -> bool:
    """Make sure the server holds this TSIG key. Returns True if it changed anything."""
    try:
        new_key = json.loads(key.data)
    except json.JSONDecodeError as e:
        raise ValueError(f"failed to unmarshal TSIG key {key.name}: {e}") from e
    if not isinstance(new_key, dict) or not new_key.get("key"):
        raise ValueError(f"TSIG key {key.name} has no key material")

    try:
        existing = server.get_tsig_key(key.name)
    except PowerDNSError as e:
        if e.status_code != 404:
            raise
        existing = {}

    if existing.get("key"):
        if existing["key"] == new_key["key"]:
            logger.debug(f"TSIG key {key.name} already up to date")
            return False
        server.replace_tsig_key(key.name, new_key)
        logger.info(f"Replaced TSIG key {key.name}")
        return True

    server.add_tsig_key(new_key)
    logger.info(f"Added TSIG key {key.name}")
    return True
