"""Three-way reconciliation of desired RRsets against the live zones.

For every desired RRset there are three possibilities:

  1. It does not exist in its zone yet - add it.
  2. It exists but differs (TTL, records, order) - replace it.
  3. It exists and matches - leave it alone.

Desired RRsets are keyed by owner name and the last one for a name wins.
When the winner and a live set at that name cannot coexist because one of
them is a CNAME, the live set is deleted in the same patch.

Separately, NS RRsets nobody asked for are removed. Apart from CNAME
conflicts, stale A/CNAME/PTR records are left in place.

All changes for one zone go out in a single PATCH.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

import requests

from powerdns_manager.models import ChangeType, RRSet, RRType, Zone
from powerdns_manager.powerdns import DNSServer, PowerDNSError

logger = logging.getLogger(__name__)


def owner_zone(rrset_name: str, zone_names: Iterable[str]) -> Optional[str]:
    """Most specific zone whose name is a suffix of rrset_name.

    Plain suffix matching is ambiguous when one zone is a suffix of another
    (``a.b.com.`` vs ``b.com.``); trying the longest names first picks the
    most specific owner.
    """
    for zone_name in sorted(zone_names, key=len, reverse=True):
        if rrset_name == zone_name or rrset_name.endswith(f".{zone_name}"):
            return zone_name
    return None


def _cname_conflicts(rrset: RRSet, existing: Sequence[RRSet]) -> List[RRSet]:
    """Live RRsets at the same name that cannot coexist with rrset.

    A CNAME owns its name outright, so a CNAME replacing other data, or other
    data replacing a CNAME, needs the old set removed in the same patch.
    """
    return [
        other
        for other in existing
        if other.type is not rrset.type
        and RRType.CNAME in (other.type, rrset.type)
    ]


class Reconciler:
    """Computes and applies per-zone patches."""

    def __init__(self, server: DNSServer):
        self._server = server

    def plan(self, desired: Sequence[RRSet], zones: Sequence[Zone]) -> Dict[str, List[RRSet]]:
        """Patch batches keyed by zone name; zones with nothing to do are omitted."""
        zone_names = [z.name for z in zones]
        protected: Set[str] = set(zone_names)
        batches: Dict[str, List[RRSet]] = {name: [] for name in zone_names}

        current: Dict[Tuple[str, RRType], RRSet] = {}
        current_by_name: Dict[str, List[RRSet]] = {}
        for zone in zones:
            for rrset in zone.rrsets:
                current[rrset.key] = rrset
                current_by_name.setdefault(rrset.name, []).append(rrset)

        # Last write wins per name.
        wanted: Dict[str, RRSet] = {}
        for rrset in desired:
            wanted[rrset.name] = rrset

        for name, rrset in wanted.items():
            zone_name = owner_zone(rrset.name, zone_names)
            if zone_name is None:
                logger.error(
                    f"Desired RRset {rrset.name} {rrset.type.value} did not match any master zone"
                )
                continue

            for conflict in _cname_conflicts(rrset, current_by_name.get(name, [])):
                if conflict.name in protected:
                    continue
                logger.info(
                    f"RRset {conflict.name} {conflict.type.value} conflicts with desired "
                    f"{rrset.type.value}, adding removal to patch list"
                )
                batches[zone_name].append(conflict.with_changetype(ChangeType.DELETE))

            existing = current.get(rrset.key)
            if existing is None:
                logger.info(f"RRset {rrset.name} {rrset.type.value} does not exist, adding to patch list")
                batches[zone_name].append(rrset.with_changetype(ChangeType.REPLACE))
            elif existing != rrset:
                logger.info(
                    f"RRset {rrset.name} {rrset.type.value} exists but is not ideal configuration, "
                    f"adding to patch list"
                )
                batches[zone_name].append(rrset.with_changetype(ChangeType.REPLACE))
            else:
                logger.debug(f"RRset {rrset.name} {rrset.type.value} already at desired config")

        wanted_names: Set[str] = set(wanted)
        for zone in zones:
            for rrset in zone.rrsets:
                if rrset.type is not RRType.NS:
                    continue
                # Apex NS sets are kept; delegations for zones that are no longer
                # managed are not protected and get removed below.
                if rrset.name in wanted_names or rrset.name in protected:
                    continue
                logger.info(f"NS RRset {rrset.name} in zone {zone.name} needs to be removed")
                batches[zone.name].append(rrset.with_changetype(ChangeType.DELETE))

        return {name: rrsets for name, rrsets in batches.items() if rrsets}

    def apply(self, batches: Dict[str, List[RRSet]]) -> Set[str]:
        """Send one PATCH per zone. Returns the zones that were patched successfully."""
        changed: Set[str] = set()
        for zone_name, rrsets in batches.items():
            try:
                self._server.patch_rrsets(zone_name, rrsets)
            except (PowerDNSError, requests.exceptions.RequestException) as e:
                logger.error(f"Failed to patch {len(rrsets)} RRsets in zone {zone_name}: {e}")
                continue
            logger.info(f"Patched {len(rrsets)} RRsets in zone {zone_name}")
            changed.add(zone_name)
        return changed

    def reconcile(self, desired: Sequence[RRSet], zones: Sequence[Zone]) -> Set[str]:
        return self.apply(self.plan(desired, zones))
