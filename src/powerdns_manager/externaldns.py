"""PTR bridge for records published by external-dns.

external-dns writes an A record plus a TXT ownership record carrying
``heritage=external-dns``. For each such A record this pass adds a PTR in
the matching reverse zone and a TXT marker of its own next to it, so a later
pass can tell which PTRs it created. Marked PTRs whose A record has gone away
are deleted together with their marker.

The record set published by external-dns is always authoritative: an
existing PTR pointing elsewhere is replaced.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Set, Tuple

from powerdns_manager.models import ChangeType, RRSet, RRType, Zone, make_rrset
from powerdns_manager.names import reverse_name_without_zeros, reverse_zone_name
from powerdns_manager.powerdns import DNSServer
from powerdns_manager.reconcile import Reconciler, owner_zone

logger = logging.getLogger(__name__)

EXTERNAL_DNS_HERITAGE = "heritage=external-dns"
MANAGER_SIGNATURE = "externaldns-manager"


def marker_content(a_name: str) -> str:
    # TXT content must be quoted.
    return f'"{MANAGER_SIGNATURE}/{a_name}"'


def _first_content(rrset: RRSet) -> str:
    return rrset.records[0].content if rrset.records else ""


class ExternalDNSBridge:
    """Builds and applies one pass of PTR additions and stale deletions."""

    def __init__(self, server: DNSServer):
        self._server = server
        self._reconciler = Reconciler(server)

    def fetch_zones(self) -> List[Zone]:
        return [self._server.get_zone(z.name) for z in self._server.list_zones()]

    def records_for_external(
        self, txt: RRSet, zone: Zone, zone_names: Set[str]
    ) -> List[Tuple[RRSet, RRSet]]:
        """(PTR, marker TXT) pairs for the A record that txt marks."""
        pairs: List[Tuple[RRSet, RRSet]] = []
        for rrset in zone.rrsets:
            if rrset.type is not RRType.A or rrset.name != txt.name:
                continue
            for record in rrset.records:
                try:
                    reverse_zone = reverse_zone_name(f"{record.content}/32")
                except ValueError as e:
                    logger.error(f"Failed to parse IP {record.content!r} of {rrset.name}: {e}")
                    continue
                if reverse_zone not in zone_names:
                    logger.error(
                        f"Reverse zone {reverse_zone} for {rrset.name} does not match any existing zone"
                    )
                    continue
                ptr_name = reverse_name_without_zeros(record.content)
                logger.debug(f"Generating PTR {ptr_name} for {rrset.name}")
                pairs.append(
                    (
                        make_rrset(ptr_name, RRType.PTR, rrset.name),
                        make_rrset(ptr_name, RRType.TXT, marker_content(rrset.name)),
                    )
                )
        return pairs

    def stale_records(self, txt: RRSet, zone: Zone, all_zones: Sequence[Zone]) -> List[RRSet]:
        """Deletions for a marker whose PTR or A record is gone; empty when still valid."""
        ptr: Optional[RRSet] = None
        for rrset in zone.rrsets:
            if rrset.type is RRType.PTR and rrset.name == txt.name:
                ptr = rrset
                break

        if ptr is None:
            logger.error(f"Cannot find PTR record for marker {txt.name}, deleting orphaned marker")
            return [txt.with_changetype(ChangeType.DELETE)]

        target = _first_content(ptr)
        for candidate_zone in all_zones:
            for rrset in candidate_zone.rrsets:
                if rrset.type is not RRType.A or not target.endswith(rrset.name):
                    continue
                for record in rrset.records:
                    if reverse_name_without_zeros(record.content) == ptr.name:
                        logger.debug(f"Found A record {rrset.name} for {ptr.name}, nothing to do")
                        return []

        logger.info(f"Stale records scheduled for deletion: PTR and TXT {ptr.name} -> {target}")
        return [ptr.with_changetype(ChangeType.DELETE), txt.with_changetype(ChangeType.DELETE)]

    def plan(self, zones: Sequence[Zone]) -> Dict[str, List[RRSet]]:
        zone_names = {z.name for z in zones}
        changes: List[RRSet] = []
        seen_ptrs: Set[str] = set()

        for zone in zones:
            logger.debug(f"Processing zone {zone.name}")
            for rrset in zone.rrsets:
                if rrset.type is not RRType.TXT:
                    continue
                content = _first_content(rrset)
                if EXTERNAL_DNS_HERITAGE in content:
                    for ptr, marker in self.records_for_external(rrset, zone, zone_names):
                        # PowerDNS rejects a PATCH carrying the same RRset twice, and many
                        # services share one load balancer address.
                        if ptr.name in seen_ptrs:
                            logger.debug(f"Refusing to add duplicate PTR {ptr.name}")
                            continue
                        seen_ptrs.add(ptr.name)
                        changes.extend([ptr, marker])
                elif MANAGER_SIGNATURE in content:
                    changes.extend(self.stale_records(rrset, zone, zones))
                else:
                    logger.debug(f"Ignoring TXT record {rrset.name} without a known signature")

        batches: Dict[str, List[RRSet]] = {}
        for rrset in changes:
            zone_name = owner_zone(rrset.name, zone_names)
            if zone_name is None:
                logger.error(f"RRset {rrset.name} did not match any zone")
                continue
            batches.setdefault(zone_name, []).append(rrset)
        return batches

    def run_once(self) -> Set[str]:
        logger.info("Processing records...")
        return self._reconciler.apply(self.plan(self.fetch_zones()))
