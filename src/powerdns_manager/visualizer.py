"""Read-only dump of every zone on the server as a YAML tree."""

from __future__ import annotations

from typing import Any, Dict, List, Sequence

import yaml

from powerdns_manager.models import RRSet, RRType, Zone
from powerdns_manager.names import is_reverse_zone
from powerdns_manager.powerdns import DNSServer


def cnames_pointing_at(name: str, rrsets: Sequence[RRSet]) -> List[str]:
    cnames: List[str] = []
    for rrset in rrsets:
        if rrset.type is not RRType.CNAME:
            continue
        if any(record.content == name for record in rrset.records):
            cnames.append(rrset.name)
    return cnames


def zone_branch(zone: Zone) -> Dict[str, Any]:
    branch: Dict[str, Any] = {}
    for rrset in zone.rrsets:
        if rrset.type in (RRType.CNAME, RRType.SOA):
            continue
        node: Dict[str, Any] = {}
        if rrset.type in (RRType.A, RRType.PTR):
            cnames = cnames_pointing_at(rrset.name, zone.rrsets)
            if cnames:
                node["CNAME"] = cnames
        if rrset.type in (RRType.NS, RRType.PTR):
            node["records"] = [record.content for record in rrset.records]
        branch[f"{rrset.type.value} {rrset.name}"] = node or None
    return branch


def build_tree(server: DNSServer) -> Dict[str, Any]:
    """Fetch every zone and build the tree plus a per-forward-zone name index."""
    zones: Dict[str, Any] = {}
    names: Dict[str, List[str]] = {}

    for summary in server.list_zones():
        zone = server.get_zone(summary.name)
        zones[zone.name] = zone_branch(zone)
        if not is_reverse_zone(zone.name):
            names[zone.name] = sorted(
                r.name for r in zone.rrsets if r.type not in (RRType.CNAME, RRType.SOA)
            )

    return {"zones": zones, "names": names}


def render_tree(tree: Dict[str, Any]) -> str:
    return yaml.safe_dump(tree, default_flow_style=False, sort_keys=False)
