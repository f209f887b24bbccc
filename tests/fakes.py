"""In-memory collaborators shared by the unit tests."""

from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional, Sequence, Tuple

from powerdns_manager.inventory import InventoryError, InventorySource, LiveStateSource
from powerdns_manager.models import (
    ChangeType,
    EthernetInterface,
    Hardware,
    Network,
    NodeComponent,
    RRSet,
    Zone,
)
from powerdns_manager.powerdns import DNSServer, PowerDNSError

# =============================================================================
# Mock DNS Server
# =============================================================================


class FakeDNSServer(DNSServer):
    """DNS server with in-memory zones that applies patches and records calls."""

    def __init__(self, zones: Optional[Sequence[Zone]] = None):
        self.zones: Dict[str, Zone] = {z.name: copy.deepcopy(z) for z in zones or []}
        self.tsig_keys: Dict[str, Dict[str, Any]] = {}
        self.added_zones: List[Zone] = []
        self.patch_calls: List[Tuple[str, List[RRSet]]] = []
        self.notify_calls: List[str] = []
        self.rectify_calls: List[str] = []
        self.cryptokey_calls: List[Tuple[str, str]] = []
        self.tsig_calls: List[Tuple[str, str]] = []
        self.get_zone_errors: Dict[str, Exception] = {}
        self.patch_errors: Dict[str, PowerDNSError] = {}
        self.notify_errors: Dict[str, PowerDNSError] = {}

    def list_zones(self) -> List[Zone]:
        return [Zone(name=z.name, kind=z.kind) for z in self.zones.values()]

    def get_zone(self, name: str) -> Zone:
        if name in self.get_zone_errors:
            raise self.get_zone_errors[name]
        if name not in self.zones:
            raise PowerDNSError(404, "Not Found")
        return copy.deepcopy(self.zones[name])

    def add_zone(self, zone: Zone) -> Zone:
        stored = copy.deepcopy(zone)
        self.zones[zone.name] = stored
        self.added_zones.append(copy.deepcopy(zone))
        return copy.deepcopy(stored)

    def patch_rrsets(self, zone_name: str, rrsets: Sequence[RRSet]) -> None:
        self.patch_calls.append((zone_name, list(rrsets)))
        if zone_name in self.patch_errors:
            raise self.patch_errors[zone_name]
        zone = self.zones[zone_name]
        for rrset in rrsets:
            zone.rrsets = [r for r in zone.rrsets if r.key != rrset.key]
            if rrset.changetype is ChangeType.REPLACE:
                zone.rrsets.append(rrset)

    def rectify_zone(self, name: str) -> str:
        self.rectify_calls.append(name)
        return "Rectified"

    def notify_zone(self, name: str) -> str:
        if name in self.notify_errors:
            raise self.notify_errors[name]
        self.notify_calls.append(name)
        return "Notification queued"

    def add_cryptokey(self, zone_name: str, private_key: str) -> None:
        self.cryptokey_calls.append((zone_name, private_key))

    def get_tsig_key(self, name: str) -> Dict[str, Any]:
        if name not in self.tsig_keys:
            raise PowerDNSError(404, "Not Found")
        return dict(self.tsig_keys[name])

    def add_tsig_key(self, key: Dict[str, Any]) -> Dict[str, Any]:
        self.tsig_calls.append(("add", key["name"]))
        self.tsig_keys[key["name"]] = dict(key)
        return dict(key)

    def replace_tsig_key(self, name: str, key: Dict[str, Any]) -> Dict[str, Any]:
        self.tsig_calls.append(("replace", name))
        self.tsig_keys[name] = dict(key)
        return dict(key)

    def rrset(self, zone_name: str, name: str, rrtype) -> Optional[RRSet]:
        for rrset in self.zones[zone_name].rrsets:
            if rrset.name == name and rrset.type is rrtype:
                return rrset
        return None


# =============================================================================
# Mock Inventory and Live State
# =============================================================================


class FakeInventory(InventorySource):
    def __init__(
        self,
        networks: Optional[List[Network]] = None,
        hardware: Optional[List[Hardware]] = None,
        fail: bool = False,
    ):
        self.networks = networks or []
        self.hardware = hardware or []
        self.fail = fail

    def get_networks(self) -> List[Network]:
        if self.fail:
            raise InventoryError("SLS unavailable")
        return list(self.networks)

    def get_hardware(self) -> List[Hardware]:
        return list(self.hardware)


class FakeLiveState(LiveStateSource):
    def __init__(
        self,
        interfaces: Optional[List[EthernetInterface]] = None,
        components: Optional[List[NodeComponent]] = None,
    ):
        self.interfaces = interfaces or []
        self.components = components or []

    def get_ethernet_interfaces(self) -> List[EthernetInterface]:
        return list(self.interfaces)

    def get_node_components(self) -> List[NodeComponent]:
        return list(self.components)


# =============================================================================
# Topology Builders
# =============================================================================


def sls_network(
    name: str, ip_ranges: List[str], reservations: List[Dict[str, Any]], cidr: str = ""
) -> Network:
    """Network built from the SLS JSON shape."""
    return Network.from_dict(
        {
            "Name": name,
            "IPRanges": ip_ranges,
            "ExtraProperties": {
                "CIDR": cidr or ip_ranges[0],
                "Subnets": [
                    {
                        "Name": "bootstrap_dhcp",
                        "CIDR": cidr or ip_ranges[0],
                        "Gateway": "",
                        "IPReservations": reservations,
                    }
                ],
            },
        }
    )
