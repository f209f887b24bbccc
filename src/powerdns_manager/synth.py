"""Desired RRset synthesis.

Turns a topology snapshot into the complete set of records the zones should
hold:

  * static forward records from SLS IP reservations (A plus CNAME aliases,
    including the NID aliases on the hsn and chn networks),
  * static reverse PTRs for those reservations,
  * dynamic forward and reverse records from interfaces discovered by HSM.

Problems with an individual reservation or interface are logged and that
entry skipped; synthesis never aborts part way.
"""

from __future__ import annotations

import ipaddress
import logging
import re
from collections import OrderedDict
from typing import Iterable, List, Optional, Sequence, Tuple

from powerdns_manager.config import Config
from powerdns_manager.inventory import TopologySnapshot
from powerdns_manager.models import IPReservation, Network, RRSet, RRType, Zone, make_rrset
from powerdns_manager.names import forward_cidr_for_reverse_zone, reverse_name_for_ip, strip_dot

logger = logging.getLogger(__name__)

HSN_NETWORK = "hsn"
CHN_NETWORK = "chn"

XNAME_NIC_RE = re.compile(r"^(?P<xname>x.*)h(?P<nic>\d+)$")


class NIDLookupError(LookupError):
    """No NID could be resolved for a reservation."""


def resolve_nid_alias(
    reservation_name: str, snapshot: TopologySnapshot, nid_prefix: str = "nid"
) -> Tuple[str, int]:
    """Return (nid alias, HSN NIC index) for an ``x<location>h<nic>`` name.

    SLS extra properties are tried first; application nodes get their NID
    from HSM at discovery time so the component state is the fallback.
    """
    match = XNAME_NIC_RE.match(reservation_name)
    if match is None:
        raise NIDLookupError(f"name {reservation_name} not in correct format")

    xname = match.group("xname")
    nic = int(match.group("nic"))

    node = snapshot.hardware_map.get(xname)
    if node is None:
        raise NIDLookupError(f"unable to find node {xname} in SLS hardware map")

    if node.nid:
        return f"{nid_prefix}{node.nid:06d}", nic

    component = snapshot.component_map.get(xname)
    if component is not None and component.nid is not None:
        return f"{nid_prefix}{component.nid:06d}", nic

    raise NIDLookupError(f"unable to find NID in SMD or SLS for node {reservation_name}")


class DesiredRRSets:
    """Ordered, de-duplicated collection of desired RRsets.

    Keyed by owner name. An identical RRset is dropped; any other RRset at
    the same name replaces the earlier entry, whatever its type.
    """

    def __init__(self) -> None:
        self._rrsets: "OrderedDict[str, RRSet]" = OrderedDict()

    def add(self, rrset: RRSet) -> None:
        existing = self._rrsets.get(rrset.name)
        if existing is not None:
            if existing == rrset:
                logger.debug(f"Refusing to add duplicate RRset {rrset.name} {rrset.type.value}")
                return
            logger.debug(
                f"RRset {rrset.name} redefined: {existing.type.value} {existing.records[0].content} "
                f"-> {rrset.type.value} {rrset.records[0].content}"
            )
        self._rrsets[rrset.name] = rrset

    def extend(self, rrsets: Iterable[RRSet]) -> None:
        for rrset in rrsets:
            self.add(rrset)

    def __iter__(self):
        return iter(self._rrsets.values())

    def __len__(self) -> int:
        return len(self._rrsets)

    def to_list(self) -> List[RRSet]:
        return list(self._rrsets.values())


class RRSetSynthesizer:
    """Builds the desired RRsets for one snapshot."""

    def __init__(self, config: Config):
        self._config = config
        self._base = strip_dot(config.base_domain)

    def _fqdn(self, host: str, network_domain: str) -> str:
        return f"{host}.{network_domain}.{self._base}."

    def _primary_name(
        self, reservation: IPReservation, network_domain: str, snapshot: TopologySnapshot
    ) -> Tuple[str, Optional[str]]:
        """Primary A name for a reservation and the xname it resolved to, if any.

        Some reservations carry the node xname in the comment; then the xname
        owns the A record and the reservation name becomes a CNAME to it.
        """
        node = snapshot.hardware_map.get(reservation.comment) if reservation.comment else None
        if node is not None:
            return self._fqdn(node.xname, network_domain), node.xname
        return self._fqdn(reservation.name, network_domain), None

    # -------------------------------------------------------------------------
    # Static forward
    # -------------------------------------------------------------------------

    def static_forward(self, snapshot: TopologySnapshot) -> List[RRSet]:
        rrsets: List[RRSet] = []
        for network in snapshot.networks:
            domain = network.domain
            for subnet in network.subnets:
                for reservation in subnet.ip_reservations:
                    rrsets.extend(self._reservation_forward(reservation, domain, snapshot))
        return rrsets

    def _reservation_forward(
        self, reservation: IPReservation, domain: str, snapshot: TopologySnapshot
    ) -> List[RRSet]:
        if not reservation.name or "." in reservation.name:
            logger.debug(f"Skipping reservation with bad name {reservation.name!r} on {domain}")
            return []
        if not reservation.ip_address:
            logger.debug(f"Skipping reservation {reservation.name} on {domain} without an IP")
            return []

        primary_name, xname = self._primary_name(reservation, domain, snapshot)
        rrsets: List[RRSet] = []

        if xname is not None and xname != reservation.name:
            rrsets.append(
                make_rrset(self._fqdn(reservation.name, domain), RRType.CNAME, primary_name)
            )
        rrsets.append(make_rrset(primary_name, RRType.A, reservation.ip_address))

        for alias in reservation.aliases:
            # Aliases sometimes repeat the xname or are FQDNs; neither makes a sane CNAME.
            if "." in alias or (xname is not None and alias == xname):
                continue
            rrsets.append(make_rrset(self._fqdn(alias, domain), RRType.CNAME, primary_name))

        if domain == HSN_NETWORK:
            rrsets.extend(self._hsn_aliases(reservation, domain, primary_name, snapshot))
        elif domain == CHN_NETWORK:
            rrsets.extend(self._chn_aliases(reservation, domain, primary_name, snapshot))

        return rrsets

    def _hsn_aliases(
        self, reservation: IPReservation, domain: str, primary_name: str, snapshot: TopologySnapshot
    ) -> List[RRSet]:
        try:
            nid_alias, nic = resolve_nid_alias(reservation.name, snapshot, self._config.nid_prefix)
        except NIDLookupError as e:
            logger.error(f"Unable to determine HSN NID alias: {e}")
            return []

        hsn_alias = f"{nid_alias}-hsn{nic}"
        logger.debug(f"Create HSN NIC host alias {hsn_alias} for {reservation.name}")
        rrsets = [make_rrset(self._fqdn(hsn_alias, domain), RRType.CNAME, primary_name)]
        if nic == 0:
            rrsets.append(make_rrset(self._fqdn(nid_alias, domain), RRType.CNAME, primary_name))
        return rrsets

    def _chn_aliases(
        self, reservation: IPReservation, domain: str, primary_name: str, snapshot: TopologySnapshot
    ) -> List[RRSet]:
        try:
            nid_alias, _ = resolve_nid_alias(reservation.name, snapshot, self._config.nid_prefix)
        except NIDLookupError as e:
            # chn also carries switches and NCNs which never have a NID.
            logger.debug(f"Unable to determine CHN hostname: {e}")
            return []
        return [make_rrset(self._fqdn(nid_alias, domain), RRType.CNAME, primary_name)]

    # -------------------------------------------------------------------------
    # Static reverse
    # -------------------------------------------------------------------------

    def static_reverse(self, snapshot: TopologySnapshot, reverse_zone: Zone) -> List[RRSet]:
        """PTRs for every reservation on networks that map onto reverse_zone.

        The last octet of each network range is masked before comparing, so
        narrow subnets sharing a /24 all land in the same reverse zone.
        Raises ValueError when reverse_zone is not a reverse zone.
        """
        forward_cidr = forward_cidr_for_reverse_zone(reverse_zone.name)
        suffix = f".{reverse_zone.name}"

        rrsets: List[RRSet] = []
        for network in snapshot.networks:
            if not self._network_maps_to(network, forward_cidr):
                continue
            domain = network.domain
            for subnet in network.subnets:
                for reservation in subnet.ip_reservations:
                    if not reservation.name or "." in reservation.name:
                        continue
                    if not _is_ipv4(reservation.ip_address):
                        continue
                    ptr_name = reverse_name_for_ip(reservation.ip_address)
                    if not ptr_name.endswith(suffix):
                        continue
                    primary_name, _ = self._primary_name(reservation, domain, snapshot)
                    rrsets.append(make_rrset(ptr_name, RRType.PTR, primary_name))
        return rrsets

    @staticmethod
    def _network_maps_to(network: Network, forward_cidr: str) -> bool:
        for ip_range in network.ranges:
            try:
                address = ipaddress.IPv4Network(ip_range, strict=False).network_address
            except ValueError as e:
                logger.error(f"Failed to parse CIDR {ip_range!r} for network {network.name}: {e}")
                continue
            octets = str(address).split(".")
            octets[3] = "0"
            if ".".join(octets) == forward_cidr:
                return True
        return False

    # -------------------------------------------------------------------------
    # Dynamic forward and reverse
    # -------------------------------------------------------------------------

    def dynamic(self, snapshot: TopologySnapshot) -> Tuple[List[RRSet], List[RRSet]]:
        """Forward (A + alias CNAMEs) and reverse (PTR) records from live interfaces."""
        forward: List[RRSet] = []
        reverse: List[RRSet] = []

        for interface in snapshot.ethernet_interfaces:
            if not interface.ip_addresses or not interface.component_id:
                continue

            for ip in interface.ip_addresses:
                if not _is_ipv4(ip):
                    logger.debug(f"Failed to parse IP {ip!r} on interface of {interface.component_id}")
                    continue

                domain = snapshot.network_for_ip(ip)
                if domain is None:
                    logger.error(
                        f"Failed to find a network for {ip} on interface of {interface.component_id}"
                    )
                    continue

                primary_name = self._fqdn(interface.component_id, domain)
                forward.append(make_rrset(primary_name, RRType.A, ip))
                reverse.append(make_rrset(reverse_name_for_ip(ip), RRType.PTR, primary_name))

                hardware = snapshot.hardware_map.get(interface.component_id)
                if hardware is None:
                    logger.debug(f"No SLS hardware entry for {interface.component_id}")
                    continue
                for alias in hardware.aliases:
                    if "." in alias or alias == hardware.xname:
                        continue
                    forward.append(make_rrset(self._fqdn(alias, domain), RRType.CNAME, primary_name))

        return forward, reverse

    # -------------------------------------------------------------------------
    # Everything
    # -------------------------------------------------------------------------

    def build(self, snapshot: TopologySnapshot, reverse_zones: Sequence[Zone]) -> List[RRSet]:
        """All desired RRsets: static records first, then dynamic ones."""
        desired = DesiredRRSets()
        desired.extend(self.static_forward(snapshot))

        for zone in reverse_zones:
            try:
                desired.extend(self.static_reverse(snapshot, zone))
            except ValueError as e:
                logger.error(f"Failed to build reverse RRsets for zone {zone.name}: {e}")

        forward, reverse = self.dynamic(snapshot)
        desired.extend(forward)
        desired.extend(reverse)

        logger.info(f"Synthesized {len(desired)} desired RRsets")
        return desired.to_list()


def _is_ipv4(value: str) -> bool:
    try:
        ipaddress.IPv4Address(value)
    except ValueError:
        return False
    return True

