"""Data model shared by every stage of the true-up.

Topology inventory (networks, hardware), live-state discovery (ethernet
interfaces, node components) and the PowerDNS view of the world (zones,
RRsets, records, keys) are all plain dataclasses. Each knows how to build
itself from the JSON its collaborator speaks and, where it is sent back over
the wire, how to serialize itself.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

DEFAULT_TTL = 3600


# =============================================================================
# Enums
# =============================================================================


class RRType(str, Enum):
    """DNS record types the manager reads or writes."""

    A = "A"
    CNAME = "CNAME"
    PTR = "PTR"
    NS = "NS"
    SOA = "SOA"
    TXT = "TXT"
    DNAME = "DNAME"


class ChangeType(str, Enum):
    """PowerDNS PATCH change directive."""

    REPLACE = "REPLACE"
    DELETE = "DELETE"


class DNSKeyType(Enum):
    """Kind of key material loaded from the key directory."""

    DNSSEC = "dnssec"
    TSIG = "tsig"


# =============================================================================
# Topology Inventory
# =============================================================================


@dataclass(frozen=True)
class IPReservation:
    """A named address reserved in a subnet, with optional aliases."""

    name: str
    ip_address: str
    aliases: Tuple[str, ...] = ()
    comment: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IPReservation":
        return cls(
            name=str(data.get("Name") or ""),
            ip_address=str(data.get("IPAddress") or ""),
            aliases=tuple(str(a) for a in data.get("Aliases") or []),
            comment=str(data.get("Comment") or ""),
        )


@dataclass(frozen=True)
class Subnet:
    name: str
    ip_reservations: Tuple[IPReservation, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Subnet":
        return cls(
            name=str(data.get("Name") or ""),
            ip_reservations=tuple(
                IPReservation.from_dict(r)
                for r in data.get("IPReservations") or []
                if isinstance(r, dict)
            ),
        )


@dataclass(frozen=True)
class Network:
    """A topology network: CIDR ranges plus subnets with reservations."""

    name: str
    ip_ranges: Tuple[str, ...] = ()
    cidr: str = ""
    subnets: Tuple[Subnet, ...] = ()

    @property
    def domain(self) -> str:
        """Label used for this network's DNS zone."""
        return self.name.lower()

    @property
    def ranges(self) -> Tuple[str, ...]:
        """IP ranges, falling back to the network CIDR when none are listed."""
        if self.ip_ranges:
            return self.ip_ranges
        return (self.cidr,) if self.cidr else ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Network":
        extra = data.get("ExtraProperties") or {}
        if not isinstance(extra, dict):
            extra = {}
        return cls(
            name=str(data.get("Name") or ""),
            ip_ranges=tuple(str(r) for r in data.get("IPRanges") or []),
            cidr=str(extra.get("CIDR") or ""),
            subnets=tuple(
                Subnet.from_dict(s) for s in extra.get("Subnets") or [] if isinstance(s, dict)
            ),
        )


@dataclass(frozen=True)
class Hardware:
    """A hardware record keyed by xname."""

    xname: str
    type: str = ""
    nid: int = 0
    aliases: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Hardware":
        extra = data.get("ExtraProperties") or {}
        if not isinstance(extra, dict):
            extra = {}
        try:
            nid = int(extra.get("NID") or 0)
        except (TypeError, ValueError):
            nid = 0
        return cls(
            xname=str(data.get("Xname") or ""),
            type=str(data.get("Type") or ""),
            nid=nid,
            aliases=tuple(str(a) for a in extra.get("Aliases") or []),
        )


# =============================================================================
# Live State
# =============================================================================


@dataclass(frozen=True)
class EthernetInterface:
    """A discovered interface: the owning component and its live IPs."""

    component_id: str
    ip_addresses: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EthernetInterface":
        """Accepts both the v2 (IPAddresses list) and legacy (IPAddress) shapes."""
        addresses: List[str] = []
        if "IPAddresses" in data:
            for entry in data.get("IPAddresses") or []:
                if isinstance(entry, dict):
                    address = entry.get("IPAddress")
                else:
                    address = entry
                if address:
                    addresses.append(str(address))
        elif data.get("IPAddress"):
            addresses.append(str(data["IPAddress"]))

        return cls(
            component_id=str(data.get("ComponentID") or ""),
            ip_addresses=tuple(addresses),
        )


@dataclass(frozen=True)
class NodeComponent:
    """Live-state component entry; NID is only meaningful for nodes."""

    id: str
    nid: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NodeComponent":
        nid: Optional[int]
        try:
            nid = int(data["NID"]) if data.get("NID") is not None else None
        except (TypeError, ValueError):
            nid = None
        return cls(id=str(data.get("ID") or ""), nid=nid)


# =============================================================================
# DNS
# =============================================================================


@dataclass(frozen=True)
class Nameserver:
    fqdn: str
    ip: str


@dataclass(frozen=True)
class Record:
    content: str
    disabled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"content": self.content, "disabled": self.disabled}


@dataclass(frozen=True)
class RRSet:
    """A named, typed group of records.

    Equality is structural over name, type, TTL and the ordered record list.
    The change directive only matters on the wire and is ignored.
    """

    name: str
    type: RRType
    ttl: int
    records: Tuple[Record, ...]
    changetype: ChangeType = field(default=ChangeType.REPLACE, compare=False)

    @property
    def key(self) -> Tuple[str, RRType]:
        return (self.name, self.type)

    def with_changetype(self, changetype: ChangeType) -> "RRSet":
        return replace(self, changetype=changetype)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "type": self.type.value,
            "ttl": self.ttl,
            "changetype": self.changetype.value,
            "records": [r.to_dict() for r in self.records],
        }
        if self.changetype is ChangeType.DELETE:
            # PowerDNS rejects record content on deletes.
            del data["records"]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RRSet":
        records = tuple(
            Record(content=str(r.get("content", "")), disabled=bool(r.get("disabled", False)))
            for r in data.get("records") or []
            if isinstance(r, dict)
        )
        return cls(
            name=str(data["name"]),
            type=RRType(str(data["type"]).upper()),
            ttl=int(data.get("ttl") or DEFAULT_TTL),
            records=records,
        )


def make_rrset(name: str, rrtype: RRType, content: str, ttl: int = DEFAULT_TTL) -> RRSet:
    """Build a single-record REPLACE RRset; every synthesized record goes through here."""
    return RRSet(
        name=name,
        type=rrtype,
        ttl=ttl,
        records=(Record(content=content, disabled=False),),
        changetype=ChangeType.REPLACE,
    )


@dataclass
class Zone:
    """A PowerDNS zone as read from, or sent to, the control API."""

    name: str
    kind: str = "Master"
    dnssec: bool = False
    nameservers: List[str] = field(default_factory=list)
    rrsets: List[RRSet] = field(default_factory=list)
    master_tsig_key_ids: List[str] = field(default_factory=list)
    id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind,
            "dnssec": self.dnssec,
            "nameservers": list(self.nameservers),
            "rrsets": [r.to_dict() for r in self.rrsets],
            "master_tsig_key_ids": list(self.master_tsig_key_ids),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Zone":
        rrsets: List[RRSet] = []
        for raw in data.get("rrsets") or []:
            if not isinstance(raw, dict):
                continue
            try:
                rrsets.append(RRSet.from_dict(raw))
            except (KeyError, ValueError):
                # Types this manager never touches (MX, SRV, AAAA, ...).
                continue
        return cls(
            name=str(data.get("name") or ""),
            kind=str(data.get("kind") or "Master"),
            dnssec=bool(data.get("dnssec", False)),
            nameservers=list(data.get("nameservers") or []),
            rrsets=rrsets,
            master_tsig_key_ids=list(data.get("master_tsig_key_ids") or []),
            id=str(data.get("id") or ""),
        )


@dataclass(frozen=True)
class DNSKey:
    """Key material loaded from disk, referenced by name."""

    name: str
    data: str
    type: DNSKeyType
