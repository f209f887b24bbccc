"""Topology inventory and live-state collaborators.

SLS (the System Layout Service) owns the topology: networks, their subnets
and IP reservations, and the hardware list. HSM (Hardware State Manager)
owns what is discovered live: ethernet interfaces with their current IPs and
component state, which carries NIDs assigned at discovery time.
"""

from __future__ import annotations

import ipaddress
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import requests

from powerdns_manager.models import EthernetInterface, Hardware, Network, NodeComponent
from powerdns_manager.powerdns import build_retry_session

logger = logging.getLogger(__name__)


class InventoryError(Exception):
    """Inventory or live-state data could not be fetched or understood."""


# =============================================================================
# Collaborator Interfaces
# =============================================================================


class InventorySource(ABC):
    """Read-only topology inventory."""

    @abstractmethod
    def get_networks(self) -> List[Network]:
        pass

    @abstractmethod
    def get_hardware(self) -> List[Hardware]:
        pass


class LiveStateSource(ABC):
    """Read-only live-state discovery."""

    @abstractmethod
    def get_ethernet_interfaces(self) -> List[EthernetInterface]:
        pass

    @abstractmethod
    def get_node_components(self) -> List[NodeComponent]:
        pass


class _JSONClient:
    """Shared GET-and-decode plumbing for the SLS and HSM clients."""

    DEFAULT_TIMEOUT = (10, 60)

    def __init__(
        self,
        url: str,
        token: str = "",
        verify_tls: bool = False,
        session: Optional[requests.Session] = None,
    ):
        self._url = url.rstrip("/")
        headers = {"Authorization": f"Bearer {token}"} if token else None
        self._session = session or build_retry_session(headers=headers, verify_tls=verify_tls)

    def _get_json(self, path: str, params: Optional[Dict[str, str]] = None) -> Any:
        url = f"{self._url}{path}"
        logger.debug(f"GET {url}")
        try:
            response = self._session.get(url, params=params, timeout=self.DEFAULT_TIMEOUT)
            response.raise_for_status()
            return response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            raise InventoryError(f"failed to fetch {url}: {e}") from e

    def _get_list(self, path: str, params: Optional[Dict[str, str]] = None) -> List[Dict[str, Any]]:
        data = self._get_json(path, params)
        if not isinstance(data, list):
            raise InventoryError(
                f"unexpected response from {path}: expected list, got {type(data).__name__}"
            )
        return [item for item in data if isinstance(item, dict)]


class SLSClient(_JSONClient, InventorySource):
    """System Layout Service client."""

    def get_networks(self) -> List[Network]:
        return [Network.from_dict(n) for n in self._get_list("/v1/networks")]

    def get_hardware(self) -> List[Hardware]:
        return [Hardware.from_dict(h) for h in self._get_list("/v1/hardware")]


class HSMClient(_JSONClient, LiveStateSource):
    """Hardware State Manager client."""

    def get_ethernet_interfaces(self) -> List[EthernetInterface]:
        return [
            EthernetInterface.from_dict(i)
            for i in self._get_list("/hsm/v2/Inventory/EthernetInterfaces")
        ]

    def get_node_components(self) -> List[NodeComponent]:
        data = self._get_json("/hsm/v2/State/Components", params={"type": "Node"})
        if not isinstance(data, dict):
            raise InventoryError("unexpected component state response: expected object")
        return [
            NodeComponent.from_dict(c) for c in data.get("Components") or [] if isinstance(c, dict)
        ]


# =============================================================================
# Topology Snapshot
# =============================================================================


@dataclass(frozen=True)
class NetworkCIDR:
    """One network range, pre-parsed for containment checks."""

    domain: str
    network: ipaddress.IPv4Network


@dataclass
class TopologySnapshot:
    """Everything one true-up pass needs to know about the cluster."""

    networks: List[Network] = field(default_factory=list)
    hardware: List[Hardware] = field(default_factory=list)
    ethernet_interfaces: List[EthernetInterface] = field(default_factory=list)
    node_components: List[NodeComponent] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.hardware_map: Dict[str, Hardware] = {h.xname: h for h in self.hardware}
        self.component_map: Dict[str, NodeComponent] = {c.id: c for c in self.node_components}
        self.network_cidrs: List[NetworkCIDR] = build_network_cidrs(self.networks)

    def network_for_ip(self, ip: str) -> Optional[str]:
        """Domain of the first network whose ranges contain ip."""
        try:
            address = ipaddress.IPv4Address(ip)
        except ValueError:
            return None
        for entry in self.network_cidrs:
            if address in entry.network:
                return entry.domain
        return None


def build_network_cidrs(networks: Iterable[Network]) -> List[NetworkCIDR]:
    cidrs: List[NetworkCIDR] = []
    for network in networks:
        for ip_range in network.ranges:
            try:
                parsed = ipaddress.IPv4Network(ip_range, strict=False)
            except ValueError as e:
                logger.error(f"Failed to parse CIDR {ip_range!r} for network {network.name}: {e}")
                continue
            cidrs.append(NetworkCIDR(domain=network.domain, network=parsed))
    return cidrs


def merge_subset_networks(networks: Sequence[Network]) -> List[Network]:
    """Fold ``<parent>_<suffix>`` networks into ``<parent>``.

    hmn, hmn_rvr and hmn_mtn are really the same network; the subsets'
    ranges and subnets are appended to the parent and the subsets dropped.
    """
    merged: List[Network] = []
    absorbed = set()
    for network in networks:
        prefix = f"{network.name}_"
        ip_ranges: Tuple[str, ...] = network.ranges
        subnets = network.subnets
        for candidate in networks:
            if candidate.name.startswith(prefix):
                absorbed.add(candidate.name)
                ip_ranges += candidate.ranges
                subnets += candidate.subnets
        merged.append(replace(network, ip_ranges=ip_ranges, subnets=subnets))

    return [n for n in merged if n.name not in absorbed]


def load_snapshot(
    inventory: InventorySource,
    live_state: LiveStateSource,
    ignore_networks: Sequence[str] = (),
) -> TopologySnapshot:
    """Fetch and normalize a topology snapshot. Raises InventoryError."""
    networks = merge_subset_networks(inventory.get_networks())
    ignored = {n.lower() for n in ignore_networks}
    if ignored:
        skipped = [n.name for n in networks if n.name.lower() in ignored]
        if skipped:
            logger.debug(f"Excluding networks from zone generation: {', '.join(skipped)}")
        networks = [n for n in networks if n.name.lower() not in ignored]

    snapshot = TopologySnapshot(
        networks=networks,
        hardware=inventory.get_hardware(),
        ethernet_interfaces=live_state.get_ethernet_interfaces(),
        node_components=live_state.get_node_components(),
    )
    logger.info(
        f"Topology snapshot: {len(snapshot.networks)} networks, "
        f"{len(snapshot.hardware)} hardware entries, "
        f"{len(snapshot.ethernet_interfaces)} ethernet interfaces"
    )
    return snapshot
