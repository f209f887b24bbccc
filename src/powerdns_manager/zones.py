"""Zone manager.

Makes sure every zone the topology implies exists on the primary server:
the base zone, one forward zone per network, optional short-name DNAME zones
and the reverse zones covering every network range. Zones are created on
first sight and never modified or deleted afterwards.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Set, Tuple

import requests

from powerdns_manager.config import Config
from powerdns_manager.keys import dnssec_key_for_zone, tsig_key_ids
from powerdns_manager.models import DNSKey, Network, RRSet, RRType, Zone, make_rrset
from powerdns_manager.names import make_canonical, reverse_zone_name, strip_dot
from powerdns_manager.powerdns import DNSServer, PowerDNSError

logger = logging.getLogger(__name__)


def nameserver_a_rrset(fqdn: str, ip: str) -> RRSet:
    return make_rrset(make_canonical(fqdn), RRType.A, ip)


def soa_rrset(
    zone_name: str, mname: str, rname: str, refresh: str, retry: str, expire: str, minimum: str
) -> RRSet:
    # Serial 0 lets PowerDNS manage the serial itself.
    content = f"{mname} {rname} 0 {refresh} {retry} {expire} {minimum}"
    return make_rrset(make_canonical(zone_name), RRType.SOA, content)


def dname_rrset(short_name: str, base_domain: str, zone_names: Sequence[str]) -> RRSet:
    """DNAME for a short zone pointing at its fully qualified counterpart.

    Raises LookupError when no such counterpart is among zone_names.
    """
    short = make_canonical(short_name)
    base = make_canonical(base_domain)
    for zone in zone_names:
        if zone != short and zone.startswith(short) and zone.endswith(base):
            return make_rrset(short, RRType.DNAME, make_canonical(zone))
    raise LookupError(f"did not find fully qualified domain for short name: {short_name}")


class ZoneManager:
    """Creates missing zones; returns the zone inventory for the pass."""

    def __init__(self, config: Config, server: DNSServer, keys: Sequence[DNSKey] = ()):
        self._config = config
        self._server = server
        self._keys = list(keys)

    def _soa(self, zone_name: str, rname: str) -> RRSet:
        c = self._config
        return soa_rrset(
            zone_name,
            c.primary.fqdn,
            rname,
            c.soa_refresh,
            c.soa_retry,
            c.soa_expiry,
            c.soa_minimum,
        )

    def _nameservers_for(self, zone_name: str) -> List[str]:
        nameservers = [self._config.primary.fqdn]
        if self._config.transfer_enabled(zone_name):
            nameservers.extend(ns.fqdn for ns in self._config.secondaries)
        return nameservers

    def ensure_zone(
        self, name: str, nameserver_fqdns: Sequence[str], bootstrap_rrsets: Sequence[RRSet]
    ) -> Optional[Zone]:
        """Return the zone called name, creating it when the server reports 404.

        Any other lookup failure is logged and None returned without
        attempting a create.
        """
        zone_name = make_canonical(name)
        try:
            zone = self._server.get_zone(zone_name)
            logger.debug(f"Zone {zone_name} already exists")
            return zone
        except PowerDNSError as e:
            if e.status_code != 404:
                logger.error(f"Got unexpected status code looking up zone {zone_name}: {e}")
                return None
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to look up zone {zone_name}: {e}")
            return None

        custom_key = dnssec_key_for_zone(self._keys, zone_name)
        zone = Zone(
            name=zone_name,
            kind="Master",
            dnssec=self._config.dnssec,
            nameservers=list(nameserver_fqdns),
            rrsets=list(bootstrap_rrsets),
            master_tsig_key_ids=(
                tsig_key_ids(self._keys) if self._config.transfer_enabled(zone_name) else []
            ),
        )

        try:
            created = self._server.add_zone(zone)
        except (PowerDNSError, requests.exceptions.RequestException) as e:
            logger.error(f"Failed to add master zone {zone_name}: {e}")
            return None
        logger.info(f"Added master zone {zone_name}")

        if custom_key is not None:
            try:
                self._server.add_cryptokey(zone_name, custom_key.data)
                logger.info(f"Added custom DNSSEC key to zone {zone_name}")
            except (PowerDNSError, requests.exceptions.RequestException) as e:
                logger.error(f"Failed to add custom DNSSEC key to zone {zone_name}: {e}")

        try:
            self._server.rectify_zone(zone_name)
        except (PowerDNSError, requests.exceptions.RequestException) as e:
            logger.error(f"Failed to rectify zone {zone_name}: {e}")

        return created

    # -------------------------------------------------------------------------
    # Forward zones
    # -------------------------------------------------------------------------

    def master_zone_names(self, networks: Sequence[Network]) -> List[str]:
        base = self._config.base_zone
        names = [base]
        for network in networks:
            names.append(make_canonical(f"{network.domain}.{strip_dot(base)}"))
            if self._config.create_dname:
                names.append(make_canonical(network.domain))
        return names

    def ensure_master_zones(self, networks: Sequence[Network]) -> List[Zone]:
        base = self._config.base_zone
        primary = self._config.primary
        zone_names = self.master_zone_names(networks)

        zones: List[Zone] = []
        for zone_name in zone_names:
            rrsets: List[RRSet] = []

            if zone_name == base:
                # PowerDNS refuses the base zone without an A record for its nameserver.
                rrsets.append(nameserver_a_rrset(primary.fqdn, primary.ip))
                for sub_zone in zone_names:
                    if sub_zone != base and sub_zone.endswith(f".{base}"):
                        logger.debug(f"Adding NS delegation for {sub_zone}")
                        rrsets.append(make_rrset(sub_zone, RRType.NS, primary.fqdn))
            elif not zone_name.endswith(f".{base}"):
                try:
                    rrsets.append(dname_rrset(zone_name, base, zone_names))
                except LookupError as e:
                    logger.error(f"Unable to create DNAME record for {zone_name}: {e}")

            rrsets.append(self._soa(zone_name, f"hostmaster.{zone_name}"))

            zone = self.ensure_zone(zone_name, self._nameservers_for(zone_name), rrsets)
            if zone is not None:
                zones.append(zone)
        return zones

    # -------------------------------------------------------------------------
    # Reverse zones
    # -------------------------------------------------------------------------

    def reverse_zone_names(self, networks: Sequence[Network]) -> List[Tuple[str, str]]:
        """(network name, reverse zone) pairs, merged so each zone appears once.

        A CIDR that fails to parse is logged and skipped.
        """
        seen: Set[str] = set()
        pairs: List[Tuple[str, str]] = []
        for network in networks:
            for ip_range in network.ranges:
                try:
                    zone_name = reverse_zone_name(ip_range)
                except ValueError as e:
                    logger.error(
                        f"Failed to compute reverse zone for {ip_range!r} "
                        f"on network {network.name}: {e}"
                    )
                    continue
                if zone_name in seen:
                    # e.g. 10.101.5.0/25 and 10.101.5.128/26 share 5.101.10.in-addr.arpa.
                    logger.debug(f"Reverse zone {zone_name} already handled")
                    continue
                seen.add(zone_name)
                logger.debug(f"Reverse zone for {network.name} {ip_range}: {zone_name}")
                pairs.append((network.name, zone_name))
        return pairs

    def ensure_reverse_zones(self, networks: Sequence[Network]) -> List[Zone]:
        rname = f"hostmaster.{self._config.base_zone}"
        zones: List[Zone] = []
        for _, zone_name in self.reverse_zone_names(networks):
            zone = self.ensure_zone(
                zone_name, self._nameservers_for(zone_name), [self._soa(zone_name, rname)]
            )
            if zone is not None:
                zones.append(zone)
        return zones

    def ensure_all(self, networks: Sequence[Network]) -> Tuple[List[Zone], List[Zone]]:
        """Forward and reverse zone inventories for this pass."""
        return self.ensure_master_zones(networks), self.ensure_reverse_zones(networks)
