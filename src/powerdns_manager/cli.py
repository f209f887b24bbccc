#!/usr/bin/env python3
"""powerdns-manager - DNS records for a cluster, kept in sync with its topology

Reads the cluster topology from SLS (networks, IP reservations, hardware) and
the live state from HSM (discovered interfaces, node NIDs), works out the
zones and records that topology implies and converges a PowerDNS primary
onto them. Secondaries are told to re-transfer whenever anything changes.

Environment variables:

    Zones:
        BASE_DOMAIN            Base master domain (default: shasta.dev.cray.com)
        PRIMARY_SERVER         "name/IP" of the primary; the name is qualified
                               under BASE_DOMAIN (default: primary/192.168.53.4)
        SECONDARY_SERVERS      Comma-separated "fqdn/IP" secondaries
                               (default: secondary/192.168.53.5)
        NOTIFY_ZONES           Comma-separated zones secondaries may transfer.
                               Empty = every zone (default: empty)
        CREATE_DNAME           Also create short-name zones that DNAME to the
                               fully qualified ones (default: false)
        DNSSEC                 Create zones with DNSSEC enabled (default: false)
        SOA_REFRESH            SOA refresh (default: 10800)
        SOA_RETRY              SOA retry (default: 3600)
        SOA_EXPIRY             SOA expiry (default: 604800)
        SOA_MINIMUM            SOA minimum (default: 3600)

    Records:
        SLS_IGNORE             Comma-separated networks to leave out (default: BICAN)
        NID_PREFIX             Prefix for NID aliases (default: nid)

    Keys:
        KEY_DIRECTORY          Directory of key files. "<name>.tsig" files hold
                               PowerDNS TSIG keys as JSON, any other file is a
                               private DNSSEC key for the zone it is named after
                               (default: ./keys)

    Services:
        SLS_URL                SLS base URL (default: http://cray-sls)
        HSM_URL                HSM base URL (default: http://cray-smd)
        TOKEN                  Bearer token for SLS and HSM (optional)
        PDNS_URL               PowerDNS API URL (default: http://localhost:9090)
        PDNS_API_KEY           PowerDNS API key (default: cray)
        PDNS_SERVER_ID         PowerDNS server id (default: localhost)
        VERIFY_TLS             Verify TLS certificates (default: false)

    Runtime:
        MANAGER_MODE           "watch" (loop + HTTP API), "once", "visualize"
                               or "externaldns" (default: watch)
        TRUE_UP_SLEEP_INTERVAL Seconds between true up runs (default: 30)
        LISTEN_ADDRESS         HTTP API address (default: 0.0.0.0)
        LISTEN_PORT            HTTP API port (default: 8080)
        LOG_LEVEL              DEBUG, INFO, WARNING, ERROR (default: INFO)
        MANAGER_CONFIG_PATH    Optional YAML file with any of the settings above
                               under their lower-case names. Environment
                               variables take precedence.
                               Example config file:
                                 base_domain: "shasta.dev.cray.com"
                                 secondary_servers:
                                   - "ns1.example.com/10.0.0.5"
                                   - "ns2.example.com/10.0.0.6"
                                 sls_ignore: ["BICAN", "CAN"]

HTTP API (watch and externaldns modes):
    GET  /v1/liveness          204
    GET  /v1/readiness         204
    POST /v1/manager/jobs      204 when a run was queued, 503 while one is running
"""

from __future__ import annotations

import logging
import os
import signal
import sys
from typing import Callable, List

import requests

from powerdns_manager.api import APIServer, create_app
from powerdns_manager.config import Config, ConfigError, load_config
from powerdns_manager.externaldns import ExternalDNSBridge
from powerdns_manager.inventory import HSMClient, InventoryError, SLSClient
from powerdns_manager.keys import add_or_update_tsig_key, load_keys
from powerdns_manager.loop import ConvergenceLoop, TrueUp, run_cycle_logged
from powerdns_manager.models import DNSKey, DNSKeyType
from powerdns_manager.powerdns import DNSServer, PowerDNSClient, PowerDNSError
from powerdns_manager.visualizer import build_tree, render_tree
from powerdns_manager.zones import ZoneManager

logger = logging.getLogger(__name__)


# =============================================================================
# Logging Setup
# =============================================================================


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger().setLevel(getattr(logging, level.upper(), logging.INFO))


# =============================================================================
# Wiring
# =============================================================================


def load_key_material(config: Config, server: DNSServer) -> List[DNSKey]:
    """Load the key directory and push every TSIG key to the server.

    Problems are logged; the manager runs without keys rather than not at all.
    """
    try:
        keys = load_keys(config.key_directory)
    except (OSError, ValueError) as e:
        logger.error(f"Failed to load DNS keys from {config.key_directory}: {e}")
        return []

    for key in keys:
        logger.info(f"Loaded {key.type.value} key {key.name}")
        if key.type is not DNSKeyType.TSIG:
            continue
        try:
            add_or_update_tsig_key(server, key)
        except (ValueError, PowerDNSError, requests.exceptions.RequestException) as e:
            logger.error(f"Failed to add or update TSIG key {key.name}: {e}")
    return keys


def build_true_up(config: Config, server: DNSServer, keys: List[DNSKey]) -> TrueUp:
    return TrueUp(
        config=config,
        server=server,
        inventory=SLSClient(config.sls_url, config.token, config.verify_tls),
        live_state=HSMClient(config.hsm_url, config.token, config.verify_tls),
        zone_manager=ZoneManager(config, server, keys),
    )


def run_service(config: Config, cycle: Callable[[], object]) -> None:
    """Run cycle in the convergence loop with the HTTP API until SIGINT/SIGTERM."""
    loop = ConvergenceLoop(cycle, config.interval_seconds)
    api = APIServer(create_app(loop), config.listen_address, config.listen_port)

    def handle_signal(signum, frame):
        logger.info("Shutting down gracefully...")
        loop.shutdown()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    api.start()
    loop_thread = loop.start()
    # The loop waits for a trigger before its first run.
    loop.request_run()

    while loop_thread.is_alive():
        loop_thread.join(timeout=1.0)
    api.shutdown()


# =============================================================================
# Main
# =============================================================================


def main():
    """Main entry point."""
    setup_logging(os.getenv("LOG_LEVEL", "INFO"))

    try:
        config = load_config()
    except ConfigError as e:
        logger.error(f"Configuration validation failed: {e}")
        sys.exit(1)
    setup_logging(config.log_level)

    logger.info(f"powerdns-manager: mode {config.mode}, base domain {config.base_domain}")
    logger.info(f"Primary server: {config.primary.fqdn} ({config.primary.ip})")
    if config.secondaries:
        logger.info(f"Secondary servers: {', '.join(ns.fqdn for ns in config.secondaries)}")
    if config.ignore_networks:
        logger.info(f"Ignoring networks: {', '.join(config.ignore_networks)}")

    server = PowerDNSClient(
        config.pdns_url, config.pdns_api_key, config.pdns_server_id, config.verify_tls
    )

    try:
        if config.mode == "visualize":
            print(render_tree(build_tree(server)))
            return

        if config.mode == "externaldns":
            bridge = ExternalDNSBridge(server)
            run_service(config, bridge.run_once)
            return

        keys = load_key_material(config, server)
        true_up = build_true_up(config, server, keys)

        if config.mode == "once":
            try:
                true_up.run_once()
            except InventoryError as e:
                logger.error(f"Failed to load topology: {e}")
                sys.exit(1)
            return

        run_service(config, lambda: run_cycle_logged(true_up))

    except KeyboardInterrupt:
        logger.info("Shutting down gracefully...")
    except (PowerDNSError, requests.exceptions.RequestException) as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
