"""Runtime configuration.

Every setting has an environment variable and a default. An optional YAML
file (MANAGER_CONFIG_PATH) may supply the same settings under their
lower-case names; environment variables take precedence over the file.
"""

from __future__ import annotations

import ipaddress
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from powerdns_manager.models import Nameserver
from powerdns_manager.names import make_canonical, strip_dot

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Configuration that the manager cannot run with."""


DEFAULTS: Dict[str, str] = {
    "BASE_DOMAIN": "shasta.dev.cray.com",
    "PRIMARY_SERVER": "primary/192.168.53.4",
    "SECONDARY_SERVERS": "secondary/192.168.53.5",
    "NOTIFY_ZONES": "",
    "KEY_DIRECTORY": "./keys",
    "SLS_URL": "http://cray-sls",
    "HSM_URL": "http://cray-smd",
    "PDNS_URL": "http://localhost:9090",
    "PDNS_API_KEY": "cray",
    "PDNS_SERVER_ID": "localhost",
    "TOKEN": "",
    "TRUE_UP_SLEEP_INTERVAL": "30",
    "SLS_IGNORE": "BICAN",
    "CREATE_DNAME": "false",
    "NID_PREFIX": "nid",
    "DNSSEC": "false",
    "SOA_REFRESH": "10800",
    "SOA_RETRY": "3600",
    "SOA_EXPIRY": "604800",
    "SOA_MINIMUM": "3600",
    "LISTEN_ADDRESS": "0.0.0.0",
    "LISTEN_PORT": "8080",
    "MANAGER_MODE": "watch",
    "LOG_LEVEL": "INFO",
    "VERIFY_TLS": "false",
}


@dataclass(frozen=True)
class Config:
    """Immutable settings handed to every component."""

    base_domain: str = "shasta.dev.cray.com"
    primary: Nameserver = Nameserver(fqdn="primary.shasta.dev.cray.com.", ip="192.168.53.4")
    secondaries: Tuple[Nameserver, ...] = ()
    notify_zones: Tuple[str, ...] = ()
    key_directory: str = "./keys"
    sls_url: str = "http://cray-sls"
    hsm_url: str = "http://cray-smd"
    pdns_url: str = "http://localhost:9090"
    pdns_api_key: str = "cray"
    pdns_server_id: str = "localhost"
    token: str = field(default="", repr=False)
    interval_seconds: int = 30
    ignore_networks: Tuple[str, ...] = ("BICAN",)
    create_dname: bool = False
    nid_prefix: str = "nid"
    dnssec: bool = False
    soa_refresh: str = "10800"
    soa_retry: str = "3600"
    soa_expiry: str = "604800"
    soa_minimum: str = "3600"
    listen_address: str = "0.0.0.0"
    listen_port: int = 8080
    mode: str = "watch"
    log_level: str = "INFO"
    verify_tls: bool = False

    @property
    def base_zone(self) -> str:
        return make_canonical(self.base_domain)

    def transfer_enabled(self, zone_name: str) -> bool:
        """Whether secondaries should receive zone_name. An empty allow-list means all zones."""
        if not self.notify_zones:
            return True
        return strip_dot(zone_name) in {strip_dot(z) for z in self.notify_zones}


# =============================================================================
# Parsing Helpers
# =============================================================================


def _parse_bool(value: Any, *, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


def _parse_list(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, (list, tuple)):
        items = [str(v) for v in value]
    else:
        items = str(value).split(",")
    return tuple(item.strip() for item in items if item.strip())


def _parse_int(name: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from e


def parse_nameserver(value: str, domain: Optional[str] = None) -> Nameserver:
    """Parse a ``name/IP`` pair.

    With a domain the name is qualified under it (the primary server);
    without one the name is taken as an FQDN (secondaries).
    """
    parts = value.strip().split("/")
    if len(parts) != 2 or not parts[0].strip() or not parts[1].strip():
        raise ConfigError(f"nameserver {value!r} does not have name/IP format")

    name, ip = parts[0].strip(), parts[1].strip()
    try:
        ipaddress.IPv4Address(ip)
    except ValueError as e:
        raise ConfigError(f"nameserver {value!r} has an invalid IP address") from e

    fqdn = f"{name}.{strip_dot(domain)}" if domain else name
    return Nameserver(fqdn=make_canonical(fqdn), ip=ip)


def load_config_file(path: str) -> Dict[str, Any]:
    """Read the YAML settings file, keyed by upper-case setting name."""
    if not path:
        return {}
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        logger.warning(f"Config file {path} not found, using environment only")
        return {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"failed to load config file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a mapping")
    return {str(k).upper(): v for k, v in data.items()}


def load_config(environ: Optional[Mapping[str, str]] = None) -> Config:
    """Build a Config from defaults, the optional YAML file and the environment."""
    env = os.environ if environ is None else environ

    settings: Dict[str, Any] = dict(DEFAULTS)
    settings.update(load_config_file(env.get("MANAGER_CONFIG_PATH", "")))
    settings.update({k: v for k, v in env.items() if k in DEFAULTS})

    base_domain = strip_dot(str(settings["BASE_DOMAIN"]).strip())
    if not base_domain:
        raise ConfigError("BASE_DOMAIN must not be empty")

    primary_value = str(settings["PRIMARY_SERVER"]).strip()
    if not primary_value:
        raise ConfigError("PRIMARY_SERVER must not be empty")
    primary = parse_nameserver(primary_value, base_domain)
    secondaries = tuple(parse_nameserver(s) for s in _parse_list(settings["SECONDARY_SERVERS"]))

    interval = _parse_int("TRUE_UP_SLEEP_INTERVAL", settings["TRUE_UP_SLEEP_INTERVAL"])
    if interval < 1:
        raise ConfigError("TRUE_UP_SLEEP_INTERVAL must be at least 1 second")

    mode = str(settings["MANAGER_MODE"]).strip().lower()
    if mode not in {"watch", "once", "visualize", "externaldns"}:
        raise ConfigError(
            f"Invalid MANAGER_MODE: {mode}. Use 'watch', 'once', 'visualize' or 'externaldns'"
        )

    return Config(
        base_domain=base_domain,
        primary=primary,
        secondaries=secondaries,
        notify_zones=_parse_list(settings["NOTIFY_ZONES"]),
        key_directory=str(settings["KEY_DIRECTORY"]),
        sls_url=str(settings["SLS_URL"]),
        hsm_url=str(settings["HSM_URL"]),
        pdns_url=str(settings["PDNS_URL"]),
        pdns_api_key=str(settings["PDNS_API_KEY"]),
        pdns_server_id=str(settings["PDNS_SERVER_ID"]),
        token=str(settings["TOKEN"] or ""),
        interval_seconds=interval,
        ignore_networks=_parse_list(settings["SLS_IGNORE"]),
        create_dname=_parse_bool(settings["CREATE_DNAME"]),
        nid_prefix=str(settings["NID_PREFIX"]),
        dnssec=_parse_bool(settings["DNSSEC"]),
        soa_refresh=str(settings["SOA_REFRESH"]),
        soa_retry=str(settings["SOA_RETRY"]),
        soa_expiry=str(settings["SOA_EXPIRY"]),
        soa_minimum=str(settings["SOA_MINIMUM"]),
        listen_address=str(settings["LISTEN_ADDRESS"]),
        listen_port=_parse_int("LISTEN_PORT", settings["LISTEN_PORT"]),
        mode=mode,
        log_level=str(settings["LOG_LEVEL"]).upper(),
        verify_tls=_parse_bool(settings["VERIFY_TLS"]),
    )
