"""Authoritative DNS server control API.

The true-up only needs a handful of PowerDNS endpoints: zone CRUD, a batched
RRset PATCH, rectify/notify, cryptokey upload and TSIG key management.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from powerdns_manager.models import RRSet, Zone

logger = logging.getLogger(__name__)


class PowerDNSError(Exception):
    """Non-2xx response from the PowerDNS API."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"PowerDNS API error {status_code}: {message}")
        self.status_code = status_code
        self.message = message


def build_retry_session(
    *,
    headers: Optional[Dict[str, str]] = None,
    verify_tls: bool = False,
    total: int = 4,
) -> requests.Session:
    """Session that retries connection errors and 5xx with capped backoff."""
    session = requests.Session()
    if headers:
        session.headers.update(headers)
    session.verify = verify_tls
    retry = Retry(
        total=total,
        backoff_factor=0.5,
        backoff_max=2,
        status_forcelist=[500, 502, 503, 504],
        allowed_methods=None,
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


# =============================================================================
# DNS Server Interface
# =============================================================================


class DNSServer(ABC):
    """Operations the manager needs from the authoritative server.

    Every method raises PowerDNSError for an API-level failure and lets
    requests exceptions through for transport failures.
    """

    @abstractmethod
    def list_zones(self) -> List[Zone]:
        """List zones (without RRsets)."""
        pass

    @abstractmethod
    def get_zone(self, name: str) -> Zone:
        """Fetch one zone including its RRsets."""
        pass

    @abstractmethod
    def add_zone(self, zone: Zone) -> Zone:
        pass

    @abstractmethod
    def patch_rrsets(self, zone_name: str, rrsets: Sequence[RRSet]) -> None:
        """Apply adds, replaces and deletes to one zone in a single call."""
        pass

    @abstractmethod
    def rectify_zone(self, name: str) -> str:
        pass

    @abstractmethod
    def notify_zone(self, name: str) -> str:
        pass

    @abstractmethod
    def add_cryptokey(self, zone_name: str, private_key: str) -> None:
        pass

    @abstractmethod
    def get_tsig_key(self, name: str) -> Dict[str, Any]:
        pass

    @abstractmethod
    def add_tsig_key(self, key: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    def replace_tsig_key(self, name: str, key: Dict[str, Any]) -> Dict[str, Any]:
        pass


# =============================================================================
# PowerDNS Implementation
# =============================================================================


class PowerDNSClient(DNSServer):
    """PowerDNS HTTP API client."""

    DEFAULT_TIMEOUT = (10, 60)

    def __init__(
        self,
        url: str,
        api_key: str,
        server_id: str = "localhost",
        verify_tls: bool = False,
        session: Optional[requests.Session] = None,
    ):
        self._base = f"{url.rstrip('/')}/api/v1/servers/{server_id}"
        self._session = session or build_retry_session(
            headers={"X-API-Key": api_key}, verify_tls=verify_tls
        )

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self._base}{path}"
        logger.debug(f"{method} {url}")
        response = self._session.request(method, url, timeout=self.DEFAULT_TIMEOUT, **kwargs)
        if response.status_code >= 400:
            message = response.text
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict) and body.get("error"):
                message = str(body["error"])
            raise PowerDNSError(response.status_code, message)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    def list_zones(self) -> List[Zone]:
        data = self._request("GET", "/zones") or []
        return [Zone.from_dict(z) for z in data if isinstance(z, dict)]

    def get_zone(self, name: str) -> Zone:
        return Zone.from_dict(self._request("GET", f"/zones/{name}"))

    def add_zone(self, zone: Zone) -> Zone:
        return Zone.from_dict(self._request("POST", "/zones", json=zone.to_dict()))

    def patch_rrsets(self, zone_name: str, rrsets: Sequence[RRSet]) -> None:
        self._request("PATCH", f"/zones/{zone_name}", json={"rrsets": [r.to_dict() for r in rrsets]})

    def rectify_zone(self, name: str) -> str:
        data = self._request("PUT", f"/zones/{name}/rectify") or {}
        return str(data.get("result", ""))

    def notify_zone(self, name: str) -> str:
        data = self._request("PUT", f"/zones/{name}/notify") or {}
        return str(data.get("result", ""))

    def add_cryptokey(self, zone_name: str, private_key: str) -> None:
        payload = {"keytype": "csk", "active": True, "privatekey": private_key}
        self._request("POST", f"/zones/{zone_name}/cryptokeys", json=payload)

    def get_tsig_key(self, name: str) -> Dict[str, Any]:
        return self._request("GET", f"/tsigkeys/{name}") or {}

    def add_tsig_key(self, key: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/tsigkeys", json=key) or {}

    def replace_tsig_key(self, name: str, key: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("PUT", f"/tsigkeys/{name}", json=key) or {}
