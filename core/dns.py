"""
PowerDNS HTTP API client.

Only the part of the API the registry needs: patching one RRset of a zone.
"""

from typing import Any, Dict, List, Optional

import requests

from core.errors import BackendError
from core.logger import log_event
from core.metrics import observe_backend_call


class PowerDNSClient:
    """
    Thin client for ``/api/v1/servers/<server>/zones/<zone>``.

    Usage:
        client = PowerDNSClient(
            base_url="http://pdns.example:8081",
            zone="vm.example.",
            api_key="secret",
        )
        client.upsert_record("web1.vm.example.", "A", 300, ["10.0.0.12"])
    """

    def __init__(
        self,
        base_url: str,
        zone: str,
        api_key: str,
        server: str = "localhost",
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.zone = zone
        self.server = server or "localhost"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers["X-API-Key"] = api_key

    @property
    def zone_url(self) -> str:
        return f"{self.base_url}/api/v1/servers/{self.server}/zones/{self.zone}"

    def upsert_record(self, name: str, record_type: str, ttl: int, content: List[str]) -> None:
        self._patch_rrset(name, record_type, ttl, content, "REPLACE")

    def delete_record(self, name: str, record_type: str, ttl: int, content: List[str]) -> None:
        self._patch_rrset(name, record_type, ttl, content, "DELETE")

    def _patch_rrset(
        self,
        name: str,
        record_type: str,
        ttl: int,
        content: List[str],
        changetype: str,
    ) -> None:
        call = "upsert_record" if changetype == "REPLACE" else "delete_record"
        body: Dict[str, Any] = {
            "rrsets": [
                {
                    "name": name,
                    "type": record_type,
                    "ttl": ttl,
                    "changetype": changetype,
                    "records": [{"content": value, "disabled": False} for value in content],
                }
            ]
        }

        with observe_backend_call("powerdns", call):
            try:
                resp = self.session.patch(self.zone_url, json=body, timeout=self.timeout)
            except requests.RequestException as e:
                raise BackendError("powerdns", call, f"request failed: {e}") from e

            if resp.status_code >= 400:
                raise BackendError("powerdns", call, self._error_message(resp))

    @staticmethod
    def _error_message(resp: requests.Response) -> str:
        try:
            data = resp.json()
        except ValueError:
            detail = resp.text.strip()
        else:
            detail = data.get("error", "") if isinstance(data, dict) else ""
        return f"{resp.status_code} {resp.reason} {detail}".strip()

    def close(self) -> None:
        self.session.close()


class DnsClient:
    """A records for VMs inside one zone."""

    def __init__(self, client: PowerDNSClient, domain: str, ttl: int = 300) -> None:
        if not domain.endswith("."):
            domain = domain + "."
        self.client = client
        self.domain = domain
        self.ttl = ttl

    @classmethod
    def for_zone(
        cls,
        base_url: str,
        zone: str,
        api_key: str,
        server: str = "localhost",
        ttl: int = 300,
        timeout: float = 10.0,
    ) -> "DnsClient":
        if not zone.endswith("."):
            zone = zone + "."
        return cls(PowerDNSClient(base_url, zone, api_key, server=server, timeout=timeout), zone, ttl)

    def fqdn(self, name: str) -> str:
        return f"{name}.{self.domain}"

    def add(self, name: str, address: str) -> None:
        self.client.upsert_record(self.fqdn(name), "A", self.ttl, [address])
        log_event(f"[dns] Added A record {self.fqdn(name)} -> {address}")

    def remove(self, name: str, address: str) -> None:
        self.client.delete_record(self.fqdn(name), "A", self.ttl, [address])
        log_event(f"[dns] Removed A record {self.fqdn(name)} -> {address}")
