"""Shared fixtures: an in-memory Cloudflare API and a Settings factory."""

from typing import Any, Callable, Dict, List, Optional, Set

import pytest

from cloudflare_ddns.cloudflare import CloudflareClient
from cloudflare_ddns.config import Settings
from cloudflare_ddns.exceptions import APIError

ZONE_A = "0123456789abcdef0123456789abcdef"
ZONE_B = "fedcba9876543210fedcba9876543210"


class FakeCloudflareAPI(CloudflareClient):
    """CloudflareClient whose transport is an in-memory record store.

    Only `_send` is replaced, so caching, pagination and invalidation run
    through the real client code.
    """

    def __init__(self) -> None:
        super().__init__("test-token", sleep=lambda _: None)
        self.zones: Dict[str, List[Dict[str, Any]]] = {}
        self.calls: List[tuple] = []
        self.failing_zones: Set[str] = set()
        self.failing_names: Set[str] = set()
        self._next_id = 1

    def add(self, zone_id: str, name: str, type: str, content: str, **extra: Any) -> Dict[str, Any]:
        record = {
            "id": extra.pop("id", f"rec{self._next_id}"),
            "type": type,
            "name": name,
            "content": content,
            "ttl": extra.pop("ttl", 1),
            "proxied": extra.pop("proxied", False),
            **extra,
        }
        self._next_id += 1
        self.zones.setdefault(zone_id, []).append(record)
        return record

    def get(self, zone_id: str, name: str, type: str) -> Optional[Dict[str, Any]]:
        for record in self.zones.get(zone_id, []):
            if record["name"] == name and record["type"] == type:
                return record
        return None

    @property
    def writes(self) -> List[tuple]:
        return [c for c in self.calls if c[0] in ("POST", "PUT", "DELETE")]

    @property
    def reads(self) -> List[tuple]:
        return [c for c in self.calls if c[0] == "GET"]

    def _send(self, method, path, *, params=None, payload=None):
        self.calls.append((method, path, params, payload))
        parts = path.strip("/").split("/")
        zone_id = parts[1]
        records = self.zones.setdefault(zone_id, [])

        if zone_id in self.failing_zones:
            raise APIError("Authentication error (code 10000)", status_code=403)

        if method == "GET":
            rtype = (params or {}).get("type")
            result = [dict(r) for r in records if not rtype or r["type"] == rtype]
            return {"success": True, "result": result, "errors": []}

        if payload and payload.get("name") in self.failing_names:
            raise APIError("DNS name is invalid (code 9005)", status_code=400)

        if method == "POST":
            record = self.add(zone_id, **payload)
            return {"success": True, "result": dict(record), "errors": []}

        if method == "PUT":
            record_id = parts[3]
            for record in records:
                if record["id"] == record_id:
                    record.update(payload)
                    return {"success": True, "result": dict(record), "errors": []}
            raise APIError("Record does not exist (code 81044)", status_code=404)

        raise AssertionError(f"Unexpected {method} {path}")


@pytest.fixture
def fake_api() -> FakeCloudflareAPI:
    return FakeCloudflareAPI()


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    """Build validated Settings from raw option overrides."""

    def _make(**options: Any) -> Settings:
        data: Dict[str, Any] = {
            "domain_configs": f"{ZONE_A}:example.com",
            "cloudflare_zone_api_token": "test-token",
        }
        data.update(options)
        return Settings.from_dict(data)

    return _make
