"""Record types shared by the client, reconciler and backup manager."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict


class RecordAction(Enum):
    """What the reconciler did with one (zone, name, type) tuple."""

    UNCHANGED = "unchanged"
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class DesiredRecord:
    """A record as it should exist at the provider."""

    zone_id: str
    name: str
    type: str
    content: str
    ttl: int = 1
    proxied: bool = False

    def payload(self) -> Dict[str, Any]:
        """Request body for create and update calls."""
        return {
            "type": self.type,
            "name": self.name,
            "content": self.content,
            "ttl": self.ttl,
            "proxied": self.proxied,
        }


@dataclass(frozen=True)
class RemoteRecord:
    """A record as returned by the provider."""

    id: str
    zone_id: str
    name: str
    type: str
    content: str
    ttl: int
    proxied: bool
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_api(cls, zone_id: str, data: Dict[str, Any]) -> "RemoteRecord":
        return cls(
            id=str(data.get("id") or ""),
            zone_id=zone_id,
            name=str(data.get("name") or ""),
            type=str(data.get("type") or ""),
            content=str(data.get("content") or ""),
            ttl=int(data.get("ttl") or 1),
            proxied=bool(data.get("proxied", False)),
            raw=dict(data),
        )

    def matches(self, desired: DesiredRecord) -> bool:
        """True when no write is needed. TTL is not compared."""
        return self.content == desired.content and self.proxied == desired.proxied


@dataclass(frozen=True)
class NotifyEvent:
    record_name: str
    record_type: str
    ip: str
    action: RecordAction
