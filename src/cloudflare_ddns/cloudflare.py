"""Cloudflare DNS API client with a per-client record cache and retry/backoff."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from cloudflare_ddns.exceptions import APIError
from cloudflare_ddns.models import DesiredRecord, RemoteRecord

logger = logging.getLogger(__name__)

CLOUDFLARE_API_URL = "https://api.cloudflare.com/client/v4"
DNS_CACHE_TTL = 300.0
PAGE_SIZE = 100


# =============================================================================
# Record Cache
# =============================================================================


class RecordCache:
    """In-memory snapshot of record lists keyed by (zone_id, record type).

    Entries expire `ttl_seconds` after they were stored and are dropped
    explicitly after any write to the same zone and type.
    """

    def __init__(self, ttl_seconds: float = DNS_CACHE_TTL, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[Tuple[str, str], Tuple[List[RemoteRecord], float]] = {}

    def get(self, zone_id: str, record_type: str) -> Optional[List[RemoteRecord]]:
        entry = self._entries.get((zone_id, record_type))
        if entry is None:
            return None
        records, fetched_at = entry
        if self._clock() - fetched_at >= self.ttl:
            del self._entries[(zone_id, record_type)]
            return None
        return list(records)

    def set(self, zone_id: str, record_type: str, records: List[RemoteRecord]) -> None:
        self._entries[(zone_id, record_type)] = (list(records), self._clock())

    def invalidate(self, zone_id: str, record_type: str) -> None:
        self._entries.pop((zone_id, record_type), None)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: Tuple[str, str]) -> bool:
        return self.get(*key) is not None


# =============================================================================
# Retry Policy
# =============================================================================


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    retry_delay: float = 5.0
    max_retry_delay: float = 60.0

    def delay(self, attempt: int) -> float:
        """Backoff before retry number `attempt` (0-based)."""
        return min(self.retry_delay * (2**attempt), self.max_retry_delay)


# =============================================================================
# Cloudflare Client
# =============================================================================


class CloudflareClient:
    """Thin wrapper over the Cloudflare DNS records endpoints.

    Every call returns parsed data or raises APIError. Transient failures
    (transport errors, HTTP 429 and 5xx) are retried according to the
    RetryPolicy; anything else fails on the first attempt.
    """

    def __init__(
        self,
        api_token: str,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        cache: Optional[RecordCache] = None,
        base_url: str = CLOUDFLARE_API_URL,
        timeout_seconds: float = 10.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._base_url = base_url.rstrip("/")
        self.retry_policy = retry_policy or RetryPolicy()
        self.cache = cache if cache is not None else RecordCache()
        self._timeout = timeout_seconds
        self._sleep = sleep
        self._session = requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {api_token}",
                "Content-Type": "application/json",
            }
        )

    def list(self, zone_id: str, record_type: str) -> List[RemoteRecord]:
        """Records of one type in a zone, served from cache while fresh."""
        cached = self.cache.get(zone_id, record_type)
        if cached is not None:
            logger.debug(f"Using cached DNS records for zone {zone_id} type {record_type}")
            return cached

        logger.debug(f"Cache miss for zone {zone_id} type {record_type}, fetching from API")
        raw_records = self._get_paginated(zone_id, {"type": record_type})
        records = [RemoteRecord.from_api(zone_id, r) for r in raw_records]
        self.cache.set(zone_id, record_type, records)
        logger.debug(f"Cached {len(records)} DNS record(s) for zone {zone_id} type {record_type}")
        return records

    def find(self, zone_id: str, record_type: str, name: str) -> Optional[RemoteRecord]:
        for record in self.list(zone_id, record_type):
            if record.name == name:
                return record
        return None

    def create(self, zone_id: str, desired: DesiredRecord) -> str:
        """Create a record and return its provider id."""
        body = self._request("POST", f"/zones/{zone_id}/dns_records", payload=desired.payload())
        self.cache.invalidate(zone_id, desired.type)
        result = body.get("result")
        if not isinstance(result, dict) or not result.get("id"):
            raise APIError(f"Cloudflare API did not return an id for created record {desired.name}")
        return str(result["id"])

    def update(self, zone_id: str, record_id: str, desired: DesiredRecord) -> None:
        self.put_record(zone_id, record_id, desired.payload())

    def put_record(self, zone_id: str, record_id: str, payload: Dict[str, Any]) -> None:
        """Replace a record by id with an arbitrary payload."""
        self._request("PUT", f"/zones/{zone_id}/dns_records/{record_id}", payload=payload)
        self.cache.invalidate(zone_id, str(payload.get("type", "")))

    def fetch_zone_records(self, zone_id: str) -> List[Dict[str, Any]]:
        """Every record of a zone, all types, as raw provider dictionaries.

        Never served from or stored in the cache.
        """
        return self._get_paginated(zone_id, {})

    # -------------------------------------------------------------------------

    def _get_paginated(self, zone_id: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        records: List[Dict[str, Any]] = []
        page = 1
        while True:
            body = self._request(
                "GET",
                f"/zones/{zone_id}/dns_records",
                params={**params, "page": page, "per_page": PAGE_SIZE},
            )
            result = body.get("result")
            if not isinstance(result, list):
                raise APIError(f"Malformed record list from Cloudflare API for zone {zone_id}")
            records.extend(r for r in result if isinstance(r, dict))

            info = body.get("result_info") or {}
            total_pages = info.get("total_pages") if isinstance(info, dict) else None
            if not isinstance(total_pages, int) or page >= total_pages:
                return records
            page += 1

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        attempt = 0
        while True:
            try:
                return self._send(method, path, params=params, payload=payload)
            except APIError as e:
                if not e.retryable or attempt >= self.retry_policy.max_retries:
                    raise
                delay = self.retry_policy.delay(attempt)
                attempt += 1
                logger.warning(
                    f"{method} {path} failed: {e}. Retrying in {delay:g}s "
                    f"(attempt {attempt}/{self.retry_policy.max_retries})"
                )
                self._sleep(delay)

    def _send(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        url = f"{self._base_url}{path}"
        try:
            response = self._session.request(
                method, url, params=params, json=payload, timeout=self._timeout
            )
        except requests.exceptions.ReadTimeout as e:
            # A POST that timed out after being sent may already have created the record.
            raise APIError(f"Request to Cloudflare API failed: {e}", retryable=method != "POST") from e
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            raise APIError(f"Request to Cloudflare API failed: {e}", retryable=True) from e
        except requests.exceptions.RequestException as e:
            raise APIError(f"Request to Cloudflare API failed: {e}") from e

        status = response.status_code
        transient = status == 429 or status >= 500
        try:
            body = response.json()
        except ValueError:
            raise APIError(
                f"Invalid JSON response from Cloudflare API (HTTP {status})",
                status_code=status,
                retryable=transient,
            ) from None

        if not isinstance(body, dict) or "success" not in body:
            raise APIError(
                f"Malformed response from Cloudflare API (HTTP {status})",
                status_code=status,
                retryable=transient,
            )
        if body.get("success") is not True or status >= 400:
            raise APIError(_error_message(body), status_code=status, retryable=transient)
        return body


def _error_message(body: Dict[str, Any]) -> str:
    errors = body.get("errors")
    if isinstance(errors, list) and errors:
        first = errors[0]
        if isinstance(first, dict) and first.get("message"):
            code = first.get("code")
            return f"{first['message']} (code {code})" if code else str(first["message"])
    return "Unknown error"
