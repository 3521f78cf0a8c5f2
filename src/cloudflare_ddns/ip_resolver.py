"""Public IP discovery from several untrusted IP echo services.

Sources are raced in small batches. The first response that is a well-formed
address for the requested family wins and the rest of that family's attempt
is abandoned.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

import requests
from requests.adapters import HTTPAdapter

from cloudflare_ddns.exceptions import IPUnavailable

logger = logging.getLogger(__name__)

IPV4_REGEX = re.compile(r"^([0-9]{1,3}\.){3}[0-9]{1,3}$")
IPV6_REGEX = re.compile(r"^([0-9a-fA-F]{0,4}:){1,7}[0-9a-fA-F]{0,4}$")

DEFAULT_IPV4_SOURCES = [
    "https://api.ipify.org",
    "https://checkip.amazonaws.com",
    "https://ifconfig.me/ip",
]
DEFAULT_IPV6_SOURCES = [
    "https://api64.ipify.org",
    "https://ifconfig.co/ip",
]


class IPFamily(Enum):
    IPV4 = "IPv4"
    IPV6 = "IPv6"

    @property
    def record_type(self) -> str:
        return "A" if self is IPFamily.IPV4 else "AAAA"

    @property
    def source_address(self) -> tuple:
        # Binding to the family's wildcard address forces the connection
        # onto that family.
        return ("0.0.0.0", 0) if self is IPFamily.IPV4 else ("::", 0)


class SourceAddressAdapter(HTTPAdapter):
    """Transport adapter that binds outgoing sockets to a local address."""

    def __init__(self, source_address: tuple, **kwargs):
        self._source_address = source_address
        super().__init__(**kwargs)

    def init_poolmanager(self, connections, maxsize, block=False, **pool_kwargs):
        pool_kwargs["source_address"] = self._source_address
        super().init_poolmanager(connections, maxsize, block=block, **pool_kwargs)


def is_valid_ip(value: str, family: IPFamily) -> bool:
    """Check an echo response against the strict regex for its family."""
    if family is IPFamily.IPV4:
        if not IPV4_REGEX.match(value):
            return False
        return all(int(octet) <= 255 for octet in value.split("."))
    return bool(IPV6_REGEX.match(value))


class IPResolver:
    """Resolve the host's public address per family.

    Args:
        ipv4_sources: Ordered IPv4 echo URLs.
        ipv6_sources: Ordered IPv6 echo URLs.
        batch_size: How many sources are queried at the same time.
        timeout_seconds: Per-request timeout.
        batch_pause_seconds: Pause before each batch after the first.
        sleep: Injected for tests.
    """

    def __init__(
        self,
        ipv4_sources: Optional[Sequence[str]] = None,
        ipv6_sources: Optional[Sequence[str]] = None,
        *,
        batch_size: int = 2,
        timeout_seconds: float = 3.0,
        batch_pause_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._sources: Dict[IPFamily, List[str]] = {
            IPFamily.IPV4: list(ipv4_sources or DEFAULT_IPV4_SOURCES),
            IPFamily.IPV6: list(ipv6_sources or DEFAULT_IPV6_SOURCES),
        }
        self.batch_size = max(1, batch_size)
        self.timeout = timeout_seconds
        self.batch_pause = batch_pause_seconds
        self._sleep = sleep
        self._sessions: Dict[IPFamily, requests.Session] = {}
        for family in IPFamily:
            session = requests.Session()
            adapter = SourceAddressAdapter(family.source_address)
            session.mount("http://", adapter)
            session.mount("https://", adapter)
            self._sessions[family] = session

    def resolve(self, family: IPFamily) -> str:
        """Return the public address for `family` or raise IPUnavailable."""
        sources = self._sources[family]
        if not sources:
            raise IPUnavailable(family.value, f"No sources defined for {family.value}")

        logger.info(
            f"Attempting to get {family.value} address from {len(sources)} sources "
            f"(timeout: {self.timeout}s)"
        )
        cancel = threading.Event()
        for start in range(0, len(sources), self.batch_size):
            if start:
                self._sleep(self.batch_pause)
            ip = self._race(family, sources[start : start + self.batch_size], cancel)
            if ip:
                return ip

        logger.error(f"Unable to retrieve {family.value} address from any source")
        raise IPUnavailable(family.value)

    def _race(self, family: IPFamily, batch: List[str], cancel: threading.Event) -> Optional[str]:
        executor = ThreadPoolExecutor(
            max_workers=len(batch), thread_name_prefix=f"resolve-{family.value}"
        )
        try:
            futures = [executor.submit(self._query, family, source, cancel) for source in batch]
            for future in as_completed(futures):
                ip = future.result()
                if ip:
                    cancel.set()
                    return ip
            return None
        finally:
            # Stragglers finish within their own timeout; their answers are dropped.
            executor.shutdown(wait=False, cancel_futures=True)

    def _query(self, family: IPFamily, source: str, cancel: threading.Event) -> Optional[str]:
        if cancel.is_set():
            return None

        logger.debug(f"Trying source: {source}")
        try:
            response = self._sessions[family].get(source, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            logger.info(f"Failed to get response from {source}: {e}")
            return None

        if cancel.is_set():
            return None

        value = "".join((response.text or "").split())
        if not is_valid_ip(value, family):
            logger.info(f"Invalid {family.value} format from {source}: {value!r}")
            return None

        logger.debug(f"Valid {family.value} found from {source}: {value}")
        return value
