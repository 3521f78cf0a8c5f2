"""Reconciliation of configured A/AAAA records against Cloudflare.

For every (zone, name, type) tuple the reconciler fetches the existing record
and then either leaves it alone, updates it in place, creates it, or skips
it. Only content and the proxied flag decide whether a write is needed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from cloudflare_ddns.cloudflare import CloudflareClient
from cloudflare_ddns.config import Settings, ZoneConfig
from cloudflare_ddns.exceptions import APIError
from cloudflare_ddns.models import DesiredRecord, NotifyEvent, RecordAction
from cloudflare_ddns.notifier import Notifier, NullNotifier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordOutcome:
    zone_id: str
    name: str
    type: str
    action: RecordAction
    message: str = ""


@dataclass
class RunSummary:
    outcomes: List[RecordOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def failed(self) -> List[RecordOutcome]:
        return [o for o in self.outcomes if o.action is RecordAction.FAILED]

    def count(self, action: RecordAction) -> int:
        return sum(1 for o in self.outcomes if o.action is action)

    def describe(self) -> str:
        parts = [
            f"{self.count(action)} {action.value}"
            for action in RecordAction
            if self.count(action)
        ]
        return ", ".join(parts) if parts else "no records processed"


class Reconciler:
    def __init__(
        self,
        *,
        client: CloudflareClient,
        settings: Settings,
        notifier: Optional[Notifier] = None,
    ):
        self.client = client
        self.settings = settings
        self.notifier = notifier or NullNotifier()

    def run(self, ipv4: Optional[str], ipv6: Optional[str]) -> RunSummary:
        """Reconcile every configured zone with the resolved addresses.

        A family whose address is None is skipped. AAAA records are only
        considered when IPv6 is enabled.
        """
        summary = RunSummary()
        if not self.settings.enable_ipv6:
            ipv6 = None

        logger.info(f"Found {len(self.settings.zones)} zone(s) to process")
        for zone in self.settings.zones:
            self._reconcile_zone(zone, ipv4, ipv6, summary)

        log = logger.info if summary.ok else logger.warning
        log(f"Reconciliation finished: {summary.describe()}")
        return summary

    def _reconcile_zone(
        self, zone: ZoneConfig, ipv4: Optional[str], ipv6: Optional[str], summary: RunSummary
    ) -> None:
        logger.info(f"Processing zone: {zone.zone_id} ({len(zone.domains)} domain(s))")
        shared_ipv6 = self.settings.use_same_record_for_ipv6

        for domain in zone.domains:
            logger.debug(f"Processing domain: {domain}")
            if ipv4:
                summary.outcomes.append(self.reconcile_record(self._desired(zone, domain, "A", ipv4)))
            if ipv6 and shared_ipv6:
                summary.outcomes.append(
                    self.reconcile_record(self._desired(zone, domain, "AAAA", ipv6))
                )

        if ipv6 and not shared_ipv6:
            for record in self.settings.ipv6_records:
                if not record.applies_to(zone.zone_id):
                    continue
                logger.debug(f"Processing IPv6 record: {record.name}")
                summary.outcomes.append(
                    self.reconcile_record(self._desired(zone, record.name, "AAAA", ipv6))
                )

    def _desired(self, zone: ZoneConfig, name: str, record_type: str, ip: str) -> DesiredRecord:
        return DesiredRecord(
            zone_id=zone.zone_id,
            name=name,
            type=record_type,
            content=ip,
            ttl=self.settings.ttl,
            proxied=self.settings.proxied,
        )

    def reconcile_record(self, desired: DesiredRecord) -> RecordOutcome:
        """Bring one record in line with `desired`. Never raises APIError."""
        zone_id, name, rtype = desired.zone_id, desired.name, desired.type

        try:
            existing = self.client.find(zone_id, rtype, name)
        except APIError as e:
            logger.error(
                f"Can't get {rtype} records information from Cloudflare API for zone {zone_id}: {e}"
            )
            return RecordOutcome(zone_id, name, rtype, RecordAction.FAILED, str(e))

        if existing is None:
            if not self.settings.auto_create_records:
                logger.info(
                    f"DNS {rtype} record for {name} does not exist. "
                    "Skipping (auto_create_records is disabled)."
                )
                return RecordOutcome(zone_id, name, rtype, RecordAction.SKIPPED, "missing")

            logger.info(f"DNS {rtype} record for {name} does not exist. Creating...")
            try:
                record_id = self.client.create(zone_id, desired)
            except APIError as e:
                logger.error(f"Failed to create DNS record for {name} ({rtype}): {e}")
                return RecordOutcome(zone_id, name, rtype, RecordAction.FAILED, str(e))

            logger.info(
                f"Created new DNS {rtype} record for {name} with IP: {desired.content}, "
                f"ttl: {desired.ttl}, proxied: {str(desired.proxied).lower()}"
            )
            self._notify(desired, RecordAction.CREATED)
            return RecordOutcome(zone_id, name, rtype, RecordAction.CREATED, record_id)

        if existing.matches(desired):
            logger.info(f"DNS {rtype} record of {name} is {existing.content}, no changes needed.")
            return RecordOutcome(zone_id, name, rtype, RecordAction.UNCHANGED)

        logger.info(f"DNS {rtype} record of {name} is: {existing.content}. Trying to update...")
        try:
            self.client.update(zone_id, existing.id, desired)
        except APIError as e:
            logger.error(f"Update failed for {name} ({rtype}): {e}")
            return RecordOutcome(zone_id, name, rtype, RecordAction.FAILED, str(e))

        logger.info(f"DNS {rtype} record of {name} updated to: {desired.content}")
        self._notify(desired, RecordAction.UPDATED)
        return RecordOutcome(zone_id, name, rtype, RecordAction.UPDATED, existing.id)

    def _notify(self, desired: DesiredRecord, action: RecordAction) -> None:
        self.notifier.notify(
            NotifyEvent(
                record_name=desired.name,
                record_type=desired.type,
                ip=desired.content,
                action=action,
            )
        )
