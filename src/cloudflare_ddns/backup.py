"""DNS record snapshots: backup, retention and restore.

A backup is one JSON document per invocation:

    {
      "backup_date": "2026-10-19T12:00:00Z",
      "zones": {
        "<zone_id>": {"result": [{"id": ..., "type": ..., "name": ..., ...}]}
      }
    }

Records are stored exactly as Cloudflare returned them. Restoring replays an
update-by-id for every stored record; records that are not in the backup are
never touched.
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from cloudflare_ddns.cloudflare import CloudflareClient
from cloudflare_ddns.exceptions import APIError, BackupError, BackupNotFound, RestoreError

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "dns_backup_"
BACKUP_PATTERN = f"{BACKUP_PREFIX}*.json"
BACKUP_NAME_RE = re.compile(rf"^{BACKUP_PREFIX}(\d{{8}}_\d{{6}})(?:_(\d+))?\.json$")


@dataclass
class BackupResult:
    ok: bool
    path: Optional[Path] = None
    errors: Dict[str, str] = field(default_factory=dict)
    removed: int = 0


@dataclass
class RestoreReport:
    path: Path
    restored: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed == 0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BackupManager:
    """Write, prune and restore record snapshots under `backup_dir`.

    Args:
        client: Client used for zone fetches and restores.
        backup_dir: Directory holding `dns_backup_*.json` files.
        max_backups: Number of snapshots kept after a backup. 0 keeps all.
        clock: Returns an aware UTC datetime; injected for tests.
    """

    def __init__(
        self,
        *,
        client: CloudflareClient,
        backup_dir: Path,
        max_backups: int = 10,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.client = client
        self.backup_dir = Path(backup_dir)
        self.max_backups = max_backups
        self._clock = clock

    def backup(self, zone_ids: Iterable[str]) -> BackupResult:
        """Snapshot every record of every zone.

        A failed zone fetch fails the whole backup and no file is written.
        """
        logger.info("Starting DNS records backup...")
        zones: Dict[str, Dict[str, Any]] = {}
        errors: Dict[str, str] = {}

        for zone_id in dict.fromkeys(zone_ids):
            try:
                zones[zone_id] = {"result": self.client.fetch_zone_records(zone_id)}
                logger.debug(f"Fetched {len(zones[zone_id]['result'])} record(s) for zone {zone_id}")
            except APIError as e:
                logger.error(f"Failed to get DNS records for zone {zone_id}: {e}")
                errors[zone_id] = str(e)

        if errors:
            logger.error("Backup failed")
            return BackupResult(ok=False, errors=errors)

        now = self._clock()
        document = {
            "backup_date": now.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "zones": zones,
        }
        try:
            path = self._write(document, now)
        except BackupError as e:
            logger.error(str(e))
            return BackupResult(ok=False, errors={"write": str(e)})

        logger.info(f"DNS records backed up to: {path}")
        removed = self.prune() if self.max_backups > 0 else 0
        return BackupResult(ok=True, path=path, removed=removed)

    def list_backups(self) -> List[Path]:
        """Existing snapshots, oldest first."""
        if not self.backup_dir.is_dir():
            return []
        files = [p for p in self.backup_dir.glob(BACKUP_PATTERN) if p.is_file()]
        return sorted(files, key=_backup_sort_key)

    def prune(self) -> int:
        """Delete the oldest snapshots beyond `max_backups`."""
        backups = self.list_backups()
        excess = len(backups) - self.max_backups
        if excess <= 0:
            return 0

        logger.info(f"Cleaning up old DNS backups (keeping last {self.max_backups})...")
        removed = 0
        for path in backups[:excess]:
            try:
                path.unlink()
                removed += 1
            except OSError as e:
                logger.warning(f"Failed to remove old DNS backup {path}: {e}")
        logger.info(f"Removed {removed} old DNS backup(s)")
        return removed

    def resolve_path(self, path_or_name: str) -> Path:
        """Bare file names live in the backup directory; paths are used as-is."""
        separators = [os.sep] + ([os.altsep] if os.altsep else [])
        if any(sep in path_or_name for sep in separators):
            return Path(path_or_name)
        return self.backup_dir / path_or_name

    def restore(self, path_or_name: str) -> RestoreReport:
        """Replay every record of a backup as an update by id.

        Raises BackupNotFound for a missing file and RestoreError for a file
        that is not a backup document. Per-record failures are counted in the
        report; records restored before a failure stay restored.
        """
        path = self.resolve_path(path_or_name)
        if not path.is_file():
            logger.error(f"Backup file not found: {path}")
            raise BackupNotFound(f"Backup file not found: {path}")

        try:
            document = json.loads(path.read_text("utf-8"))
        except (OSError, ValueError) as e:
            raise RestoreError(f"Failed to read backup file {path}: {e}") from e

        zones = document.get("zones") if isinstance(document, dict) else None
        if not isinstance(zones, dict):
            raise RestoreError(f"Backup file {path} has no 'zones' mapping")

        logger.info(f"Starting DNS records restore from: {path}")
        report = RestoreReport(path=path)
        for zone_id, zone_data in zones.items():
            logger.info(f"Processing zone: {zone_id}")
            records = zone_data.get("result") if isinstance(zone_data, dict) else None
            if not isinstance(records, list):
                message = f"Zone {zone_id} in backup has no record list"
                logger.error(message)
                report.failed += 1
                report.errors.append(message)
                continue

            for record in records:
                self._restore_record(zone_id, record, report)

        if report.ok:
            logger.info(f"DNS records restored successfully ({report.restored} record(s))")
        else:
            logger.warning(
                f"Some records failed to restore ({report.failed} failed, "
                f"{report.restored} restored)"
            )
        return report

    def _restore_record(self, zone_id: str, record: Any, report: RestoreReport) -> None:
        if not isinstance(record, dict) or not record.get("id"):
            message = f"Skipping record without id in zone {zone_id}: {record!r}"
            logger.error(message)
            report.failed += 1
            report.errors.append(message)
            return

        name = record.get("name")
        rtype = record.get("type")
        payload = {
            "type": rtype,
            "name": name,
            "content": record.get("content"),
            "ttl": record.get("ttl", 1),
            "proxied": record.get("proxied", False),
        }
        try:
            self.client.put_record(zone_id, str(record["id"]), payload)
        except APIError as e:
            logger.error(f"Failed to restore record: {name} ({rtype}): {e}")
            report.failed += 1
            report.errors.append(f"{name} ({rtype}): {e}")
            return

        logger.info(f"Restored record: {name} ({rtype})")
        report.restored += 1

    def _write(self, document: Dict[str, Any], now: datetime) -> Path:
        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BackupError(f"Cannot create backup directory {self.backup_dir}: {e}") from e
        stem = f"{BACKUP_PREFIX}{now.strftime('%Y%m%d_%H%M%S')}"
        path = self.backup_dir / f"{stem}.json"
        counter = 1
        while path.exists():
            path = self.backup_dir / f"{stem}_{counter}.json"
            counter += 1

        tmp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            tmp_path.write_text(json.dumps(document, indent=2), "utf-8")
            tmp_path.replace(path)
        except OSError as e:
            raise BackupError(f"Failed to write DNS backup to {path}: {e}") from e
        finally:
            if tmp_path.exists():
                tmp_path.unlink()
        return path


def _backup_sort_key(path: Path) -> Tuple[float, str, int]:
    # Same-second backups carry a numeric suffix: _2 sorts before _10.
    match = BACKUP_NAME_RE.match(path.name)
    if match is None:
        return (path.stat().st_mtime, path.name, 0)
    return (path.stat().st_mtime, match.group(1), int(match.group(2) or 0))
