"""Unit tests for BackupManager: snapshots, retention and restore."""

import json
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from cloudflare_ddns.backup import BackupManager
from cloudflare_ddns.exceptions import BackupNotFound, RestoreError

ZONE_A = "0123456789abcdef0123456789abcdef"
ZONE_B = "fedcba9876543210fedcba9876543210"


class StepClock:
    """Returns a later UTC time on every call."""

    def __init__(self, start: datetime = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now += timedelta(seconds=1)
        return current


def make_manager(fake_api, tmp_path: Path, max_backups: int = 10, clock=None) -> BackupManager:
    return BackupManager(
        client=fake_api,
        backup_dir=tmp_path / "dns_backups",
        max_backups=max_backups,
        clock=clock or StepClock(),
    )


def populate(fake_api) -> None:
    fake_api.add(ZONE_A, "example.com", "A", "198.51.100.1", id="a1", ttl=1, proxied=True)
    fake_api.add(ZONE_A, "example.com", "MX", "mail.example.com", id="mx1", ttl=3600, priority=10)
    fake_api.add(ZONE_B, "example.org", "AAAA", "2001:db8::1", id="b1", ttl=300)


# =============================================================================
# Backup
# =============================================================================


class TestBackup:
    def test_backup_writes_all_records_of_all_zones(self, fake_api, tmp_path: Path) -> None:
        populate(fake_api)
        manager = make_manager(fake_api, tmp_path)

        result = manager.backup([ZONE_A, ZONE_B])

        assert result.ok
        assert result.path == tmp_path / "dns_backups" / "dns_backup_20261019_120000.json"
        document = json.loads(result.path.read_text())
        assert document["backup_date"] == "2026-10-19T12:00:00Z"
        assert list(document["zones"]) == [ZONE_A, ZONE_B]
        assert document["zones"][ZONE_A]["result"] == fake_api.zones[ZONE_A]
        assert [r["type"] for r in document["zones"][ZONE_A]["result"]] == ["A", "MX"]

    def test_backup_fetches_unfiltered_records_without_cache(self, fake_api, tmp_path: Path) -> None:
        populate(fake_api)
        fake_api.list(ZONE_A, "A")
        reads_before = len(fake_api.reads)

        make_manager(fake_api, tmp_path).backup([ZONE_A])

        backup_reads = fake_api.reads[reads_before:]
        assert len(backup_reads) == 1
        assert "type" not in backup_reads[0][2]

    def test_backup_leaves_no_temp_file(self, fake_api, tmp_path: Path) -> None:
        populate(fake_api)

        result = make_manager(fake_api, tmp_path).backup([ZONE_A])

        assert [p.name for p in result.path.parent.iterdir()] == [result.path.name]

    def test_failed_zone_fails_whole_backup(self, fake_api, tmp_path: Path) -> None:
        populate(fake_api)
        fake_api.failing_zones.add(ZONE_B)
        manager = make_manager(fake_api, tmp_path)

        result = manager.backup([ZONE_A, ZONE_B])

        assert not result.ok
        assert result.path is None
        assert list(result.errors) == [ZONE_B]
        assert "Authentication error" in result.errors[ZONE_B]
        assert manager.list_backups() == []

    def test_unwritable_backup_dir_fails_backup(self, fake_api, tmp_path: Path) -> None:
        populate(fake_api)
        (tmp_path / "dns_backups").write_text("not a directory")

        result = make_manager(fake_api, tmp_path).backup([ZONE_A])

        assert not result.ok
        assert result.path is None
        assert "Cannot create backup directory" in result.errors["write"]

    def test_duplicate_zone_ids_are_fetched_once(self, fake_api, tmp_path: Path) -> None:
        populate(fake_api)

        make_manager(fake_api, tmp_path).backup([ZONE_A, ZONE_A])

        assert len(fake_api.reads) == 1

    def test_same_second_backups_get_distinct_names(self, fake_api, tmp_path: Path) -> None:
        populate(fake_api)
        fixed = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)
        manager = make_manager(fake_api, tmp_path, clock=lambda: fixed)

        first = manager.backup([ZONE_A])
        second = manager.backup([ZONE_A])

        assert first.path.name == "dns_backup_20261019_120000.json"
        assert second.path.name == "dns_backup_20261019_120000_1.json"


# =============================================================================
# Retention
# =============================================================================


class TestRetention:
    def test_keeps_only_the_most_recent_backups(self, fake_api, tmp_path: Path) -> None:
        populate(fake_api)
        manager = make_manager(fake_api, tmp_path, max_backups=3)

        paths = [manager.backup([ZONE_A]).path for _ in range(4)]

        remaining = manager.list_backups()
        assert len(remaining) == 3
        assert remaining == paths[1:]
        assert not paths[0].exists()

    def test_prune_orders_by_modification_time(self, fake_api, tmp_path: Path) -> None:
        backup_dir = tmp_path / "dns_backups"
        backup_dir.mkdir()
        newest_name = backup_dir / "dns_backup_20200101_000000.json"
        oldest_name = backup_dir / "dns_backup_20300101_000000.json"
        for path in (newest_name, oldest_name):
            path.write_text("{}")

        os.utime(oldest_name, (1_000, 1_000))
        os.utime(newest_name, (2_000, 2_000))
        manager = make_manager(fake_api, tmp_path, max_backups=1)

        assert manager.prune() == 1
        assert manager.list_backups() == [newest_name]

    def test_same_second_suffixes_sort_numerically(self, fake_api, tmp_path: Path) -> None:
        backup_dir = tmp_path / "dns_backups"
        backup_dir.mkdir()
        stem = "dns_backup_20261019_120000"
        paths = [backup_dir / f"{stem}.json"] + [backup_dir / f"{stem}_{n}.json" for n in range(1, 12)]
        for path in paths:
            path.write_text("{}")
            os.utime(path, (1_000, 1_000))
        manager = make_manager(fake_api, tmp_path, max_backups=2)

        assert manager.list_backups() == paths
        assert manager.prune() == 10
        assert manager.list_backups() == paths[-2:]

    def test_zero_max_backups_keeps_everything(self, fake_api, tmp_path: Path) -> None:
        populate(fake_api)
        manager = make_manager(fake_api, tmp_path, max_backups=0)

        for _ in range(3):
            assert manager.backup([ZONE_A]).removed == 0

        assert len(manager.list_backups()) == 3

    def test_prune_ignores_unrelated_files(self, fake_api, tmp_path: Path) -> None:
        populate(fake_api)
        manager = make_manager(fake_api, tmp_path, max_backups=1)
        (tmp_path / "dns_backups").mkdir()
        notes = tmp_path / "dns_backups" / "notes.txt"
        notes.write_text("keep me")

        manager.backup([ZONE_A])
        manager.backup([ZONE_A])

        assert notes.exists()
        assert len(manager.list_backups()) == 1


# =============================================================================
# Restore
# =============================================================================


class TestRestore:
    def test_restore_replays_updates_identical_to_backup(self, fake_api, tmp_path: Path) -> None:
        """restore(backup(Z)) with no intervening change sends the backed-up records."""
        populate(fake_api)
        manager = make_manager(fake_api, tmp_path)
        before = {zone: [dict(r) for r in records] for zone, records in fake_api.zones.items()}
        result = manager.backup([ZONE_A, ZONE_B])

        report = manager.restore(result.path.name)

        assert report.ok
        assert report.restored == 3
        puts = [c for c in fake_api.calls if c[0] == "PUT"]
        assert len(puts) == 3
        fields = ("type", "name", "content", "ttl", "proxied")
        for (_, path, _, payload), (zone, record) in zip(
            puts, [(z, r) for z, records in before.items() for r in records]
        ):
            assert path == f"/zones/{zone}/dns_records/{record['id']}"
            assert json.dumps(payload) == json.dumps({k: record[k] for k in fields})
        assert fake_api.zones == before

    def test_restore_reverts_changed_records(self, fake_api, tmp_path: Path) -> None:
        populate(fake_api)
        manager = make_manager(fake_api, tmp_path)
        result = manager.backup([ZONE_A])
        fake_api.get(ZONE_A, "example.com", "A")["content"] = "203.0.113.99"

        manager.restore(str(result.path))

        assert fake_api.get(ZONE_A, "example.com", "A")["content"] == "198.51.100.1"

    def test_restore_never_touches_records_missing_from_backup(self, fake_api, tmp_path: Path) -> None:
        populate(fake_api)
        manager = make_manager(fake_api, tmp_path)
        result = manager.backup([ZONE_A])
        added = fake_api.add(ZONE_A, "new.example.com", "A", "203.0.113.1")

        manager.restore(result.path.name)

        assert fake_api.get(ZONE_A, "new.example.com", "A") == added
        assert all(record_id_of(c) != added["id"] for c in fake_api.writes)

    def test_partial_failure_is_reported_without_rollback(self, fake_api, tmp_path: Path) -> None:
        populate(fake_api)
        manager = make_manager(fake_api, tmp_path)
        result = manager.backup([ZONE_A, ZONE_B])
        fake_api.get(ZONE_B, "example.org", "AAAA")["content"] = "2001:db8::99"
        fake_api.get(ZONE_A, "example.com", "A")["content"] = "203.0.113.99"
        fake_api.failing_names.add("example.org")

        report = manager.restore(result.path.name)

        assert not report.ok
        assert report.failed == 1
        assert report.restored == 2
        assert "example.org (AAAA)" in report.errors[0]
        assert fake_api.get(ZONE_A, "example.com", "A")["content"] == "198.51.100.1"

    def test_restore_invalidates_cached_lists(self, fake_api, tmp_path: Path) -> None:
        populate(fake_api)
        manager = make_manager(fake_api, tmp_path)
        result = manager.backup([ZONE_A])
        fake_api.list(ZONE_A, "A")

        manager.restore(result.path.name)

        assert (ZONE_A, "A") not in fake_api.cache

    def test_restore_missing_file_raises(self, fake_api, tmp_path: Path) -> None:
        manager = make_manager(fake_api, tmp_path)

        with pytest.raises(BackupNotFound):
            manager.restore("dns_backup_19700101_000000.json")

        assert fake_api.calls == []

    def test_restore_unparsable_file_raises(self, fake_api, tmp_path: Path) -> None:
        bad = tmp_path / "broken.json"
        bad.write_text("not json {{{")

        with pytest.raises(RestoreError, match="Failed to read backup file"):
            make_manager(fake_api, tmp_path).restore(str(bad))

    def test_restore_rejects_document_without_zones(self, fake_api, tmp_path: Path) -> None:
        other = tmp_path / "other.json"
        other.write_text(json.dumps({"version": 1}))

        with pytest.raises(RestoreError, match="no 'zones' mapping"):
            make_manager(fake_api, tmp_path).restore(str(other))

    def test_records_without_id_count_as_failed(self, fake_api, tmp_path: Path) -> None:
        backup = tmp_path / "dns_backups" / "manual.json"
        backup.parent.mkdir()
        backup.write_text(
            json.dumps(
                {
                    "backup_date": "2026-10-19T12:00:00Z",
                    "zones": {ZONE_A: {"result": [{"type": "A", "name": "example.com"}]}},
                }
            )
        )

        report = make_manager(fake_api, tmp_path).restore("manual.json")

        assert report.failed == 1
        assert fake_api.writes == []


def test_resolve_path_distinguishes_names_from_paths(fake_api, tmp_path: Path) -> None:
    manager = make_manager(fake_api, tmp_path)

    assert manager.resolve_path("dns_backup_x.json") == tmp_path / "dns_backups" / "dns_backup_x.json"
    assert manager.resolve_path("some/dir/file.json") == Path("some/dir/file.json")
    assert manager.resolve_path(str(tmp_path / "abs.json")) == tmp_path / "abs.json"


def record_id_of(call: tuple) -> str:
    return call[1].rsplit("/", 1)[-1]
