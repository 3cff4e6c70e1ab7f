import pytest
from pathlib import Path

from livesync.core.registry import FileRecord, ResourceRegistry


@pytest.fixture
def record(tmp_path):
    return FileRecord(path=tmp_path / "css" / "a.css", url="css/a.css", src="scss/a.scss")


class TestResourceRegistry:
    def test_register_reports_existing(self, registry, record):
        assert registry.register(record) is False
        assert registry.register(FileRecord(path=record.path, url="css/a.css", src="css/a.css")) is True
        assert len(registry) == 1

    def test_lookups(self, registry, record):
        registry.register(record)
        assert registry.lookup_by_path(str(record.path)) is record
        assert registry.lookup_by_url("css/a.css") is record
        assert registry.lookup_by_src("scss/a.scss") is record
        assert record.path in registry

    def test_unknown_keys_are_not_found(self, registry):
        assert registry.lookup_by_path("/nowhere") is None
        assert registry.lookup_by_url("nope.css") is None
        assert registry.lookup_by_src("nope.scss") is None
        assert registry.lookup_by_tmp("nope.tmp") is None
        assert registry.lookup("nope") is None

    def test_lookup_falls_back_to_src(self, registry, record):
        registry.register(record)
        assert registry.lookup("css/a.css") is record
        assert registry.lookup("scss/a.scss") is record

    def test_reregistration_drops_stale_keys(self, registry, record):
        registry.register(record)
        renamed = FileRecord(path=record.path, url="css/b.css", src="scss/b.scss")
        registry.register(renamed)

        assert registry.lookup_by_url("css/a.css") is None
        assert registry.lookup_by_src("scss/a.scss") is None
        assert registry.lookup_by_url("css/b.css") is renamed

    def test_url_collision_last_writer_wins(self, registry, tmp_path):
        first = FileRecord(path=tmp_path / "one.css", url="shared.css", src="one.css")
        second = FileRecord(path=tmp_path / "two.css", url="shared.css", src="two.css")
        registry.register(first)
        registry.register(second)

        assert registry.lookup_by_url("shared.css") is second
        assert registry.lookup_by_path(tmp_path / "one.css") is first

        # once the winner moves on, the displaced record does not get the key back
        registry.register(FileRecord(path=tmp_path / "two.css", url="two.css", src="two.css"))
        assert registry.lookup_by_url("shared.css") is None

    def test_tmp_index(self, registry, tmp_path):
        record = FileRecord(path=tmp_path / "a.css", url="a.css", src="a.css", tmp=str(tmp_path / ".a.tmp"))
        registry.register(record)
        assert registry.lookup_by_tmp(str(tmp_path / ".a.tmp")) is record


class TestSnapshot:
    def test_take_snapshot_consumes_once(self, record):
        record.sync_snapshot = "original"
        assert record.take_snapshot() == "original"
        assert record.sync_snapshot is None
        assert record.take_snapshot() is None

    def test_stash_replaces_unclaimed_snapshot(self, record):
        record.stash_snapshot("first")
        record.stash_snapshot("second")
        assert record.take_snapshot() == "second"
        assert record.take_snapshot() is None

    def test_path_is_normalized_to_path(self):
        record = FileRecord(path="/tmp/x.css", url="x.css", src="x.css")
        assert isinstance(record.path, Path)
