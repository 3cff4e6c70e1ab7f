from typing import Dict, Optional
from dataclasses import dataclass
from pathlib import Path


@dataclass
class FileRecord:
    path: Path
    url: str
    src: str
    content: Optional[str] = None
    sync_snapshot: Optional[str] = None
    tmp: Optional[str] = None
    resolver: Optional[str] = None

    def __post_init__(self):
        self.path = Path(self.path)

    def take_snapshot(self) -> Optional[str]:
        """Return the pending original content and clear it in the same step"""
        snapshot, self.sync_snapshot = self.sync_snapshot, None
        return snapshot

    def stash_snapshot(self, content: str):
        """Keep the disk content for the next sync, replacing an unclaimed one"""
        self.sync_snapshot = content


class ResourceRegistry:
    """Index of known files by path, browser URL, source id and staging path"""

    def __init__(self):
        self._by_path: Dict[Path, FileRecord] = {}
        self._by_url: Dict[str, FileRecord] = {}
        self._by_src: Dict[str, FileRecord] = {}
        self._by_tmp: Dict[str, FileRecord] = {}

    def register(self, record: FileRecord) -> bool:
        """Store a record, replacing any record with the same path"""
        previous = self._by_path.get(record.path)
        if previous is not None:
            self._drop_secondary(previous)

        self._by_path[record.path] = record
        # a colliding url/src/tmp now points at the newest record
        for index, key in ((self._by_url, record.url),
                           (self._by_src, record.src),
                           (self._by_tmp, record.tmp)):
            if key is not None:
                index[key] = record
        return previous is not None

    def lookup_by_path(self, path) -> Optional[FileRecord]:
        return self._by_path.get(Path(path))

    def lookup_by_url(self, url: str) -> Optional[FileRecord]:
        return self._by_url.get(url)

    def lookup_by_src(self, src: str) -> Optional[FileRecord]:
        return self._by_src.get(src)

    def lookup_by_tmp(self, tmp: str) -> Optional[FileRecord]:
        return self._by_tmp.get(tmp)

    def lookup(self, address: str) -> Optional[FileRecord]:
        """Find a record by browser URL, falling back to its source id"""
        return self._by_url.get(address) or self._by_src.get(address)

    def records(self):
        return list(self._by_path.values())

    def __len__(self) -> int:
        return len(self._by_path)

    def __contains__(self, path) -> bool:
        return Path(path) in self._by_path

    def _drop_secondary(self, record: FileRecord):
        for index, key in ((self._by_url, record.url),
                           (self._by_src, record.src),
                           (self._by_tmp, record.tmp)):
            if key is not None and index.get(key) is record:
                del index[key]
