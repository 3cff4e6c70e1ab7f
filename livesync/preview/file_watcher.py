import asyncio
import contextlib
import logging
import os
from pathlib import Path
from typing import Dict, List, Set, Tuple, Callable, Any, Optional
from pathspec import PathSpec
from watchfiles import awatch, Change

from ..core.config_manager import WatchOptions

logger = logging.getLogger(__name__)

ChangeBatch = List[Tuple[Path, bool]]


class GlobFilter:
    """watchfiles filter matching root-relative paths against glob patterns

    `*` stays within one path segment and `**` spans any number of them.
    Patterns without a slash only match at the root, `**/x` matches at any depth.
    """

    def __init__(self, root: Path, patterns: List[str], dot_files: bool = False):
        self.root = root
        self.patterns = list(patterns)
        self.dot_files = dot_files
        self.spec = PathSpec.from_lines("gitwildmatch", [self._anchor(p) for p in self.patterns])

    @staticmethod
    def _anchor(pattern: str) -> str:
        if pattern.startswith(('/', '**')) or '/' in pattern.rstrip('/'):
            return pattern
        return '/' + pattern

    def __call__(self, change: Change, path: str) -> bool:
        try:
            relative = Path(path).relative_to(self.root)
        except ValueError:
            return False
        if not self.dot_files and any(part.startswith('.') for part in relative.parts):
            return False
        if not self.patterns:
            return True
        return self.spec.match_file(relative.as_posix())


class WatchSubscription:
    """Recursive watch of one folder, delivering batches until closed"""

    def __init__(self, root: str, options: WatchOptions,
                 on_changes: Callable[[ChangeBatch], Any],
                 on_error: Callable[[Exception], Any]):
        self.root = Path(root).resolve()
        self.options = options
        self.on_changes = on_changes
        self.on_error = on_error
        self.filter = GlobFilter(self.root, options.files, options.watch_dot_files)
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self.closed = False

    def scan(self) -> List[Path]:
        """Files already present under the root that the filter accepts"""
        found = []
        for folder, dirs, files in os.walk(self.root):
            if not self.options.watch_dot_files:
                dirs[:] = [d for d in dirs if not d.startswith('.')]
            dirs.sort()
            for name in sorted(files):
                path = Path(folder) / name
                if self.filter(Change.added, str(path)):
                    found.append(path)
        return found

    def start(self):
        """Start watching the folder in the background"""
        if self.options.use_watchman:
            logger.warning(f"Watchman is not available, using native events for {self.root}")
        self._task = asyncio.create_task(self._watch())
        logger.info(f"start watching {self.root}")

    async def _watch(self):
        try:
            async for changes in awatch(
                self.root,
                watch_filter=self.filter,
                stop_event=self._stop_event,
                force_polling=self.options.use_file_polling,
                poll_delay_ms=self.options.polling_interval,
                recursive=True
            ):
                if self.closed:
                    break
                batch = self.normalize(changes)
                if batch:
                    await self._deliver(batch)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in file watcher for {self.root}: {e}")
            self.on_error(e)

    async def _deliver(self, batch: ChangeBatch):
        result = self.on_changes(batch)
        if asyncio.iscoroutine(result):
            await result

    def normalize(self, changes: Set[Tuple[Change, str]]) -> ChangeBatch:
        """Absolute paths, one entry per path, deletions dropped"""
        batch: Dict[Path, bool] = {}
        for change_type, file_path in changes:
            if change_type == Change.deleted:
                continue
            path = Path(file_path)
            if not path.is_absolute():
                path = self.root / path
            path = path.resolve()
            batch[path] = batch.get(path, False) or change_type == Change.added
        return sorted(batch.items())

    async def close(self):
        """Stop watching; no batch is delivered after this returns"""
        self.closed = True
        self._stop_event.set()
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.debug(f"stop watching {self.root}")


class FileWatcher:
    """Routes filesystem changes of every watched folder to one handler"""

    def __init__(self, on_changes: Callable[[ChangeBatch], Any],
                 on_error: Optional[Callable[[Exception], Any]] = None):
        self.on_changes = on_changes
        self.on_error = on_error or (lambda e: None)
        self.subscriptions: Dict[str, WatchSubscription] = {}

    def add_path(self, path: str, options: Optional[WatchOptions] = None) -> WatchSubscription:
        """Add a folder to watch"""
        subscription = WatchSubscription(path, options or WatchOptions(), self._handle_changes, self.on_error)
        self.subscriptions[path] = subscription
        return subscription

    def scan(self) -> List[Path]:
        """Files already present in every watched folder"""
        found = []
        for subscription in self.subscriptions.values():
            found.extend(subscription.scan())
        return found

    def start(self):
        """Start watching every configured folder"""
        for subscription in self.subscriptions.values():
            subscription.start()

    async def stop(self):
        """Stop watching for changes"""
        for subscription in self.subscriptions.values():
            await subscription.close()

    async def _handle_changes(self, batch: ChangeBatch):
        """Forward a batch, never letting handler errors stop the watch"""
        try:
            result = self.on_changes(batch)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.error(f"Error handling changes {[str(p) for p, _ in batch]}: {e}")
            self.on_error(e)
