import asyncio
import logging
from pathlib import Path
from typing import Dict, Any, List, Optional, Set, Callable, Iterable, Tuple

from ..core import envelope
from ..core.registry import FileRecord, ResourceRegistry
from .base import BaseResolver, ResolveContext, read_text, update_envelope
from .registry import ResolverRegistry

logger = logging.getLogger(__name__)

HTML_TAGS = {
    '.css': '<link rel="stylesheet" href="{url}">',
    '.js': '<script src="{url}"></script>',
}


class ResolverPipeline:
    """Turns changed paths into outbound messages, one cancellable task per path"""

    def __init__(self,
                 registry: ResourceRegistry,
                 resolvers: ResolverRegistry,
                 context_factory: Callable[[], ResolveContext],
                 broadcast: Callable[[Dict[str, Any]], Any],
                 on_error: Callable[[Exception], Any]):
        self.registry = registry
        self.resolvers = resolvers
        self.context_factory = context_factory
        self.broadcast = broadcast
        self.on_error = on_error
        self._tasks: Dict[Path, asyncio.Task] = {}
        self._generations: Dict[Path, int] = {}
        self._announcing: Set[asyncio.Task] = set()

    def seed(self, paths: Iterable[Path], context: Optional[ResolveContext] = None) -> int:
        """Register files that exist before watching starts

        Seeded records carry no content, so the first change to any of them
        is resolved and pushed, even when the watcher reports it as added.
        """
        context = context or self.context_factory()
        count = 0
        for path in paths:
            path = Path(path).resolve()
            if path in self.registry:
                continue
            url = context.url_for(path)
            self.registry.register(FileRecord(path=path, url=url, src=url))
            count += 1
        logger.debug(f"Seeded {count} existing file(s)")
        return count

    def dispatch(self, path) -> asyncio.Task:
        """Schedule resolution of a changed path, superseding older work on it"""
        path = Path(path).resolve()
        generation = self._generations.get(path, 0) + 1
        self._generations[path] = generation

        previous = self._tasks.get(path)
        if previous is not None and not previous.done():
            logger.debug(f"Superseding in-flight resolution of {path}")
            previous.cancel()

        task = asyncio.create_task(self._run(path, generation))
        self._tasks[path] = task
        task.add_done_callback(lambda t, p=path: self._forget(p, t))
        return task

    def dispatch_batch(self, changes: Iterable[Tuple[Path, bool]]) -> List[asyncio.Task]:
        """Dispatch a watcher batch; brand new plain files are announced together"""
        tasks = []
        announced = []
        for path, added in changes:
            path = Path(path).resolve()
            if self.registry.lookup_by_tmp(str(path)) is not None:
                logger.debug(f"Ignoring staging file {path}")
                continue
            if added and path not in self.registry and self.resolvers.for_path(path) is None:
                announced.append(path)
            else:
                tasks.append(self.dispatch(path))
        if announced:
            task = asyncio.create_task(self.announce(announced))
            self._announcing.add(task)
            task.add_done_callback(self._announcing.discard)
            tasks.append(task)
        return tasks

    def select(self, path: Path) -> Optional[BaseResolver]:
        """Owning resolver of a known file, else the one for its extension"""
        record = self.registry.lookup_by_path(path)
        if record is not None and record.resolver:
            resolver = self.resolvers.by_name(record.resolver)
            if resolver is not None:
                return resolver
        return self.resolvers.for_path(path)

    async def _run(self, path: Path, generation: int):
        if not path.is_file():
            logger.debug(f"Skipping {path}, it no longer exists")
            return

        context = self.context_factory()
        url = context.url_for(path)
        resolver = self.select(path)
        try:
            if resolver is None:
                messages = await self.default_resolve(path, url, context)
            else:
                logger.debug(f"Resolving {url} with {resolver.name}")
                messages = await resolver.resolve(path, url, context)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Resolver failed for {path}: {e}")
            result = self.on_error(e)
            if asyncio.iscoroutine(result):
                await result
            return

        if self._generations.get(path) != generation:
            logger.debug(f"Dropping stale result for {path}")
            return
        for message in messages:
            self.broadcast(message)

    async def default_resolve(self, path: Path, url: str, context: ResolveContext) -> List[Dict[str, Any]]:
        """Push the file as-is; unchanged content is not pushed again"""
        content = await self._read(path)
        if content is None:
            return []

        record = self.registry.lookup_by_path(path)
        if record is not None and record.content == content:
            logger.debug(f"{url} unchanged, nothing to push")
            return []
        if record is None:
            record = FileRecord(path=path, url=url, src=url)
            self.registry.register(record)
        record.content = content
        logger.info(f"Pushing {url}")
        return [update_envelope(url, content)]

    async def announce(self, paths: List[Path]):
        """Register newly created files and announce them in one `urls` message"""
        context = self.context_factory()
        urls = []
        html = []
        for path in paths:
            content = await self._read(path)
            if content is None:
                continue
            url = context.url_for(path)
            self.registry.register(FileRecord(path=path, url=url, src=url, content=content))

            absolute = context.absolute(url)
            urls.append(absolute)
            tag = HTML_TAGS.get(path.suffix)
            if tag:
                html.append(tag.format(url=absolute))

        if urls:
            logger.info(f"Announcing {len(urls)} new file(s)")
            self.broadcast({'action': envelope.URLS, 'data': {'urls': urls, 'html': html}})

    async def drain(self):
        """Wait for every in-flight resolution"""
        while self._tasks or self._announcing:
            pending = list(self._tasks.values()) + list(self._announcing)
            await asyncio.gather(*pending, return_exceptions=True)

    async def close(self):
        for task in list(self._tasks.values()) + list(self._announcing):
            task.cancel()
        await self.drain()

    def _forget(self, path: Path, task: asyncio.Task):
        if self._tasks.get(path) is task:
            del self._tasks[path]

    @staticmethod
    async def _read(path: Path) -> Optional[str]:
        try:
            return await read_text(path)
        except FileNotFoundError:
            logger.debug(f"{path} vanished before it could be read")
        except UnicodeDecodeError:
            logger.debug(f"{path} is not text, not pushing it")
        return None
