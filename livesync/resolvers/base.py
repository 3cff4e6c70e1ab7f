import asyncio
import inspect
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Any, List, Optional, Set, Callable, Iterable, Tuple
from dataclasses import dataclass

from ..core import envelope
from ..core.registry import FileRecord, ResourceRegistry


class ResolverError(Exception):
    """Failure reported by a resolver, optionally pointing at a source line"""

    def __init__(self, message: str, file: Optional[str] = None,
                 line: Optional[int] = None, code_frame: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.file = file
        self.line = line
        self.code_frame = code_frame


@dataclass
class ResolveContext:
    """What a resolver may know about the running session"""
    registry: ResourceRegistry
    directory: Path
    destination: Path
    hostname: Optional[str] = None
    page_url: str = ''

    def url_for(self, path: Path, root: Optional[Path] = None) -> str:
        """Browser-relative URL of a file below the source (or given) root"""
        root = root or self.directory
        try:
            return Path(path).resolve().relative_to(root).as_posix()
        except ValueError:
            return Path(path).name

    def absolute(self, url: str) -> str:
        return envelope.with_hostname(url, self.hostname)


class BaseResolver(ABC):
    """Transforms a changed source file into outbound messages"""

    name = 'base'

    @abstractmethod
    async def resolve(self, path: Path, url: str, context: ResolveContext) -> List[Dict[str, Any]]:
        """Produce broadcast-ready envelopes for a changed file"""

    def load_index(self, mapping: Any):
        """Load a dependency map; resolvers without one ignore it"""

    def dependents(self, path: Path) -> Set[Path]:
        """Outputs to re-push when `path` changes"""
        return {Path(path)}

    def observe(self, path: Path, url: str, context: ResolveContext,
                content: str) -> Tuple[FileRecord, bool]:
        """Register an original file and tell whether the change came from disk

        A disk change stashes the file as the sync snapshot. A browser write-back
        consumes the content the router stored for it.
        """
        record = context.registry.lookup_by_path(path)
        if record is None:
            record = FileRecord(path=path, url=url, src=url, resolver=self.name)
            context.registry.register(record)
        elif record.resolver is None:
            record.resolver = self.name

        if record.content is None:
            record.stash_snapshot(content)
            return record, True
        record.content = None
        return record, False


class DependencyIndex:
    """Maps an input file to the output entry files that include it"""

    def __init__(self, base: Optional[Path] = None):
        self.base = Path(base) if base else None
        self._links: Dict[Path, Set[Path]] = {}

    def load(self, mapping: Any):
        """Accept a JSON file path, `[{"index": src, "links": [...]}]` or `{src: [...]}`"""
        if isinstance(mapping, (str, Path)):
            with open(self._absolute(mapping)) as f:
                mapping = json.load(f)
        if isinstance(mapping, dict):
            items = mapping.items()
        else:
            items = ((entry['index'], entry.get('links', [])) for entry in mapping)
        for source, links in items:
            self.add(source, links)

    def add(self, source, links: Iterable):
        key = self._absolute(source)
        self._links.setdefault(key, set()).update(self._absolute(link) for link in links)

    def get(self, path: Path) -> Set[Path]:
        return set(self._links.get(Path(path), ()))

    def __contains__(self, path) -> bool:
        return Path(path) in self._links

    def _absolute(self, path) -> Path:
        path = Path(path)
        if not path.is_absolute() and self.base is not None:
            path = self.base / path
        return path.resolve()


class IndexedResolver(BaseResolver):
    """Resolver whose inputs fan out to dependent output files"""

    def __init__(self, index: Any = None, base: Optional[Path] = None):
        self.index = DependencyIndex(base)
        if index is not None:
            self.load_index(index)

    def load_index(self, mapping: Any):
        self.index.load(mapping)

    def dependents(self, path: Path) -> Set[Path]:
        return self.index.get(path) or {Path(path)}


PairCallback = Callable[[Path, str, ResolveContext], Any]


class CallableResolver(BaseResolver):
    """Adapts a plain function returning (url, content) pairs"""

    def __init__(self, func: PairCallback, name: Optional[str] = None):
        self.func = func
        self.name = name or getattr(func, '__name__', 'callable')

    async def resolve(self, path: Path, url: str, context: ResolveContext) -> List[Dict[str, Any]]:
        result = self.func(path, url, context)
        if inspect.isawaitable(result):
            result = await result
        return [update_envelope(out_url, content) for out_url, content in (result or [])]


def update_envelope(url: str, content: str, **extra) -> Dict[str, Any]:
    message = {'action': envelope.UPDATE, 'resourceURL': url, 'content': content}
    message.update({k: v for k, v in extra.items() if v is not None})
    return message


async def read_text(path: Path) -> str:
    """Read a file without blocking the event loop"""
    return await asyncio.to_thread(Path(path).read_text, encoding='utf-8')
