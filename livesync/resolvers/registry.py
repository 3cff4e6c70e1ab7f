import logging
from pathlib import Path
from typing import Dict, Any, Callable, Optional

from .base import BaseResolver, CallableResolver
from .command import CommandResolver
from .template import TemplateResolver

logger = logging.getLogger(__name__)

RESOLVER_FACTORIES: Dict[str, Callable[..., BaseResolver]] = {
    'command': CommandResolver,
    'template': TemplateResolver,
}


class ResolverRegistry:
    """Resolvers selected by file extension"""

    def __init__(self):
        self._by_extension: Dict[str, BaseResolver] = {}
        self._by_name: Dict[str, BaseResolver] = {}

    @classmethod
    def from_config(cls, entries: Dict[str, Any], base: Optional[Path] = None) -> 'ResolverRegistry':
        """Build resolvers from `{ext: callable | {"resolver": name, ...options}}`"""
        registry = cls()
        for extension, entry in entries.items():
            registry.register(extension, cls.create(entry, base))
        return registry

    @staticmethod
    def create(entry: Any, base: Optional[Path] = None) -> BaseResolver:
        if isinstance(entry, BaseResolver):
            return entry
        if callable(entry):
            return CallableResolver(entry)
        if not isinstance(entry, dict) or 'resolver' not in entry:
            raise ValueError(f"Resolver entry must be a callable or have a 'resolver' key: {entry!r}")

        options = dict(entry)
        name = options.pop('resolver')
        if name not in RESOLVER_FACTORIES:
            raise KeyError(f"Unknown resolver: {name}")
        options.setdefault('base', base)
        return RESOLVER_FACTORIES[name](**options)

    def register(self, extension: str, resolver: BaseResolver):
        extension = self._normalize(extension)
        # file records remember their resolver by name, so names stay unique
        owner = self._by_name.get(resolver.name)
        if owner is not None and owner is not resolver:
            resolver.name = f"{resolver.name}{extension}"
        self._by_extension[extension] = resolver
        self._by_name[resolver.name] = resolver
        logger.debug(f"Resolver {resolver.name} handles *{extension}")

    def get(self, extension: str) -> Optional[BaseResolver]:
        return self._by_extension.get(self._normalize(extension))

    def by_name(self, name: str) -> Optional[BaseResolver]:
        return self._by_name.get(name)

    def for_path(self, path: Path) -> Optional[BaseResolver]:
        """Longest matching extension wins, so `.html.j2` beats `.j2`"""
        name = Path(path).name
        matches = [ext for ext in self._by_extension if name.endswith(ext)]
        if not matches:
            return None
        return self._by_extension[max(matches, key=len)]

    def __len__(self) -> int:
        return len(self._by_extension)

    @staticmethod
    def _normalize(extension: str) -> str:
        return extension if extension.startswith('.') else '.' + extension
