import logging
from typing import Dict, Any, Optional

from ..core.config_manager import LiveConfig, ConfigError
from ..core.registry import ResourceRegistry
from ..collaboration.message_router import MessageRouter
from ..resolvers.base import ResolveContext
from ..resolvers.pipeline import ResolverPipeline
from ..resolvers.registry import ResolverRegistry
from .file_watcher import FileWatcher, ChangeBatch
from .http_server import StaticServer
from .websocket_server import SyncTransport

logger = logging.getLogger(__name__)


class LiveServer:
    """Wires watcher, resolvers, websocket transport and router around one registry"""

    def __init__(self, config: LiveConfig):
        if config.directory is None:
            raise ConfigError("please define a source directory")
        self.config = config
        self.registry = ResourceRegistry()
        self.resolvers = ResolverRegistry.from_config(config.resolvers, base=config.source_dir)
        self.transport = SyncTransport(
            host=config.host,
            port=config.port,
            hostname=config.hostname
        )
        self.router = MessageRouter(self.registry, self.transport, config.source_dir)
        self.transport.on_message = self.router.handle_message
        self.pipeline = ResolverPipeline(
            self.registry,
            self.resolvers,
            self.context,
            self.broadcast,
            self.router.on_error
        )
        self.watcher = FileWatcher(self.handle_file_changes, self.on_watch_error)
        for folder, options in config.watch.items():
            self.watcher.add_path(folder, options)
        self.http: Optional[StaticServer] = None
        if config.http is not None:
            self.http = StaticServer(config.http, ws_port=config.port)

    def context(self) -> ResolveContext:
        return ResolveContext(
            registry=self.registry,
            directory=self.config.source_dir,
            destination=self.config.destination_dir,
            hostname=self.transport.client_hostname(),
            page_url=self.transport.page_url or ''
        )

    async def start(self):
        """Bind the sockets, register the files already on disk, then start watching"""
        await self.transport.start()
        if self.http is not None:
            self.http.ws_port = self.transport.port
            await self.http.start()
        self.pipeline.seed(self.watcher.scan())
        self.watcher.start()

    async def handle_file_changes(self, batch: ChangeBatch):
        logger.debug(f"Files changed: {', '.join(str(path) for path, _ in batch)}")
        self.pipeline.dispatch_batch(batch)

    def broadcast(self, message: Dict[str, Any]) -> bool:
        if self.config.force_reload:
            message = {'action': 'reload'}
        return self.transport.broadcast(message)

    def on_watch_error(self, error: Exception):
        logger.error(f"watch error: {error}")

    async def close(self):
        """Stop watching, cancel pending resolutions and close the sockets"""
        logger.info("exiting...")
        await self.watcher.stop()
        await self.pipeline.close()
        if self.http is not None:
            await self.http.close()
        await self.transport.close()

    async def __aenter__(self) -> 'LiveServer':
        await self.start()
        return self

    async def __aexit__(self, *args):
        await self.close()
