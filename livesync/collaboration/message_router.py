import asyncio
import logging
import os
import shutil
from pathlib import Path
from typing import Dict, Any, Optional, Set, Tuple

from ..core import envelope
from ..core.registry import FileRecord, ResourceRegistry
from .error_messages import ErrorMessageGenerator

logger = logging.getLogger(__name__)


def staging_path(path: Path) -> Path:
    """Hidden sibling that browser edits are written to before replacing the file"""
    return path.with_name(f".{path.name}.livesync~")


class MessageRouter:
    """Applies browser edits to disk, answers sync requests, relays custom events"""

    def __init__(self, registry: ResourceRegistry, transport, directory: Path,
                 errors: Optional[ErrorMessageGenerator] = None):
        self.registry = registry
        self.transport = transport
        self.directory = Path(directory).resolve()
        self.errors = errors or ErrorMessageGenerator(registry, self.directory)
        self.subscribers: Dict[Optional[str], Set[asyncio.Queue]] = {}
        self.handlers = {
            envelope.UPDATE: self.on_update,
            envelope.SYNC: self.on_sync,
        }

    async def handle_message(self, message: Dict[str, Any]):
        """Dispatch an inbound envelope by action"""
        action = message.get('action')
        logger.debug(f"{action} {envelope.address_of(message)}")
        handler = self.handlers.get(action)
        if handler:
            await handler(message)
        else:
            self.publish(message)

    def normalize(self, address: str) -> str:
        """Browser URL to the registry's relative form"""
        return envelope.strip_hostname(address.split('?')[0], self.transport.client_hostname())

    def resolve_target(self, url: str) -> Tuple[Optional[FileRecord], Optional[Path]]:
        """Registered record for a URL, else an existing file under the source directory"""
        record = self.registry.lookup(url)
        if record is not None:
            return record, record.path

        relative = url if url and not url.endswith('/') else url + 'index.html'
        candidate = (self.directory / relative).resolve()
        if not candidate.is_relative_to(self.directory):
            logger.warning(f"Refusing {url}, it points outside {self.directory}")
            return None, None
        if not candidate.is_file():
            return None, None
        return None, candidate

    async def on_update(self, message: Dict[str, Any]) -> bool:
        """Write browser-side edits back to disk; returns whether a write happened"""
        address = envelope.address_of(message)
        content = message.get('content')
        if address is None or not isinstance(content, str):
            logger.warning(f"Ignoring update without address or content: {sorted(message)}")
            return False

        url = self.normalize(address)
        record, path = self.resolve_target(url)
        if path is None:
            logger.debug(f"update for unknown resource {url}, ignoring")
            return False

        if record is None:
            record = FileRecord(path=path, url=url, src=url)
            self.registry.register(record)

        current = await self._read(path)
        if current == content:
            logger.debug(f"{url} already up to date, not writing")
            return False

        if record.tmp is None:
            record.tmp = str(staging_path(path))
            self.registry.register(record)

        # set before writing, the watcher may report the write at any await
        previous, record.content = record.content, content
        try:
            await asyncio.to_thread(self._write, path, Path(record.tmp), content)
        except OSError as e:
            record.content = previous
            logger.error(f"Cannot write {path}: {e}")
            self.transport.broadcast({
                'action': envelope.ERROR,
                'resourceURL': url,
                'message': f"Cannot save {url}: {e.strerror or e}"
            })
            return False

        logger.info(f"Saved {url}")
        return True

    async def on_sync(self, message: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Send the pre-edit content of a resource back to the requesting editor"""
        address = envelope.address_of(message)
        if address is None:
            logger.warning("Ignoring sync without address")
            return None

        url = self.normalize(address)
        record, path = self.resolve_target(url)
        if path is None:
            logger.debug(f"sync for unknown resource {url}, ignoring")
            return None

        content = record.take_snapshot() if record is not None else None
        if content is None:
            content = await self._read(path) or ''

        reply = {
            'action': envelope.SYNC,
            'resourceURL': url,
            'content': content,
            'resourceName': address
        }
        self.transport.broadcast(reply, address=False)
        return reply

    async def on_error(self, error: BaseException):
        """Report a resolver failure to the browser"""
        message = await self.errors.generate_message(error, self.transport.client_hostname())
        logger.error(message['message'])
        self.transport.broadcast(message)

    async def subscribe(self, action: Optional[str] = None) -> asyncio.Queue:
        """Receive relayed custom actions; `None` receives all of them"""
        queue = asyncio.Queue()
        self.subscribers.setdefault(action, set()).add(queue)
        return queue

    async def unsubscribe(self, queue: asyncio.Queue, action: Optional[str] = None):
        if action in self.subscribers:
            self.subscribers[action].discard(queue)

    def publish(self, message: Dict[str, Any]) -> int:
        queues = self.subscribers.get(message.get('action'), set()) | self.subscribers.get(None, set())
        for queue in queues:
            queue.put_nowait(message)
        if not queues:
            logger.debug(f"No listener for action {message.get('action')}")
        return len(queues)

    @staticmethod
    def _write(path: Path, tmp: Path, content: str):
        """Write through a staging file so the target is never seen half written"""
        try:
            tmp.write_text(content, encoding='utf-8')
            shutil.copymode(path, tmp)
            os.replace(tmp, path)
        except OSError:
            tmp.unlink(missing_ok=True)
            raise

    @staticmethod
    async def _read(path: Path) -> Optional[str]:
        try:
            return await asyncio.to_thread(path.read_text, encoding='utf-8')
        except FileNotFoundError:
            return None
