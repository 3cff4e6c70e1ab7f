import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Any, List, Optional, Callable

from ..core import envelope

logger = logging.getLogger(__name__)

INDEX = 'index.html'


@dataclass
class ResourceHandle:
    url: str
    resource_name: Optional[str] = None
    sync: Optional[str] = None
    part: Optional[List[str]] = None
    content: Optional[str] = None


class DevtoolsBridge(ABC):
    """What the session may do to the inspected page"""

    @abstractmethod
    async def set_content(self, handle: ResourceHandle, content: str) -> bool:
        """Replace the live content of a resource; False when the page refused it"""

    @abstractmethod
    async def reload(self, ignore_cache: bool = True):
        """Reload the whole page"""

    async def document(self, html: str):
        logger.info("document replaced")

    async def console_error(self, message: str):
        logger.warning(f"[livesync] {message}")

    async def inject_html(self, html: List[str]):
        logger.debug(f"inject {len(html)} node(s)")

    async def trigger_event(self, event: str, data: Dict[str, Any]):
        logger.debug(f"event {event}")

    async def updated(self, url: str):
        logger.info(f"{url} has just been updated")


class LoggingBridge(DevtoolsBridge):
    """Headless bridge keeping applied content on the handles"""

    def __init__(self):
        self.reloads = 0

    async def set_content(self, handle: ResourceHandle, content: str) -> bool:
        logger.info(f"applied {len(content)} characters to {handle.url or INDEX}")
        return True

    async def reload(self, ignore_cache: bool = True):
        self.reloads += 1
        logger.info("reloading the page...")


class SessionReconciler:
    """Applies server envelopes to page resources and reports local edits back"""

    def __init__(self, page_url: str, bridge: DevtoolsBridge,
                 send: Callable[[Dict[str, Any]], Any],
                 force_reloading: bool = False):
        self.page_url = page_url
        self.hostname = envelope.split_page_url(page_url)['hostname'].rstrip('/')
        self.bridge = bridge
        self.send = send
        self.force_reloading = force_reloading
        self.handles: Dict[str, ResourceHandle] = {}
        self.handlers = {
            envelope.BASE_URL: self._on_base_url,
            envelope.DOCUMENT: self._on_document,
            envelope.ERROR: self._on_error,
            envelope.URLS: self._on_urls,
            envelope.SYNC: self._on_sync,
            envelope.UPDATE: self._on_update,
        }

    def normalize(self, url: str) -> str:
        """Lookup key shared by every spelling of a resource URL"""
        key = envelope.strip_hostname(url.split('?')[0], self.hostname)
        if key == INDEX or key.endswith('/' + INDEX):
            key = key[:-len(INDEX)]
        return key

    def register_resource(self, url: str) -> Optional[ResourceHandle]:
        """Track a resource the page has loaded; data and extension URLs are skipped"""
        scheme = url.split('/')[0]
        if ':' in scheme and not scheme.startswith('http'):
            return None
        key = self.normalize(url)
        handle = self.handles.get(key)
        if handle is None:
            handle = self.handles[key] = ResourceHandle(url=key)
        return handle

    def handle_for(self, url: Optional[str], create: bool = False) -> Optional[ResourceHandle]:
        if url is None:
            return None
        if create:
            return self.register_resource(url)
        return self.handles.get(self.normalize(url))

    async def started(self):
        """Introduce the page to the server"""
        await self._send({'action': envelope.BASE_URL, 'url': self.page_url})

    def set_force_reloading(self, value: str):
        self.force_reloading = value == 'enable'

    async def handle_message(self, message: Dict[str, Any]):
        """Handler for messages from the server"""
        if self.force_reloading or message.get('action') == envelope.RELOAD or message.get('reload') is True:
            await self.bridge.reload(ignore_cache=True)
            return

        handler = self.handlers.get(message.get('action'))
        if handler is None:
            logger.debug(f"Ignoring action {message.get('action')}")
            return
        await handler(message)

    async def _on_base_url(self, message: Dict[str, Any]):
        await self.started()

    async def _on_document(self, message: Dict[str, Any]):
        await self.bridge.document(message.get('content', ''))

    async def _on_error(self, message: Dict[str, Any]):
        await self.bridge.console_error(message.get('message') or message.get('content') or 'unknown error')
        handle = self.handle_for(message.get('resourceURL'))
        if handle is not None and isinstance(message.get('content'), str):
            await self.apply(handle, message['content'])

    async def _on_urls(self, message: Dict[str, Any]):
        data = message.get('data') or {}
        for url in data.get('urls', []):
            self.register_resource(url)
        if data.get('html'):
            await self.bridge.inject_html(list(data['html']))

    async def _on_sync(self, message: Dict[str, Any]):
        """Original content for an editor buffer; applying it must not echo back"""
        address = message.get('resourceName') or envelope.address_of(message)
        handle = self.handle_for(address, create=True)
        if handle is None:
            logger.error(f"Resource with the following URL is not on the page: {address}")
            return
        logger.debug(f"sync {handle.url}")
        handle.resource_name = message.get('resourceName') or handle.url
        await self.apply(handle, message.get('content', ''))

    async def _on_update(self, message: Dict[str, Any]):
        address = envelope.address_of(message)
        handle = self.handle_for(address, create=True)
        if handle is None:
            logger.error(f"Resource with the following URL is not on the page: {address}")
            return
        logger.debug(f"push {handle.url}")

        if message.get('sync') is not None:
            handle.sync = message['sync']
        if message.get('resourceName') is not None:
            handle.resource_name = message['resourceName']

        if 'part' in message:
            if handle.part is None:
                handle.part = []
            handle.part.append(message['part'])
            return

        content = message.get('content', '')
        if handle.part is not None:
            content = ''.join(handle.part) + content
            handle.part = None
        await self.apply(handle, content, event=message.get('event'))

    async def apply(self, handle: ResourceHandle, content: str, event: Optional[str] = None) -> bool:
        """Push content into the live resource"""
        if handle.resource_name is None and handle.sync is None:
            # the page reports our own change as a commit, that one is not an edit
            handle.resource_name = handle.url
        ok = await self.bridge.set_content(handle, content)
        if not ok:
            logger.error(f"failed to update {handle.url}")
            handle.resource_name = None
            return False
        handle.content = content
        if event is not None:
            await self.bridge.trigger_event(event, {})
        return True

    async def resource_committed(self, url: str, content: str) -> Optional[Dict[str, Any]]:
        """Devtools reported new content for a resource; returns what was sent"""
        handle = self.handle_for(url)
        if handle is None:
            return None

        if handle.sync is not None:
            record = {'action': envelope.SYNC, 'src': handle.sync}
            handle.sync = None
            logger.debug(f"synchro {record['src']}")
            await self._send(record)
            return record

        if handle.resource_name is not None:
            name, handle.resource_name = handle.resource_name, None
            await self.bridge.updated(name)
            return None

        handle.content = content
        record = {'action': envelope.UPDATE, 'src': url.split('?')[0], 'content': content}
        logger.debug(f"update {handle.url}")
        await self._send(record)
        return record

    async def _send(self, message: Dict[str, Any]):
        result = self.send(message)
        if asyncio.iscoroutine(result):
            await result
