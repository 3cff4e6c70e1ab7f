import asyncio
import contextlib
import json
import logging
from typing import Dict, Any, Optional
from websockets.asyncio.client import connect, ClientConnection
from websockets.exceptions import ConnectionClosed

from ..core import envelope
from .session import DevtoolsBridge, LoggingBridge, SessionReconciler

logger = logging.getLogger(__name__)


class LiveConnection:
    """Carries a SessionReconciler's traffic over a websocket"""

    def __init__(self, uri: str, session: SessionReconciler):
        self.uri = uri
        self.session = session
        self.session.send = self.send_message
        self.websocket: Optional[ClientConnection] = None
        self._task: Optional[asyncio.Task] = None

    @classmethod
    def for_page(cls, uri: str, page_url: str, bridge: Optional[DevtoolsBridge] = None,
                 force_reloading: bool = False) -> 'LiveConnection':
        """Connection for one page; without a bridge, applied changes are only logged"""
        session = SessionReconciler(page_url, bridge or LoggingBridge(), send=None,
                                    force_reloading=force_reloading)
        return cls(uri, session)

    async def connect(self):
        """Open the socket, introduce the page and start listening"""
        self.websocket = await connect(self.uri, max_size=2 ** 24)
        logger.info(f"connected to {self.uri}")
        await self.session.started()
        self._task = asyncio.create_task(self._listen())

    async def send_message(self, message: Dict[str, Any]):
        if self.websocket is None:
            logger.debug(f"not connected, dropping {message.get('action')}")
            return
        await self.websocket.send(envelope.encode_frame(message))

    async def _listen(self):
        try:
            async for raw in self.websocket:
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning(f"Invalid JSON received: {raw[:80]!r}")
                    continue
                await self.session.handle_message(message)
        except ConnectionClosed:
            logger.info("connection closed by the server")

    async def close(self):
        if self.websocket is not None:
            await self.websocket.close()
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        self.websocket = None

    async def __aenter__(self) -> 'LiveConnection':
        await self.connect()
        return self

    async def __aexit__(self, *args):
        await self.close()
