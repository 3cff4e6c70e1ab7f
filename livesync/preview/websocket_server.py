import asyncio
import contextlib
import logging
from typing import Dict, Set, Any, Callable, Optional
from websockets.asyncio.server import serve, Server, ServerConnection
from websockets.exceptions import ConnectionClosed

from ..core import envelope

logger = logging.getLogger(__name__)

MAX_FRAME_SIZE = 2 ** 24


class SyncTransport:
    """Websocket channel to the browser sessions with an ordered outbound queue"""

    def __init__(self, host: str = "localhost", port: int = 8888,
                 hostname: Optional[str] = None,
                 on_message: Optional[Callable[[Dict[str, Any]], Any]] = None,
                 chunk_size: int = envelope.CHUNK_SIZE):
        self.host = host
        self.port = port
        self.hostname_override = hostname
        self.on_message = on_message
        self.chunk_size = chunk_size
        self.clients: Set[ServerConnection] = set()
        self.queue: asyncio.Queue = asyncio.Queue()
        self.hostname: Optional[str] = None
        self.page_url: Optional[str] = None
        self.server: Optional[Server] = None
        self._drain_task: Optional[asyncio.Task] = None

    async def start(self):
        """Bind the websocket server and start draining the queue"""
        self.server = await serve(self._handle_client, self.host, self.port, max_size=MAX_FRAME_SIZE)
        if self.port == 0:
            self.port = self.server.sockets[0].getsockname()[1]
        self._drain_task = asyncio.create_task(self._drain())
        logger.info(f"websocket listening on ws://{self.host}:{self.port}")

    async def _handle_client(self, websocket: ServerConnection):
        """Handle individual client connections"""
        logger.info(f"Client connected {websocket.remote_address}")
        try:
            # ask the page who it is before it receives any broadcast
            await websocket.send(envelope.encode({'action': envelope.BASE_URL}))
            self.clients.add(websocket)
            async for message in websocket:
                await self._process_message(message)
        except ConnectionClosed:
            pass
        finally:
            self.clients.discard(websocket)
            logger.info("Client disconnected")

    async def _process_message(self, message):
        """Process incoming messages"""
        try:
            data = envelope.decode_frame(message)
        except envelope.FrameDecodeError as e:
            logger.warning(f"Dropping malformed frame: {e}")
            return

        logger.debug(f"Message from the client: {data.get('action')} {envelope.address_of(data)}")
        if data['action'] == envelope.BASE_URL:
            self.set_base_url(data.get('url'))
            return

        if self.on_message is not None:
            try:
                result = self.on_message(data)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"Message handling error: {e}")

    def set_base_url(self, url: Optional[str]):
        """Remember the page the session is showing"""
        if not isinstance(url, str) or '://' not in url:
            logger.warning(f"Ignoring invalid base url {url!r}")
            return
        parts = envelope.split_page_url(url)
        self.hostname = parts['hostname']
        self.page_url = parts['page_url']
        logger.debug(f"Client hostname: {self.hostname}, page: {self.page_url}")

    def client_hostname(self) -> Optional[str]:
        hostname = self.hostname_override or self.hostname
        if hostname is None:
            return None
        return hostname.rstrip('/')

    def broadcast(self, message: Dict[str, Any], address: bool = True) -> bool:
        """Address a message to the page host and queue it for every open socket"""
        hostname = self.client_hostname()
        if hostname is None:
            logger.debug("broadcast canceled, no connection with a client")
            return False

        message = dict(message)
        if address and isinstance(message.get('resourceURL'), str):
            message['resourceURL'] = envelope.with_hostname(message['resourceURL'], hostname)
        self.send_message(message)
        return True

    def send_message(self, message: Dict[str, Any]) -> int:
        """Queue a logical message, fragmented when its content is too large"""
        envelopes = envelope.fragment(message, self.chunk_size)
        # all fragments enter the queue before control returns to the loop
        for item in envelopes:
            self.queue.put_nowait(envelope.encode(item))
        if len(envelopes) > 1:
            logger.debug(f"Sent {envelope.address_of(message)} in {len(envelopes)} parts")
        return len(envelopes)

    async def _drain(self):
        while True:
            data = await self.queue.get()
            try:
                await self._send_all(data)
            finally:
                self.queue.task_done()

    async def _send_all(self, data: str):
        clients = list(self.clients)
        if not clients:
            return
        results = await asyncio.gather(
            *(client.send(data) for client in clients),
            return_exceptions=True
        )
        for client, result in zip(clients, results):
            if isinstance(result, Exception):
                logger.debug(f"Dropping socket {client.remote_address}: {result}")
                self.clients.discard(client)

    async def flush(self):
        """Wait until everything queued so far has been sent"""
        await self.queue.join()

    async def close(self):
        """Close sockets and stop serving"""
        logger.debug("shutting down...")
        if self.server is not None:
            self.server.close()
            await self.server.wait_closed()
            self.server = None
        if self._drain_task is not None:
            self._drain_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._drain_task
            self._drain_task = None
        self.clients.clear()
