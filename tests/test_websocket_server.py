import pytest
import pytest_asyncio
import base64
import asyncio
import json
from websockets.asyncio.client import connect

from livesync.core import envelope
from livesync.preview.websocket_server import SyncTransport

PAGE = "http://localhost:3000/index.html"


@pytest_asyncio.fixture
async def server():
    received = []
    transport = SyncTransport(host="127.0.0.1", port=0, on_message=received.append, chunk_size=4)
    transport.received = received
    await transport.start()
    yield transport
    await transport.close()


@pytest_asyncio.fixture
async def client(server):
    async with connect(f"ws://127.0.0.1:{server.port}") as websocket:
        yield websocket


async def handshake(websocket, server, wait_until):
    assert json.loads(await websocket.recv()) == {'action': 'baseUrl'}
    await websocket.send(envelope.encode_frame({'action': 'baseUrl', 'url': PAGE}))
    await wait_until(lambda: server.hostname is not None)


class TestSyncTransport:
    @pytest.mark.asyncio
    async def test_handshake_sets_hostname(self, server, client, wait_until):
        await handshake(client, server, wait_until)

        assert server.hostname == "http://localhost:3000/"
        assert server.client_hostname() == "http://localhost:3000"
        assert server.page_url == "index.html"

    @pytest.mark.asyncio
    async def test_broadcast_without_handshake_is_cancelled(self, server):
        assert server.broadcast({'action': 'update', 'resourceURL': 'css/a.css', 'content': 'x'}) is False
        assert server.queue.empty()

    @pytest.mark.asyncio
    async def test_resource_url_is_prefixed(self, server, client, wait_until):
        await handshake(client, server, wait_until)

        assert server.broadcast({'action': 'update', 'resourceURL': 'css/a.css', 'content': 'b{}'})

        message = json.loads(await asyncio.wait_for(client.recv(), 2))
        assert message == {'action': 'update', 'resourceURL': "http://localhost:3000/css/a.css", 'content': 'b{}'}

    @pytest.mark.asyncio
    async def test_unaddressed_broadcast_keeps_relative_url(self, server, client, wait_until):
        await handshake(client, server, wait_until)

        server.broadcast({'action': 'sync', 'resourceURL': 'css/a.css', 'content': 'a{}'}, address=False)

        message = json.loads(await asyncio.wait_for(client.recv(), 2))
        assert message['resourceURL'] == 'css/a.css'

    @pytest.mark.asyncio
    async def test_large_content_arrives_in_order(self, server, client, wait_until):
        await handshake(client, server, wait_until)

        server.broadcast({'action': 'update', 'resourceURL': 'a.css', 'content': 'aaaabbbbcc'})
        server.broadcast({'action': 'update', 'resourceURL': 'b.css', 'content': 'zz'})

        frames = [json.loads(await asyncio.wait_for(client.recv(), 2)) for _ in range(4)]
        assert [f.get('part') for f in frames[:2]] == ['aaaa', 'bbbb']
        assert frames[2]['content'] == 'cc'
        assert frames[3]['resourceURL'].endswith('b.css')

    @pytest.mark.asyncio
    async def test_inbound_frames_reach_handler(self, server, client, wait_until):
        await handshake(client, server, wait_until)

        await client.send("definitely not a frame")
        await client.send(envelope.encode_frame({'action': 'update', 'src': 'css/a.css', 'content': 'c{}'}))
        await client.send('{"action": "sync", "src": "css/a.css"}')

        await wait_until(lambda: len(server.received) == 2)
        assert [m['action'] for m in server.received] == ['update', 'sync']

    @pytest.mark.asyncio
    async def test_malformed_frames_leave_connection_usable(self, server, client, wait_until):
        await handshake(client, server, wait_until)

        await client.send("%%% not base64 %%%")
        await client.send(base64.b64encode(b"plain words, no json").decode('ascii'))
        await client.send(base64.b64encode(b"[1, 2, 3]").decode('ascii'))
        await client.send(b"\xff\xfe")
        await client.send(envelope.encode_frame({'action': 'ping', 'data': 1}))

        await wait_until(lambda: server.received)
        assert server.received == [{'action': 'ping', 'data': 1}]
        assert len(server.clients) == 1

        server.broadcast({'action': 'update', 'resourceURL': 'css/a.css', 'content': 'ok'})
        message = json.loads(await asyncio.wait_for(client.recv(), 2))
        assert message['content'] == 'ok'

    @pytest.mark.asyncio
    async def test_handler_errors_keep_connection_open(self, server, client, wait_until):
        def explode(message):
            raise RuntimeError("boom")

        server.on_message = explode
        await handshake(client, server, wait_until)
        await client.send(envelope.encode_frame({'action': 'update', 'src': 'a.css', 'content': ''}))

        server.broadcast({'action': 'reload'})
        assert json.loads(await asyncio.wait_for(client.recv(), 2)) == {'action': 'reload'}

    @pytest.mark.asyncio
    async def test_disconnected_client_is_forgotten(self, server, wait_until):
        async with connect(f"ws://127.0.0.1:{server.port}") as websocket:
            await websocket.recv()
            await wait_until(lambda: len(server.clients) == 1)
        await wait_until(lambda: len(server.clients) == 0)

    @pytest.mark.asyncio
    async def test_hostname_override(self):
        transport = SyncTransport(port=0, hostname="http://example.test/")
        assert transport.client_hostname() == "http://example.test"
        assert transport.broadcast({'action': 'reload'}) is True
