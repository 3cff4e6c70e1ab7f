import pytest
import base64
import json

from livesync.core import envelope
from livesync.core.envelope import CHUNK_SIZE, FrameDecodeError
from livesync.client.session import SessionReconciler


class TestFragment:
    @pytest.mark.parametrize("length, expected", [
        (0, 1),
        (49999, 1),
        (50000, 1),
        (50001, 2),
        (150000, 3),
        (150001, 4),
    ])
    def test_envelope_count(self, length, expected):
        message = {'action': 'update', 'resourceURL': 'css/a.css', 'content': 'x' * length}
        assert len(envelope.fragment(message)) == expected

    def test_parts_precede_single_terminal(self):
        content = ''.join(chr(ord('a') + i % 26) for i in range(120001))
        envelopes = envelope.fragment({'action': 'update', 'resourceURL': 'a.css', 'content': content})

        *parts, terminal = envelopes
        assert all('part' in e and 'content' not in e for e in parts)
        assert all(len(e['part']) == CHUNK_SIZE for e in parts)
        assert 'part' not in terminal
        assert terminal['content'] == content[100000:]
        assert all(e['resourceURL'] == 'a.css' for e in envelopes)

    def test_message_without_content_is_untouched(self):
        message = {'action': 'reload'}
        assert envelope.fragment(message) == [message]

    def test_original_message_is_not_mutated(self):
        message = {'action': 'update', 'content': 'y' * 60000}
        envelope.fragment(message)
        assert len(message['content']) == 60000


class TestChunkRoundTrip:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("length", [0, 49999, 50000, 50001, 150000])
    async def test_reassembly_restores_content(self, bridge, length):
        content = ''.join(chr(ord('a') + i % 26) for i in range(length))
        session = SessionReconciler("http://localhost:3000/index.html", bridge, send=lambda m: None)
        session.register_resource("http://localhost:3000/css/big.css")

        for item in envelope.fragment({'action': 'update',
                                       'resourceURL': 'http://localhost:3000/css/big.css',
                                       'content': content}):
            await session.handle_message(json.loads(envelope.encode(item)))

        assert bridge.applied == [('css/big.css', content)]
        assert session.handles['css/big.css'].part is None


class TestAddressing:
    def test_strip_hostname(self):
        assert envelope.strip_hostname("http://localhost:3000/css/a.css", "http://localhost:3000") == "css/a.css"
        assert envelope.strip_hostname("/css/a.css", "http://localhost:3000/") == "css/a.css"
        assert envelope.strip_hostname("css/a.css", None) == "css/a.css"
        assert envelope.strip_hostname("http://localhost:3000", "http://localhost:3000") == ""

    def test_with_hostname(self):
        assert envelope.with_hostname("/css/a.css", "http://localhost:3000/") == "http://localhost:3000/css/a.css"
        assert envelope.with_hostname("css/a.css", None) == "css/a.css"

    def test_split_page_url(self):
        parts = envelope.split_page_url("http://localhost:3000/app/index.html")
        assert parts == {'hostname': 'http://localhost:3000/', 'page_url': 'app/index.html'}

    def test_address_of_prefers_resource_url(self):
        assert envelope.address_of({'resourceURL': 'a', 'src': 'b'}) == 'a'
        assert envelope.address_of({'src': 'b', 'url': 'c'}) == 'b'
        assert envelope.address_of({'action': 'reload'}) is None


class TestFrames:
    def test_decode_base64_frame(self):
        message = {'action': 'update', 'src': 'css/é.css', 'content': 'ü'}
        assert envelope.decode_frame(envelope.encode_frame(message)) == message

    def test_decode_plain_json(self):
        assert envelope.decode_frame('{"action": "sync", "src": "a.css"}') == {'action': 'sync', 'src': 'a.css'}

    def test_decode_bytes(self):
        frame = envelope.encode_frame({'action': 'sync', 'src': 'a.css'}).encode('ascii')
        assert envelope.decode_frame(frame)['action'] == 'sync'

    @pytest.mark.parametrize("frame", [
        "not base64 at all!",
        base64.b64encode(b"{not json").decode(),
        base64.b64encode(b"[1, 2]").decode(),
        '{"content": "no action"}',
        "caf\u00e9 au lait",
        b"\xff\xfe",
    ])
    def test_malformed_frames(self, frame):
        with pytest.raises(FrameDecodeError):
            envelope.decode_frame(frame)
