import base64
import json
import logging
from typing import Dict, Any, List, Optional

logger = logging.getLogger(__name__)

CHUNK_SIZE = 50000

UPDATE = 'update'
SYNC = 'sync'
ERROR = 'error'
DOCUMENT = 'document'
BASE_URL = 'baseUrl'
RELOAD = 'reload'
URLS = 'urls'

ADDRESS_FIELDS = ('resourceURL', 'src', 'url')


class FrameDecodeError(ValueError):
    """Raised when an inbound frame is not a JSON envelope"""


def fragment(message: Dict[str, Any], chunk_size: int = CHUNK_SIZE) -> List[Dict[str, Any]]:
    """Split a logical message into part envelopes plus one terminal envelope"""
    content = message.get('content')
    if not isinstance(content, str) or len(content) <= chunk_size:
        return [dict(message)]

    envelopes = []
    header = {key: value for key, value in message.items() if key != 'content'}
    offset = 0
    while len(content) - offset > chunk_size:
        envelope = dict(header)
        envelope['part'] = content[offset:offset + chunk_size]
        envelopes.append(envelope)
        offset += chunk_size

    terminal = dict(header)
    terminal['content'] = content[offset:]
    envelopes.append(terminal)
    return envelopes


def address_of(message: Dict[str, Any]) -> Optional[str]:
    """Return the addressing field of an envelope, whatever its name"""
    for field in ADDRESS_FIELDS:
        value = message.get(field)
        if isinstance(value, str):
            return value
    return None


def strip_hostname(url: str, hostname: Optional[str]) -> str:
    """Turn an absolute browser URL into a path relative to the page host"""
    if hostname:
        hostname = hostname.rstrip('/')
        if url.startswith(hostname + '/'):
            url = url[len(hostname) + 1:]
        elif url == hostname:
            url = ''
    return url.lstrip('/')


def with_hostname(url: str, hostname: Optional[str]) -> str:
    """Prefix a relative URL with the page host"""
    url = url.lstrip('/')
    if not hostname:
        return url
    return hostname.rstrip('/') + '/' + url


def split_page_url(url: str) -> Dict[str, str]:
    """Split `scheme://host/path` into hostname (with trailing slash) and page path"""
    pieces = url.split('/')
    return {
        'hostname': '/'.join(pieces[:3]) + '/',
        'page_url': '/'.join(pieces[3:]),
    }


def encode(message: Dict[str, Any]) -> str:
    return json.dumps(message)


def encode_frame(message: Dict[str, Any]) -> str:
    """Wrap an envelope the way the browser session sends it: base64 of utf-8 JSON"""
    return base64.b64encode(json.dumps(message).encode('utf-8')).decode('ascii')


def decode_frame(frame) -> Dict[str, Any]:
    """Decode an inbound frame, base64-wrapped or plain JSON text"""
    if isinstance(frame, bytes):
        frame = frame.decode('utf-8', errors='replace')

    text = frame.strip()
    if not text.startswith('{'):
        try:
            text = base64.b64decode(text, validate=True).decode('utf-8')
        except ValueError as e:
            raise FrameDecodeError(f"Frame is neither base64 nor JSON: {e}") from e

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise FrameDecodeError(f"Invalid JSON received: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get('action'), str):
        raise FrameDecodeError("Envelope has no action")
    return data
