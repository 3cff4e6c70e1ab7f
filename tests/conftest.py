import pytest
import asyncio
from pathlib import Path
from typing import Dict, Any, List, Optional

from livesync.client.session import DevtoolsBridge, ResourceHandle
from livesync.core.registry import ResourceRegistry

HOSTNAME = "http://localhost:3000"


class FakeTransport:
    """Stands in for SyncTransport, keeping what would have been sent"""

    def __init__(self, hostname: Optional[str] = HOSTNAME):
        self.hostname = hostname
        self.sent: List[Dict[str, Any]] = []

    def client_hostname(self) -> Optional[str]:
        return self.hostname

    def broadcast(self, message: Dict[str, Any], address: bool = True) -> bool:
        message = dict(message)
        if address and 'resourceURL' in message:
            message['resourceURL'] = f"{self.hostname}/{message['resourceURL'].lstrip('/')}"
        self.sent.append(message)
        return True


class RecordingBridge(DevtoolsBridge):
    def __init__(self):
        self.applied: List[tuple] = []
        self.reloads = 0
        self.documents: List[str] = []
        self.errors: List[str] = []
        self.injected: List[str] = []
        self.events: List[str] = []
        self.updates: List[str] = []
        self.accept = True

    async def set_content(self, handle: ResourceHandle, content: str) -> bool:
        self.applied.append((handle.url, content))
        return self.accept

    async def reload(self, ignore_cache: bool = True):
        self.reloads += 1

    async def document(self, html: str):
        self.documents.append(html)

    async def console_error(self, message: str):
        self.errors.append(message)

    async def inject_html(self, html: List[str]):
        self.injected.extend(html)

    async def trigger_event(self, event: str, data: Dict[str, Any]):
        self.events.append(event)

    async def updated(self, url: str):
        self.updates.append(url)


# Source tree shaped like the example app
@pytest.fixture
def app_dir(tmp_path: Path) -> Path:
    root = tmp_path / "app"
    (root / "css").mkdir(parents=True)
    (root / "js").mkdir()
    (root / "css" / "a.css").write_text("a{color:red}")
    (root / "js" / "main.js").write_text("console.log('hi');")
    (root / "index.html").write_text("<html><body><h1>hi</h1></body></html>")
    return root.resolve()


@pytest.fixture
def registry() -> ResourceRegistry:
    return ResourceRegistry()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def bridge() -> RecordingBridge:
    return RecordingBridge()


@pytest.fixture
def wait_until():
    async def _wait(predicate, timeout: float = 3.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.01)
    return _wait
