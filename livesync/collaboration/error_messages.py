import asyncio
import re
from pathlib import Path
from typing import Dict, Any, Optional

from ..core import envelope
from ..core.registry import FileRecord, ResourceRegistry

ANSI_PATTERN = re.compile(r'\x1b\[[0-9;?]*[ -/]*[@-~]')


def strip_ansi(text: str) -> str:
    return ANSI_PATTERN.sub('', text)


class ErrorMessageGenerator:
    """Turns resolver failures into `error` envelopes that never expose disk paths"""

    def __init__(self, registry: ResourceRegistry, directory: Optional[Path] = None):
        self.registry = registry
        self.directory = Path(directory).resolve() if directory else None

    async def generate_message(self, error: BaseException, hostname: Optional[str] = None) -> Dict[str, Any]:
        """Build the envelope for one error"""
        message = getattr(error, 'message', None) or str(error) or error.__class__.__name__
        code_frame = getattr(error, 'code_frame', None)
        if code_frame:
            message = message.replace(': ', ':\n', 1) + '\n' + code_frame

        record = self._record_for(getattr(error, 'file', None))
        result: Dict[str, Any] = {'action': envelope.ERROR}
        if record is not None:
            message = self._point_at(record, message, getattr(error, 'line', None), hostname)
            result['resourceURL'] = record.src
            content = await self._read(record.path)
            if content is not None:
                result['content'] = content
        elif self.directory is not None:
            message = message.replace(str(self.directory) + '/', '')

        result['message'] = strip_ansi(message)
        return result

    def _point_at(self, record: FileRecord, message: str, line: Optional[int],
                  hostname: Optional[str]) -> str:
        url = envelope.with_hostname(record.src, hostname)
        first_line = message.split('\n')[0]
        if str(record.path) in message:
            message = message.replace(str(record.path), url)
        elif record.src in first_line:
            message = message.replace(first_line, first_line.replace(record.src, url, 1), 1)
        elif record.url in first_line:
            message = message.replace(first_line, first_line.replace(record.url, url, 1), 1)
        else:
            message = url + '\n' + message

        if line is not None and line > 0 and f"{url}:{line}" not in message:
            message = message.replace(url, f"{url}:{line}", 1)
        return message

    def _record_for(self, file: Optional[str]) -> Optional[FileRecord]:
        if not file:
            return None
        path = Path(file)
        if not path.is_absolute() and self.directory is not None:
            path = self.directory / path
        return self.registry.lookup_by_path(path.resolve())

    @staticmethod
    async def _read(path: Path) -> Optional[str]:
        try:
            return await asyncio.to_thread(path.read_text, encoding='utf-8')
        except (OSError, UnicodeDecodeError):
            return None
