import asyncio
import logging
import re
from pathlib import Path
from typing import Dict, Any, List, Optional, Union

from .base import IndexedResolver, ResolveContext, ResolverError, read_text, update_envelope

logger = logging.getLogger(__name__)

# "file.scss:12" or "file.scss line 12" in compiler output
LOCATION_PATTERN = re.compile(r'(?P<file>[^\s:\'"]+\.\w+)(?::|,? line )(?P<line>\d+)')


class CommandResolver(IndexedResolver):
    """Pushes the stdout of an external compiler run on each dependent entry file"""

    name = 'command'

    def __init__(self, cmd: Union[str, List[str]], output_ext: Optional[str] = None,
                 index: Any = None, base: Optional[Path] = None,
                 write_output: bool = False, timeout: Optional[float] = None):
        super().__init__(index=index, base=base)
        self.cmd = cmd.split() if isinstance(cmd, str) else list(cmd)
        if not self.cmd:
            raise ValueError("CommandResolver needs a command")
        self.output_ext = output_ext
        self.write_output = write_output
        self.timeout = timeout

    async def resolve(self, path: Path, url: str, context: ResolveContext) -> List[Dict[str, Any]]:
        """Compile every entry depending on `path` and tag the pushes for sync"""
        original = await read_text(path)
        _, from_disk = self.observe(path, url, context, original)
        origin = context.absolute(url)

        messages = []
        for entry in sorted(self.dependents(path)):
            content = await self.compile(entry)
            out_url = self.output_url(entry, context)
            if self.write_output:
                await self._write(context.destination / out_url, content)

            if from_disk:
                message = update_envelope(out_url, content, sync=origin)
            else:
                message = update_envelope(out_url, content, resourceName=origin)
            messages.append(message)
        return messages

    def output_url(self, entry: Path, context: ResolveContext) -> str:
        url = context.url_for(entry)
        if self.output_ext:
            url = str(Path(url).with_suffix(self.output_ext).as_posix())
        return url

    async def compile(self, entry: Path) -> str:
        """Run the command for one entry file and return its stdout"""
        args = self._arguments(entry)
        logger.debug(f"Running {' '.join(args)}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
        except OSError as e:
            raise ResolverError(f"Cannot run {args[0]}: {e}", file=str(entry)) from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), self.timeout)
        except (asyncio.CancelledError, asyncio.TimeoutError):
            proc.kill()
            await proc.wait()
            raise

        if proc.returncode != 0:
            raise self._error(entry, stderr.decode('utf-8', errors='replace'))
        return stdout.decode('utf-8')

    def _arguments(self, entry: Path) -> List[str]:
        if any('{input}' in arg for arg in self.cmd):
            return [arg.replace('{input}', str(entry)) for arg in self.cmd]
        return self.cmd + [str(entry)]

    def _error(self, entry: Path, stderr: str) -> ResolverError:
        message = stderr.strip() or f"{self.cmd[0]} failed on {entry}"
        match = LOCATION_PATTERN.search(message)
        if match:
            return ResolverError(message, file=match.group('file'), line=int(match.group('line')))
        return ResolverError(message, file=str(entry))

    @staticmethod
    async def _write(target: Path, content: str):
        target.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(target.write_text, content, encoding='utf-8')
