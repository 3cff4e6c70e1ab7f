import asyncio
import logging
from pathlib import Path
from typing import Dict, Any, List, Optional
from jinja2 import Environment, FileSystemLoader, TemplateError, TemplateSyntaxError, select_autoescape

from ..core import envelope
from .base import IndexedResolver, ResolveContext, ResolverError

logger = logging.getLogger(__name__)


class TemplateResolver(IndexedResolver):
    """Renders Jinja2 pages and replaces the whole document in the browser"""

    name = 'template'

    def __init__(self, data: Optional[Dict[str, Any]] = None, ext: str = '.j2',
                 out_ext: str = '.html', reload: bool = False,
                 index: Any = None, base: Optional[Path] = None):
        super().__init__(index=index, base=base)
        self.data = data or {}
        self.ext = ext
        self.out_ext = out_ext
        self.reload = reload

    def _setup_environment(self, root: Path) -> Environment:
        """Setup Jinja2 environment rooted at the template's folder"""
        return Environment(
            loader=FileSystemLoader(str(root)),
            autoescape=select_autoescape(['html', 'xml']),
            trim_blocks=True,
            lstrip_blocks=True
        )

    def render(self, path: Path) -> str:
        """Render a template file with the configured data"""
        env = self._setup_environment(path.parent)
        try:
            return env.get_template(path.name).render(**self.data)
        except TemplateSyntaxError as e:
            raise ResolverError(e.message or str(e), file=e.filename or str(path), line=e.lineno) from e
        except TemplateError as e:
            raise ResolverError(str(e), file=str(path)) from e

    def output_url(self, url: str) -> str:
        if url.endswith(self.ext):
            url = url[:-len(self.ext)]
        if not url.endswith(self.out_ext):
            url = str(Path(url).with_suffix(self.out_ext).as_posix())
        return '/' + url.lstrip('/')

    async def resolve(self, path: Path, url: str, context: ResolveContext) -> List[Dict[str, Any]]:
        messages = []
        for page in sorted(self.dependents(path)):
            content = await asyncio.to_thread(self.render, page)
            out_url = self.output_url(context.url_for(page))

            target = context.destination / out_url.lstrip('/')
            target.parent.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(target.write_text, content, encoding='utf-8')
            logger.debug(f"Rendered {page} to {target}")

            messages.append({
                'action': envelope.DOCUMENT,
                'reload': self.reload,
                'resourceURL': out_url,
                'content': content
            })
        return messages
