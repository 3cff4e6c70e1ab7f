import asyncio
import logging
from pathlib import Path
from typing import Optional
from aiohttp import web

from ..core.config_manager import HttpOptions

logger = logging.getLogger(__name__)

CACHE_CONTROL = "max-age=0, must-revalidate"

CLIENT_MARKER = "__LIVESYNC__"

CLIENT_JS = """
<script>
(function(){
  if (window.__LIVESYNC__) return;
  window.__LIVESYNC__ = true;
  var parts = {};
  var ws = new WebSocket("ws://" + location.hostname + ":%(port)d");
  function send(msg) {
    ws.send(btoa(unescape(encodeURIComponent(JSON.stringify(msg)))));
  }
  function strip(url) {
    return url.split("?")[0].replace(location.origin + "/", "").replace(/^\\//, "");
  }
  ws.onopen = function() { send({action: "baseUrl", url: location.origin + location.pathname}); };
  ws.onmessage = function(event) {
    var msg = JSON.parse(event.data);
    if (msg.action === "baseUrl") { return ws.onopen(); }
    if (msg.action === "reload" || msg.reload === true) { return location.reload(); }
    if (msg.action === "document") { document.documentElement.innerHTML = msg.content; return; }
    if (msg.action === "error") { console.warn("[livesync] " + msg.message); return; }
    if (msg.action !== "update") { return; }
    var key = strip(msg.resourceURL || "");
    if (msg.part !== undefined) { (parts[key] = parts[key] || []).push(msg.part); return; }
    var content = (parts[key] || []).join("") + msg.content;
    delete parts[key];
    var links = document.querySelectorAll("link[rel=stylesheet]");
    for (var i = 0; i < links.length; i++) {
      if (strip(links[i].href) === key) {
        var style = document.createElement("style");
        style.textContent = content;
        style.setAttribute("data-href", links[i].href);
        links[i].parentNode.replaceChild(style, links[i]);
        return;
      }
    }
    var styles = document.querySelectorAll("style[data-href]");
    for (var j = 0; j < styles.length; j++) {
      if (strip(styles[j].getAttribute("data-href")) === key) { styles[j].textContent = content; return; }
    }
    location.reload();
  };
})();
</script>
"""


class StaticServer:
    """Serves the page and its assets, injecting the sync client into HTML"""

    def __init__(self, options: HttpOptions, ws_port: int = 8888):
        self.options = options
        self.root = Path(options.root).resolve()
        self.fallback = Path(options.fallback).resolve() if options.fallback else self.root / "index.html"
        self.ws_port = ws_port
        self.app = web.Application()
        self.runner: Optional[web.AppRunner] = None
        self.setup_routes()

    def setup_routes(self):
        self.app.router.add_get("/{path:.*}", self.file_handler)

    async def start(self):
        """Bind the HTTP server"""
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, self.options.host, self.options.port)
        await site.start()
        logger.info(f"serving {self.root} on http://{self.options.host}:{self.options.port}")

    async def close(self):
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None

    def locate(self, path: str) -> Optional[Path]:
        """File to serve for a request path, or None"""
        target = (self.root / path).resolve()
        if not target.is_relative_to(self.root) or self.ignored(target):
            return None
        if target.is_dir():
            target = target / "index.html"
        if not target.is_file():
            return self.fallback if path == "" and self.fallback.is_file() else None
        return target

    def ignored(self, path: Path) -> bool:
        """Hidden or backup files, or anything inside a hidden folder"""
        parts = path.relative_to(self.root).parts
        return any(part.startswith(".") or part.endswith("~") for part in parts)

    async def file_handler(self, request: web.Request) -> web.StreamResponse:
        file_path = self.locate(request.match_info.get("path", ""))
        logger.debug(f"Received request {request.method} {request.path}")
        if file_path is None:
            return web.Response(status=404)

        headers = {"Cache-Control": CACHE_CONTROL}
        if file_path.suffix == ".html" and self.options.inject:
            html = await asyncio.to_thread(file_path.read_text, encoding="utf-8")
            return web.Response(text=self.inject(html), content_type="text/html", headers=headers)
        return web.FileResponse(file_path, headers=headers)

    def inject(self, html: str) -> str:
        """Insert the sync client before </body> unless the page already carries it"""
        if CLIENT_MARKER in html:
            return html
        script = CLIENT_JS % {"port": self.ws_port}
        if "</body>" in html:
            return html.replace("</body>", script + "\n</body>", 1)
        return html + script
