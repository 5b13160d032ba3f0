"""
Share one workflow's JSON over a throwaway local HTTP server, optionally
exposed through a Cloudflare quick tunnel.

The server and the tunnel child process are always stopped together.
"""

import html
import json
import logging
import os
import re
import shlex
import shutil
import signal
import socket
import subprocess
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

logger = logging.getLogger(__name__)

TUNNEL_URL_RE = re.compile(r"https://[\w-]+\.trycloudflare\.com")
CLOUDFLARED_CANDIDATES = (
    "cloudflared",
    "/usr/local/bin/cloudflared",
    "/opt/homebrew/bin/cloudflared",
    "/usr/bin/cloudflared",
)
TUNNEL_URL_TIMEOUT = 6.0
TUNNEL_STOP_TIMEOUT = 5.0


def share_basename(workflow_id: Any) -> str:
    base = re.sub(r"[^a-z0-9_-]", "", str(workflow_id or "").lower())
    return base or "workflow"


def download_command(url: str, workflow_id: Any) -> str:
    """One-liner a recipient can paste to fetch the shared file."""
    return f"curl -fsSL -o {share_basename(workflow_id)}.json {shlex.quote(url)}"


def local_ip() -> str:
    """Best guess at this machine's LAN address; loopback when offline."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # UDP connect sends nothing; it only selects the outgoing interface
        sock.connect(("10.255.255.255", 1))
        return sock.getsockname()[0]
    except OSError:
        return "127.0.0.1"
    finally:
        sock.close()


# ==================== HTTP server ====================


def landing_page(name: str, basename: str) -> str:
    return (
        '<html><body style="font-family:system-ui;padding:24px">\n'
        "<h2>n8n-cli share</h2>\n"
        f"<p>Workflow: <b>{html.escape(name or '')}</b></p>\n"
        f'<p>Download: <a href="/{basename}.json">{basename}.json</a></p>\n'
        "</body></html>"
    )


class ShareHandler(BaseHTTPRequestHandler):
    server: "ShareServer"
    server_version = "n8n-cli-share"
    timeout = 30

    def _send(self, status: int, body: bytes, headers: dict[str, str] | None = None) -> None:
        self.send_response(status)
        for k, v in (headers or {}).items():
            self.send_header(k, v)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(body)

    def do_GET(self):
        path = self.path.split("?", 1)[0]
        if path == "/":
            page = landing_page(self.server.workflow_name, self.server.basename)
            return self._send(200, page.encode("utf-8"), {
                "Content-Type": "text/html; charset=utf-8",
                "Cache-Control": "no-store",
            })
        if path != self.server.file_path:
            return self._send(404, b"Not Found", {"Content-Type": "text/plain"})
        return self._send(200, self.server.payload, {
            "Content-Type": "application/json; charset=utf-8",
            "Content-Disposition": f'attachment; filename="{self.server.basename}.json"',
            "Cache-Control": "no-store",
        })

    def _method_not_allowed(self):
        self._send(405, b"Method Not Allowed", {"Content-Type": "text/plain", "Allow": "GET"})

    def __getattr__(self, name: str):
        # every do_<METHOD> other than do_GET
        if name.startswith("do_"):
            return self._method_not_allowed
        raise AttributeError(name)

    def log_message(self, format, *args):
        logger.debug("share %s - %s", self.address_string(), format % args)


class ShareServer(ThreadingHTTPServer):
    """Serves ``/`` and ``/{basename}.json``, one thread per connection."""

    daemon_threads = True

    def __init__(self, workflow: dict[str, Any], basename: str, host: str = "127.0.0.1", port: int = 3333):
        self.workflow_name = str(workflow.get("name") or "")
        self.basename = basename
        self.file_path = f"/{basename}.json"
        self.payload = json.dumps(workflow, indent=2, ensure_ascii=False).encode("utf-8")
        self._thread: threading.Thread | None = None
        super().__init__((host, port), ShareHandler)

    @property
    def port(self) -> int:
        return self.server_address[1]

    def url_for(self, host: str) -> str:
        return f"http://{host}:{self.port}{self.file_path}"

    def start(self) -> None:
        self._thread = threading.Thread(target=self.serve_forever, name="share-server", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        if self._thread is not None:
            self.shutdown()
            self._thread.join()
            self._thread = None
        self.server_close()


# ==================== Tunnels ====================


class TunnelTimedOut(Exception):
    pass


class OutboundTunnel(ABC):
    """Something that exposes a local port under a public URL."""

    @abstractmethod
    def start(self) -> None: ...

    @abstractmethod
    def await_public_url(self, timeout: float) -> str:
        """Return the public base URL, or raise TunnelTimedOut."""

    @abstractmethod
    def stop(self) -> None: ...


def resolve_cloudflared(explicit: str | None = None) -> str | None:
    for candidate in (explicit, *CLOUDFLARED_CANDIDATES):
        if not candidate:
            continue
        found = shutil.which(candidate)
        if found:
            return found
    return None


class CloudflareTunnel(OutboundTunnel):
    """``cloudflared tunnel --url`` quick tunnel; the URL is scraped from its output."""

    def __init__(self, executable: str, local_url: str):
        self.executable = executable
        self.local_url = local_url
        self._process: subprocess.Popen | None = None
        self._reader: threading.Thread | None = None
        self._found = threading.Event()
        self._public_url: str | None = None

    def start(self) -> None:
        self._process = subprocess.Popen(
            [self.executable, "tunnel", "--url", self.local_url],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            bufsize=1,
        )
        logger.info("Started cloudflared (pid %s) for %s", self._process.pid, self.local_url)
        self._reader = threading.Thread(target=self._scan_output, name="cloudflared-output", daemon=True)
        self._reader.start()

    def _scan_output(self) -> None:
        assert self._process and self._process.stdout
        for line in self._process.stdout:
            logger.debug("cloudflared: %s", line.rstrip())
            if self._public_url is None:
                match = TUNNEL_URL_RE.search(line)
                if match:
                    self._public_url = match.group(0)
                    self._found.set()

    def await_public_url(self, timeout: float = TUNNEL_URL_TIMEOUT) -> str:
        if not self._found.wait(timeout):
            raise TunnelTimedOut(f"No trycloudflare URL received within {timeout:.0f}s")
        return self._public_url

    def stop(self) -> None:
        if self._process is None:
            return
        if self._process.poll() is None:
            self._process.terminate()
            try:
                self._process.wait(TUNNEL_STOP_TIMEOUT)
            except subprocess.TimeoutExpired:
                self._process.kill()
                self._process.wait()
        logger.info("cloudflared stopped")
        self._process = None


# ==================== Orchestration ====================


class ShareSession:
    """A running server plus its optional tunnel; ``close`` stops both."""

    def __init__(self, server: ShareServer, tunnel: OutboundTunnel | None = None):
        self.server = server
        self.tunnel = tunnel
        self.public_url: str | None = None
        self._closed = False

    def open(self, tunnel_timeout: float = TUNNEL_URL_TIMEOUT) -> str | None:
        """Start serving; returns the public URL when a tunnel came up in time."""
        self.server.start()
        if self.tunnel is None:
            return None
        try:
            self.tunnel.start()
            self.public_url = self.tunnel.await_public_url(tunnel_timeout).rstrip("/") + self.server.file_path
        except (OSError, TunnelTimedOut) as e:
            logger.warning("Tunnel failed, sharing locally only: %s", e)
        return self.public_url

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            if self.tunnel is not None:
                self.tunnel.stop()
        finally:
            self.server.stop()

    def wait(self, until: threading.Event | None = None) -> None:
        """Block until interrupted (SIGINT/SIGTERM) or ``until`` is set, then close."""
        stop = until or threading.Event()
        previous = None
        if threading.current_thread() is threading.main_thread():
            previous = signal.signal(signal.SIGTERM, lambda *_: stop.set())
        try:
            while not stop.wait(0.5):
                pass
        except KeyboardInterrupt:
            pass
        finally:
            if previous is not None:
                signal.signal(signal.SIGTERM, previous)
            self.close()


def share_workflow(
    workflow: dict[str, Any],
    workflow_id: str,
    port: int = 3333,
    public: bool = False,
    tunnel: str = "cloudflare",
    cloudflared: str | None = None,
    tunnel_factory: Callable[[str], OutboundTunnel | None] | None = None,
    on_ready: Callable[[str, str | None], None] | None = None,
    until: threading.Event | None = None,
) -> None:
    """
    Serve ``workflow`` until interrupted.

    ``on_ready(local_url, public_url)`` is called once the links are known;
    ``public_url`` is None when no tunnel was requested or it failed.
    """
    host = "0.0.0.0" if public else "127.0.0.1"
    server = ShareServer(workflow, share_basename(workflow_id), host=host, port=port)
    local_url = server.url_for(local_ip() if public else host)
    tunnel_origin = f"http://127.0.0.1:{server.port}"

    outbound = None
    if tunnel == "cloudflare":
        if tunnel_factory is not None:
            outbound = tunnel_factory(tunnel_origin)
        else:
            exe = resolve_cloudflared(cloudflared or os.environ.get("CLOUDFLARED_PATH"))
            if exe is None:
                logger.warning("cloudflared not found; sharing the local link only")
            else:
                outbound = CloudflareTunnel(exe, tunnel_origin)

    session = ShareSession(server, outbound)
    try:
        public_url = session.open()
        if on_ready is not None:
            on_ready(local_url, public_url)
    except BaseException:
        session.close()
        raise
    session.wait(until)
