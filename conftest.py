import threading
import time
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from urlreader.config import Settings
from urlreader.transport import build_session


@dataclass
class Route:
    status: int = 200
    body: bytes = b""
    block: bool = False
    trickle: bool = False


@dataclass
class LocalServer:
    """Threaded HTTP/1.1 server with canned routes, recording what it sees."""

    httpd: ThreadingHTTPServer
    routes: dict = field(default_factory=dict)
    requests: list = field(default_factory=list)
    connections: int = 0
    release: threading.Event = field(default_factory=threading.Event)

    @property
    def base_url(self) -> str:
        host, port = self.httpd.server_address[:2]
        return f"http://{host}:{port}"

    def url(self, path: str) -> str:
        return self.base_url + path

    def route(
        self,
        path: str,
        status: int = 200,
        body: bytes = b"",
        block: bool = False,
        trickle: bool = False,
    ):
        """Serve *body* at *path*.

        *block* holds the response until ``release`` is set. *trickle* sends a
        chunked body one byte every 50ms for up to 4s instead of *body*.
        """
        self.routes[path] = Route(status=status, body=body, block=block, trickle=trickle)


def _make_handler(server: LocalServer):
    class Handler(BaseHTTPRequestHandler):
        protocol_version = "HTTP/1.1"

        def setup(self):
            super().setup()
            server.connections += 1

        def do_GET(self):
            server.requests.append({"path": self.path, "headers": dict(self.headers)})
            route = server.routes.get(self.path, Route(status=404, body=b"no route"))
            if route.block:
                server.release.wait(10)
            if route.trickle:
                self._trickle(route.status)
                return
            self.send_response(route.status)
            self.send_header("Content-Type", "text/plain")
            self.send_header("Content-Length", str(len(route.body)))
            self.end_headers()
            self.wfile.write(route.body)

        def _trickle(self, status):
            self.send_response(status)
            self.send_header("Content-Type", "text/plain")
            self.send_header("Transfer-Encoding", "chunked")
            self.end_headers()
            self.close_connection = True
            end = time.monotonic() + 4
            try:
                while time.monotonic() < end and not server.release.is_set():
                    self.wfile.write(b"1\r\nx\r\n")
                    self.wfile.flush()
                    time.sleep(0.05)
                self.wfile.write(b"0\r\n\r\n")
            except OSError:
                pass

        def log_message(self, format, *args):
            pass

    return Handler


@pytest.fixture
def local_server():
    httpd = ThreadingHTTPServer(("127.0.0.1", 0), BaseHTTPRequestHandler)
    httpd.daemon_threads = True
    server = LocalServer(httpd=httpd)
    httpd.RequestHandlerClass = _make_handler(server)

    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    yield server
    server.release.set()
    httpd.shutdown()
    httpd.server_close()


@pytest.fixture
def session():
    """Isolated transport so pool state does not leak between tests."""
    s = build_session(Settings(trust_env=False))
    yield s
    s.close()
