import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Callable, Dict, Iterable, List, Optional

import pytest

from revproxy.headers import Header
from revproxy.message import Request, Response, ResponseWriter


class ResponseRecorder(ResponseWriter):
    """In-memory ResponseWriter that remembers what the proxy did and when."""

    def __init__(self):
        self._header = Header()
        self.code: Optional[int] = None
        self.reason = ""
        self.sent_header: Optional[Header] = None
        self.body = bytearray()
        self.trailers: Optional[Header] = None
        self.trailers_before_body_end: Optional[Header] = None
        self.flushes = 0
        self.aborted = False

    def header(self) -> Header:
        return self._header

    @property
    def headers_written(self) -> bool:
        return self.code is not None

    def write_header(self, status_code: int, reason: str = "") -> None:
        if self.code is not None:
            return
        self.code = status_code
        self.reason = reason
        self.sent_header = self._header.clone()

    def write(self, data: bytes) -> None:
        if self.trailers_before_body_end is None:
            self.trailers_before_body_end = Header() if self.trailers is None else self.trailers.clone()
        self.body.extend(data)

    def flush(self) -> None:
        self.flushes += 1

    def write_trailers(self, trailers: Header) -> None:
        self.trailers = trailers.clone()

    def abort(self) -> None:
        self.aborted = True


class FakeTransport:
    """Transport that hands outbound requests to an in-process backend function."""

    def __init__(self, backend: Callable[[Request], Response]):
        self.backend = backend
        self.requests: List[Request] = []

    def perform(self, req: Request) -> Response:
        self.requests.append(req)
        return self.backend(req)

    def close(self) -> None:
        pass


def backend_response(
    status: int = 200,
    headers: Optional[Iterable] = None,
    chunks: Iterable[bytes] = (b"I am the backend",),
    trailers: Optional[Dict[str, str]] = None,
    fail_after: Optional[int] = None,
    reason: str = "",
) -> Response:
    """Response whose trailers only appear once the body has been consumed."""
    resp = Response(status, Header(headers or []), reason=reason)
    released = []

    def body():
        for i, c in enumerate(chunks):
            if fail_after is not None and i == fail_after:
                raise ConnectionResetError("backend went away")
            yield c
        for k, v in (trailers or {}).items():
            resp.trailers.add(k, v)

    resp.body = body()
    resp._release = lambda: released.append(True)
    resp.released = released
    return resp


@pytest.fixture
def recorder():
    return ResponseRecorder()


@pytest.fixture
def http_backend():
    """Start a real HTTP backend on an ephemeral port; yields a starter function."""
    servers = []

    def start(handler_cls) -> str:
        httpd = ThreadingHTTPServer(("127.0.0.1", 0), handler_cls)
        httpd.daemon_threads = True
        th = threading.Thread(target=httpd.serve_forever, daemon=True)
        th.start()
        servers.append(httpd)
        return "http://127.0.0.1:%d" % httpd.server_address[1]

    yield start
    for s in servers:
        s.shutdown()
        s.server_close()


class QuietHandler(BaseHTTPRequestHandler):
    protocol_version = "HTTP/1.1"

    def log_message(self, fmt, *args):
        pass
