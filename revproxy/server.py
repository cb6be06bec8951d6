import argparse
import logging
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Iterator, Optional, Tuple

from .headers import Header
from .message import Request, ResponseWriter
from .proxy import ReverseProxy
from .transport import RequestsTransport

logger = logging.getLogger(__name__)


class ChunkedBody:
    """Incremental decoder for a chunked request body."""

    def __init__(self, rfile):
        self.rfile = rfile
        self.done = False

    def __iter__(self) -> Iterator[bytes]:
        while not self.done:
            line = self.rfile.readline(65537)
            if not line:
                raise EOFError("unexpected EOF in chunked request body")
            size = int(line.split(b";", 1)[0].strip(), 16)
            if size == 0:
                # Request trailers are not forwarded.
                while True:
                    line = self.rfile.readline(65537)
                    if not line or line in (b"\r\n", b"\n"):
                        break
                self.done = True
                return
            data = self.rfile.read(size)
            if len(data) < size:
                raise EOFError("unexpected EOF in chunked request body")
            self.rfile.readline(65537)
            yield data


def build_request(handler: BaseHTTPRequestHandler) -> Request:
    headers = Header(handler.headers.items())
    host = headers.get("Host")
    headers.delete("Host")

    body = None
    if "chunked" in headers.get("Transfer-Encoding").lower():
        body = ChunkedBody(handler.rfile)
    else:
        clen = headers.get("Content-Length")
        if clen:
            n = int(clen)
            if n > 0:
                body = handler.rfile.read(n)

    return Request(
        handler.command,
        handler.path,
        headers,
        body=body,
        remote_addr=format_addr(handler.client_address),
        host=host,
    )


def format_addr(addr: Tuple) -> str:
    host, port = addr[0], addr[1]
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


class HandlerResponseWriter(ResponseWriter):
    """ResponseWriter over a BaseHTTPRequestHandler connection.

    Bodies are sent chunked whenever trailers are announced or the length is
    unknown; HTTP/1.0 clients get a close-delimited body instead.
    """

    def __init__(self, handler: BaseHTTPRequestHandler):
        self.handler = handler
        self._header = Header()
        self._written = False
        self._chunked = False
        self._no_body = False

    def header(self) -> Header:
        return self._header

    @property
    def headers_written(self) -> bool:
        return self._written

    def write_header(self, status_code: int, reason: str = "") -> None:
        if self._written:
            return
        self._written = True
        h = self._header.clone()
        self._no_body = (
            self.handler.command == "HEAD"
            or status_code in (204, 304)
            or 100 <= status_code < 200
        )
        if not self._no_body and (h.has("Trailer") or not h.has("Content-Length")):
            h.delete("Content-Length")
            if self.handler.request_version == "HTTP/1.0":
                h.delete("Trailer")
                self.handler.close_connection = True
            else:
                self._chunked = True
                h.set("Transfer-Encoding", "chunked")

        self.handler.send_response_only(status_code, reason or None)
        for k, v in h.items_multi():
            self.handler.send_header(k, v)
        self.handler.end_headers()

    def write(self, data: bytes) -> None:
        if self._no_body or not data:
            return
        if self._chunked:
            self.handler.wfile.write(b"%x\r\n" % len(data) + data + b"\r\n")
        else:
            self.handler.wfile.write(data)

    def flush(self) -> None:
        self.handler.wfile.flush()

    def write_trailers(self, trailers: Header) -> None:
        if not self._chunked:
            return
        buf = [b"0\r\n"]
        for k, v in trailers.items_multi():
            buf.append(f"{k}: {v}\r\n".encode("latin-1"))
        buf.append(b"\r\n")
        self.handler.wfile.write(b"".join(buf))
        self.handler.wfile.flush()

    def abort(self) -> None:
        self.handler.close_connection = True


class ProxyRequestHandler(BaseHTTPRequestHandler):
    server_version = "revproxy"
    protocol_version = "HTTP/1.1"

    def do_ANY(self):
        proxy: ReverseProxy = self.server.proxy  # type: ignore[attr-defined]
        try:
            req = build_request(self)
        except ValueError as e:
            self.send_error(400, f"Bad request framing: {e}")
            return
        proxy.handle(req, HandlerResponseWriter(self))
        if isinstance(req.body, ChunkedBody) and not req.body.done:
            # Unread request bytes would be parsed as the next request.
            self.close_connection = True

    def do_GET(self): self.do_ANY()
    def do_POST(self): self.do_ANY()
    def do_PUT(self): self.do_ANY()
    def do_DELETE(self): self.do_ANY()
    def do_HEAD(self): self.do_ANY()
    def do_OPTIONS(self): self.do_ANY()
    def do_PATCH(self): self.do_ANY()

    def log_message(self, fmt, *args):
        logger.info("%s - %s", self.address_string(), fmt % args)


class ProxyHTTPServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, server_address, RequestHandlerClass, proxy: ReverseProxy):
        super().__init__(server_address, RequestHandlerClass)
        self.proxy = proxy


def parse_listen(listen: str) -> Tuple[str, int]:
    if listen.startswith(":"):
        return "0.0.0.0", int(listen[1:])
    host, p = listen.rsplit(":", 1)
    return host, int(p)


def main(argv: Optional[list] = None):
    parser = argparse.ArgumentParser(description="Single-backend HTTP reverse proxy")
    parser.add_argument("--listen", default=":8080", help="listen address, default :8080")
    parser.add_argument("--target", required=True, help="backend origin, e.g. http://127.0.0.1:9000/base?k=v")
    parser.add_argument(
        "--extra-hop-header",
        action="append",
        default=[],
        metavar="NAME",
        help="additional header name to treat as hop-by-hop (repeatable)",
    )
    parser.add_argument("--timeout", type=float, default=30.0, help="backend timeout in seconds")
    parser.add_argument("--log-level", default="INFO", help="logging level, default INFO")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    host, port = parse_listen(args.listen)
    proxy = ReverseProxy.for_target(
        args.target,
        transport=RequestsTransport(timeout=args.timeout),
        extra_hop_headers=args.extra_hop_header,
    )
    httpd = ProxyHTTPServer((host, port), ProxyRequestHandler, proxy)
    logger.info("revproxy listening on %s:%d, target=%s", host, port, args.target)
    try:
        httpd.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        httpd.server_close()
        proxy.config.transport.close()


if __name__ == "__main__":
    main()
