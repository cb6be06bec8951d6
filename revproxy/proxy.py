"""Single-backend HTTP reverse proxy.

ReverseProxy.handle() runs one request/response cycle: clone the inbound
request, point it at the backend, strip hop-by-hop fields, extend the
X-Forwarded-For chain, dispatch through the transport and relay status,
headers, body and trailers back through a ResponseWriter.
"""

import enum
import logging
from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Optional, Union
from urllib.parse import SplitResult

from . import forwarded
from .director import Director, single_host_director
from .errors import DispatchError, ProxyError, RoutingError, StreamError
from .headers import DEFAULT_HOP_HEADERS, Header, HopHeaders, copy_headers, removable_headers, strip_headers
from .message import Request, Response, ResponseWriter
from .transport import RequestsTransport, Transport

logger = logging.getLogger(__name__)

ERROR_BODY = b"Bad Gateway\n"


class Stage(enum.Enum):
    RECEIVED = "received"
    DIRECTED = "directed"
    SANITIZED_OUT = "sanitized_out"
    DISPATCHED = "dispatched"
    RESPONSE_RECEIVED = "response_received"
    SANITIZED_IN = "sanitized_in"
    HEADERS_FLUSHED = "headers_flushed"
    BODY_STREAMED = "body_streamed"
    TRAILERS_FLUSHED = "trailers_flushed"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class ProxyConfig:
    director: Director
    transport: Transport
    error_log: logging.Logger = logger
    hop_headers: HopHeaders = DEFAULT_HOP_HEADERS


class _Exchange:
    """Everything one request/response cycle owns."""

    def __init__(self, inbound: Request, writer: ResponseWriter):
        self.inbound = inbound
        self.writer = writer
        self.outbound: Optional[Request] = None
        self.response: Optional[Response] = None
        self.out_excluded: FrozenSet[str] = frozenset()
        self.in_excluded: FrozenSet[str] = frozenset()
        self.trailer_names: List[str] = []
        self.stage = Stage.RECEIVED

    def advance(self, stage: Stage) -> None:
        self.stage = stage
        logger.debug("%s %s: %s", self.inbound.method, self.inbound.target, stage.value)


class ReverseProxy:
    """Forwards requests to the backend chosen by config.director.

    Holds no per-request state, so one instance can serve any number of
    concurrent handle() calls.
    """

    def __init__(self, config: ProxyConfig):
        self.config = config

    @classmethod
    def for_target(
        cls,
        target: Union[str, SplitResult],
        transport: Optional[Transport] = None,
        extra_hop_headers: Iterable[str] = (),
        error_log: Optional[logging.Logger] = None,
    ) -> "ReverseProxy":
        config = ProxyConfig(
            director=single_host_director(target),
            transport=transport if transport is not None else RequestsTransport(),
            error_log=error_log if error_log is not None else logger,
            hop_headers=DEFAULT_HOP_HEADERS.with_extra(extra_hop_headers),
        )
        return cls(config)

    def handle(self, req: Request, writer: ResponseWriter) -> None:
        ex = _Exchange(req, writer)
        try:
            self._prepare(ex)
            self._dispatch(ex)
        except Exception as e:
            err = e if isinstance(e, ProxyError) else ProxyError(f"preparing request: {e!r}")
            self._report(ex, err)
            self._write_error(writer, err)
            return

        try:
            self._relay(ex)
        except Exception as e:
            err = e if isinstance(e, ProxyError) else StreamError(f"relaying response: {e!r}")
            self._report(ex, err)
            if writer.headers_written:
                # Status already sent; the client sees a truncated response.
                writer.abort()
            else:
                self._write_error(writer, err)
        finally:
            ex.response.close()

    def _prepare(self, ex: _Exchange) -> None:
        out = ex.inbound.clone()
        ex.outbound = out

        try:
            self.config.director(out)
        except RoutingError:
            raise
        except Exception as e:
            raise RoutingError(f"director failed for {ex.inbound.target}: {e}") from e
        if not out.url.scheme or not out.url.netloc:
            raise RoutingError(f"director produced no backend for {ex.inbound.target}")
        ex.advance(Stage.DIRECTED)

        ex.out_excluded = removable_headers(out.headers, self.config.hop_headers)
        strip_headers(out.headers, ex.out_excluded)
        # Legacy field outside the hop list that must still never be forwarded.
        out.headers.delete("Proxy-Connection")
        forwarded.annotate(out.headers, out.remote_addr)
        ex.advance(Stage.SANITIZED_OUT)

    def _dispatch(self, ex: _Exchange) -> None:
        ex.advance(Stage.DISPATCHED)
        try:
            ex.response = self.config.transport.perform(ex.outbound)
        except DispatchError:
            raise
        except Exception as e:
            raise DispatchError(f"{ex.outbound.method} {ex.outbound.target}: {e}", cause=e) from e
        ex.advance(Stage.RESPONSE_RECEIVED)

    def _relay(self, ex: _Exchange) -> None:
        resp = ex.response
        w = ex.writer

        ex.in_excluded = removable_headers(resp.headers, self.config.hop_headers)
        copy_headers(w.header(), resp.headers, ex.in_excluded)
        ex.trailer_names = resp.trailer_names()
        if ex.trailer_names:
            w.header().set("Trailer", ", ".join(ex.trailer_names))
        ex.advance(Stage.SANITIZED_IN)

        w.write_header(resp.status_code, resp.reason)
        ex.advance(Stage.HEADERS_FLUSHED)

        body = iter(resp.iter_body())
        while True:
            try:
                chunk = next(body)
            except StopIteration:
                break
            except Exception as e:
                raise StreamError(f"reading backend body: {e}") from e
            w.write(chunk)
            w.flush()
        ex.advance(Stage.BODY_STREAMED)

        # Backend trailers only exist now that its body is exhausted.
        trailers = Header()
        for name in ex.trailer_names:
            for v in resp.trailers.values_of(name):
                trailers.add(name, v)
        w.write_trailers(trailers)
        ex.advance(Stage.TRAILERS_FLUSHED)
        ex.advance(Stage.DONE)

    def _report(self, ex: _Exchange, err: BaseException) -> None:
        failed_at = ex.stage
        ex.advance(Stage.FAILED)
        self.config.error_log.error(
            "revproxy: %s %s failed after %s: %s",
            ex.inbound.method, ex.inbound.target, failed_at.value, err,
        )

    def _write_error(self, w: ResponseWriter, err: ProxyError) -> None:
        try:
            h = w.header()
            h.clear()
            h.set("Content-Type", "text/plain; charset=utf-8")
            h.set("Content-Length", str(len(ERROR_BODY)))
            w.write_header(err.status_code)
            w.write(ERROR_BODY)
            w.write_trailers(Header())
        except (OSError, ValueError):
            w.abort()
