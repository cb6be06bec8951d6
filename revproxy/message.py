from typing import Callable, Iterable, Iterator, List, Optional, Union
from urllib.parse import SplitResult, urlsplit

from .headers import Header, canonical_key


def parse_request_target(target: str) -> SplitResult:
    """Parse a request-target; origin-form ("/a//b?q") keeps its path as sent."""
    if target.startswith("/"):
        path, _, query = target.partition("?")
        return SplitResult("", "", path, query, "")
    return urlsplit(target)


class Request:
    """An HTTP request as seen by the proxy.

    The hosting server builds one of these per inbound request and lends it to
    the proxy; the proxy only ever writes to its own clone().
    """

    def __init__(
        self,
        method: str,
        url: Union[str, SplitResult],
        headers: Optional[Header] = None,
        body=None,
        remote_addr: str = "",
        host: str = "",
    ):
        self.method = method
        self.url: SplitResult = parse_request_target(url) if isinstance(url, str) else url
        self.headers: Header = headers if headers is not None else Header()
        # bytes, a file-like object or an iterable of bytes; None for no body
        self.body = body
        self.remote_addr = remote_addr
        self.host = host or self.url.netloc

    def clone(self) -> "Request":
        return Request(
            self.method,
            self.url,
            self.headers.clone(),
            body=self.body,
            remote_addr=self.remote_addr,
            host=self.host,
        )

    @property
    def target(self) -> str:
        return self.url.geturl()

    def __repr__(self) -> str:
        return f"<Request {self.method} {self.target}>"


class Response:
    """A backend response.

    `trailers` is only complete once `body` has been iterated to the end.
    """

    def __init__(
        self,
        status_code: int,
        headers: Optional[Header] = None,
        body: Optional[Iterable[bytes]] = None,
        trailers: Optional[Header] = None,
        reason: str = "",
        release: Optional[Callable[[], None]] = None,
    ):
        self.status_code = status_code
        self.headers: Header = headers if headers is not None else Header()
        self.body: Iterable[bytes] = body if body is not None else ()
        self.trailers: Header = trailers if trailers is not None else Header()
        self.reason = reason
        self._release = release
        self.closed = False

    def trailer_names(self) -> List[str]:
        names: List[str] = []
        for v in self.headers.values_of("Trailer"):
            for tok in v.split(","):
                if not tok.strip():
                    continue
                key = canonical_key(tok)
                if key not in names:
                    names.append(key)
        return names

    def iter_body(self) -> Iterator[bytes]:
        for chunk in self.body:
            if chunk:
                yield chunk

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._release is not None:
            self._release()

    def __repr__(self) -> str:
        return f"<Response [{self.status_code}]>"


class ResponseWriter:
    """Client-side sink the proxy writes the relayed response into.

    Order of use: mutate header(), write_header(), write() any number of
    times, then write_trailers() once. Header changes after write_header()
    are not sent.
    """

    def header(self) -> Header:
        raise NotImplementedError

    def write_header(self, status_code: int, reason: str = "") -> None:
        raise NotImplementedError

    def write(self, data: bytes) -> None:
        raise NotImplementedError

    def flush(self) -> None:
        pass

    def write_trailers(self, trailers: Header) -> None:
        raise NotImplementedError

    def abort(self) -> None:
        """Drop the client connection after a failure mid-response."""
        raise NotImplementedError

    @property
    def headers_written(self) -> bool:
        raise NotImplementedError
