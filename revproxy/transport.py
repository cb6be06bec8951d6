import logging
from typing import Dict, Iterator, Optional

import requests

from .errors import DispatchError
from .headers import Header
from .message import Request, Response

logger = logging.getLogger(__name__)

CHUNK_SIZE = 32 * 1024


class Transport:
    """Performs one outbound request.

    perform() returns the backend Response with its body still unread, or
    raises DispatchError for connection, timeout and protocol failures.
    """

    def perform(self, req: Request) -> Response:
        raise NotImplementedError

    def close(self) -> None:
        pass


class RequestsTransport(Transport):
    def __init__(self, timeout: Optional[float] = 30, session: Optional[requests.Session] = None):
        self.timeout = timeout
        if session is None:
            session = requests.Session()
            # Never re-proxy through HTTP(S)_PROXY, never invent headers the
            # client did not send.
            session.trust_env = False
            session.headers.clear()
        self.session = session

    def _flat_headers(self, req: Request) -> Dict[str, str]:
        out: Dict[str, str] = {}
        for k, vv in req.headers.items():
            if not vv:
                continue
            # Cookie pairs are separated by "; " (RFC 6265 section 5.4).
            sep = "; " if k == "Cookie" else ", "
            out[k] = sep.join(vv)
        if req.host:
            out["Host"] = req.host
        return out

    def perform(self, req: Request) -> Response:
        try:
            resp = self.session.request(
                method=req.method,
                url=req.target,
                headers=self._flat_headers(req),
                data=req.body,
                stream=True,
                allow_redirects=False,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise DispatchError(f"{req.method} {req.target}: {e}", cause=e) from e

        headers = Header()
        raw_headers = resp.raw.headers
        for k in raw_headers.keys():
            for v in raw_headers.getlist(k):
                headers.add(k, v)

        return Response(
            resp.status_code,
            headers,
            body=self._iter_raw(resp),
            reason=resp.reason or "",
            release=resp.close,
        )

    def _iter_raw(self, resp: requests.Response) -> Iterator[bytes]:
        # Raw bytes: Content-Encoding is forwarded, so the body must not be decoded.
        for chunk in resp.raw.stream(CHUNK_SIZE, decode_content=False):
            yield chunk

    def close(self) -> None:
        self.session.close()
