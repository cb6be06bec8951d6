from typing import Callable, Tuple, Union
from urllib.parse import SplitResult, urlsplit

from .errors import RoutingError
from .message import Request

Director = Callable[[Request], None]


def join_url_path(base: str, path: str) -> str:
    if not path:
        return base or "/"
    a = base.endswith("/")
    b = path.startswith("/")
    if a and b:
        return base + path[1:]
    if not a and not b:
        return base + "/" + path
    return base + path


def join_query(base: str, query: str) -> str:
    # Plain concatenation keeps duplicate keys and the original encoding.
    if base and query:
        return base + "&" + query
    return base or query


def rewrite(base_url: Union[str, SplitResult], path: str, query: str) -> Tuple[str, str]:
    if isinstance(base_url, str):
        base_url = urlsplit(base_url)
    return join_url_path(base_url.path, path), join_query(base_url.query, query)


def parse_target(target: Union[str, SplitResult]) -> SplitResult:
    u = urlsplit(target) if isinstance(target, str) else target
    if u.scheme not in ("http", "https"):
        raise RoutingError(f"unsupported backend scheme in {u.geturl()!r}")
    if not u.netloc:
        raise RoutingError(f"backend URL {u.geturl()!r} has no host")
    return u


def single_host_director(target: Union[str, SplitResult]) -> Director:
    """Director that sends every request to one backend origin.

    The backend's path is used as a prefix for the inbound path and the two
    query strings are concatenated. request.host is left alone so the
    backend sees the Host the client asked for.
    """
    u = parse_target(target)

    def director(req: Request) -> None:
        path, query = rewrite(u, req.url.path, req.url.query)
        req.url = SplitResult(u.scheme, u.netloc, path, query, "")

    return director
