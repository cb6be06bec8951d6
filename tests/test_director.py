import pytest

from revproxy.director import join_query, join_url_path, rewrite, single_host_director
from revproxy.errors import RoutingError
from revproxy.message import Request


@pytest.mark.parametrize(
    "base,req,want",
    [
        ("", "", ""),
        ("sta=tic", "us=er", "sta=tic&us=er"),
        ("", "us=er", "us=er"),
        ("sta=tic", "", "sta=tic"),
        ("a=1&a=2", "a=3", "a=1&a=2&a=3"),
        ("q=%2F", "x=%20y", "q=%2F&x=%20y"),
    ],
)
def test_join_query(base, req, want):
    assert join_query(base, req) == want


@pytest.mark.parametrize(
    "base,path,want",
    [
        ("", "/", "/"),
        ("/base", "", "/base"),
        ("", "", "/"),
        ("/base/", "/x", "/base/x"),
        ("/base", "/x", "/base/x"),
        ("/base", "x", "/base/x"),
        ("/base/", "x", "/base/x"),
    ],
)
def test_join_url_path(base, path, want):
    assert join_url_path(base, path) == want


def test_rewrite():
    assert rewrite("http://backend:9000/api?sta=tic", "/users", "us=er") == ("/api/users", "sta=tic&us=er")


def test_single_host_director_keeps_host():
    director = single_host_director("https://backend.internal:8443/prefix?k=v")
    req = Request("GET", "/thing?q=1", host="public.example")
    director(req)
    assert req.url.scheme == "https"
    assert req.url.netloc == "backend.internal:8443"
    assert req.url.path == "/prefix/thing"
    assert req.url.query == "k=v&q=1"
    assert req.host == "public.example"
    assert req.target == "https://backend.internal:8443/prefix/thing?k=v&q=1"


@pytest.mark.parametrize("target", ["backend:80", "ftp://backend/", "http:///nohost"])
def test_single_host_director_rejects_bad_target(target):
    with pytest.raises(RoutingError):
        single_host_director(target)
