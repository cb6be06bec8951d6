from typing import List

from .headers import Header

X_FORWARDED_FOR = "X-Forwarded-For"


def append_client_addr(existing: str, client_addr: str) -> str:
    if not existing:
        return client_addr
    return existing + ", " + client_addr


def client_ip(remote_addr: str) -> str:
    """Host part of a "host:port" or "[v6]:port" peer address."""
    addr = remote_addr.strip()
    if addr.startswith("["):
        end = addr.find("]")
        if end > 0:
            return addr[1:end]
        return addr
    if addr.count(":") == 1:
        host, _, port = addr.partition(":")
        if port.isdigit():
            return host
    return addr


def annotate(header: Header, remote_addr: str) -> None:
    """Append the client address to the outbound X-Forwarded-For chain."""
    ip = client_ip(remote_addr)
    if not ip:
        return
    prior: List[str] = [v.strip() for v in header.values_of(X_FORWARDED_FOR) if v.strip()]
    header.set(X_FORWARDED_FOR, append_client_addr(", ".join(prior), ip))
