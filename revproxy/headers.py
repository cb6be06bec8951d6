from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional, Set, Tuple, Union


def canonical_key(name: str) -> str:
    """Canonical MIME form of a field name: "x-forwarded-for" -> "X-Forwarded-For"."""
    return "-".join(part[:1].upper() + part[1:].lower() for part in name.strip().split("-"))


class Header(Dict[str, List[str]]):
    """Header multi-map keyed by canonical field names.

    Values keep their order and multiplicity. Always go through the methods
    below rather than the raw dict API so lookups stay case-insensitive.
    """

    def __init__(self, pairs: Optional[Union[Dict[str, List[str]], Iterable[Tuple[str, str]]]] = None):
        super().__init__()
        if pairs is None:
            return
        if isinstance(pairs, dict):
            for k, vv in pairs.items():
                if isinstance(vv, str):
                    vv = [vv]
                for v in vv:
                    self.add(k, v)
        else:
            for k, v in pairs:
                self.add(k, v)

    def add(self, name: str, value: str) -> None:
        self.setdefault(canonical_key(name), []).append(value)

    def set(self, name: str, value: str) -> None:
        self[canonical_key(name)] = [value]

    def get(self, name: str, default: str = "") -> str:  # type: ignore[override]
        vv = super().get(canonical_key(name))
        if not vv:
            return default
        return vv[0]

    def values_of(self, name: str) -> List[str]:
        return list(super().get(canonical_key(name), []))

    def has(self, name: str) -> bool:
        return canonical_key(name) in self

    def delete(self, name: str) -> None:
        self.pop(canonical_key(name), None)

    def clone(self) -> "Header":
        h = Header()
        for k, vv in self.items():
            h[k] = list(vv)
        return h

    def items_multi(self) -> Iterator[Tuple[str, str]]:
        for k, vv in self.items():
            for v in vv:
                yield k, v


# Hop-by-hop fields per RFC 7230 section 6.1. "Trailer" is the announcement
# field; the look-alike "Trailers" is an ordinary end-to-end name.
BASE_HOP_HEADERS = (
    "Connection",
    "Keep-Alive",
    "Proxy-Authenticate",
    "Proxy-Authorization",
    "Te",
    "Trailer",
    "Transfer-Encoding",
    "Upgrade",
)


class HopHeaders:
    """Immutable registry of connection-scoped field names."""

    __slots__ = ("_names", "_lower")

    def __init__(self, names: Iterable[str] = BASE_HOP_HEADERS):
        ordered: List[str] = []
        seen: Set[str] = set()
        for n in names:
            key = canonical_key(n)
            if key.lower() in seen:
                continue
            seen.add(key.lower())
            ordered.append(key)
        object.__setattr__(self, "_names", tuple(ordered))
        object.__setattr__(self, "_lower", frozenset(seen))

    def __setattr__(self, name, value):
        raise AttributeError("HopHeaders is immutable")

    def __iter__(self) -> Iterator[str]:
        return iter(self._names)

    def __len__(self) -> int:
        return len(self._names)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.is_hop_by_hop(name)

    def __repr__(self) -> str:
        return f"HopHeaders({list(self._names)!r})"

    def is_hop_by_hop(self, name: str) -> bool:
        return name.strip().lower() in self._lower

    def with_extra(self, names: Iterable[str]) -> "HopHeaders":
        return HopHeaders(self._names + tuple(names))

    def union(self, names: Iterable[str]) -> FrozenSet[str]:
        """Lower-cased exclusion set for a single message."""
        return self._lower | {n.strip().lower() for n in names}


DEFAULT_HOP_HEADERS = HopHeaders()


def connection_tokens(value: Union[None, str, Iterable[str]]) -> Set[str]:
    """Field names listed in a Connection header, for one message only."""
    if not value:
        return set()
    if isinstance(value, str):
        value = [value]
    tokens: Set[str] = set()
    for v in value:
        for tok in v.split(","):
            tok = tok.strip()
            if tok:
                tokens.add(tok)
    return tokens


def removable_headers(header: Header, hop_headers: HopHeaders = DEFAULT_HOP_HEADERS) -> FrozenSet[str]:
    return hop_headers.union(connection_tokens(header.values_of("Connection")))


def copy_headers(dst: Header, src: Dict[str, List[str]], excluded: Iterable[str] = ()) -> None:
    skip = {n.lower() for n in excluded}
    for k, vv in src.items():
        if k.lower() in skip:
            continue
        for v in vv:
            dst.add(k, v)


def strip_headers(header: Header, excluded: Iterable[str]) -> None:
    """Remove excluded fields from a header this caller owns."""
    skip = {n.lower() for n in excluded}
    for k in [k for k in header if k.lower() in skip]:
        del header[k]
