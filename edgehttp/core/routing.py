"""
Virtual hosts and their route tables.

Tables are built during setup and frozen before the listener is bound, so
lookups during serving never race with a writer.
"""

from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Sequence, Tuple

from .config import DEFAULT_MAX_REQUEST_SIZE
from .errors import RouteTableFrozenError


@dataclass(frozen=True)
class RouteEntry:
    """A path pattern bound to one handler.

    Attributes:
        pattern: Exact path, or prefix when prefix is true
        handler: Object with an async handle(request) method
        prefix: Match the pattern and everything below it
        filters: Response filters applied after the handler completes
    """
    pattern: str
    handler: object
    prefix: bool = False
    filters: Tuple[object, ...] = ()

    def matches(self, path: str) -> bool:
        if not self.prefix:
            return path == self.pattern
        if self.pattern == "/":
            return path.startswith("/")
        base = self.pattern.rstrip("/")
        return path == base or path.startswith(base + "/")

    def remainder(self, path: str) -> str:
        """Part of path below the pattern, always starting with '/'."""
        if not self.prefix:
            return path
        base = self.pattern.rstrip("/")
        rest = path[len(base):]
        return rest if rest.startswith("/") else "/" + rest


class RouteTable:
    """Ordered routes with first-match-wins lookup.

    Exact routes are tried before prefix routes; within each kind,
    registration order decides.
    """

    def __init__(self):
        self._entries: List[RouteEntry] = []
        self._frozen = False

    def register(self, pattern: str, handler, *, prefix: bool = False,
                 filters: Sequence[object] = ()) -> RouteEntry:
        """Add a route. Only allowed before freeze().

        Raises:
            RouteTableFrozenError: If the table is already serving
            ValueError: If the pattern is not an absolute path
        """
        if self._frozen:
            raise RouteTableFrozenError(f"Cannot register {pattern!r}: route table is frozen")
        if not pattern.startswith("/"):
            raise ValueError(f"Route pattern must start with '/': {pattern!r}")
        if not callable(getattr(handler, "handle", None)):
            raise TypeError(f"Handler for {pattern!r} has no handle() method")
        entry = RouteEntry(pattern, handler, prefix, tuple(filters))
        self._entries.append(entry)
        return entry

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def lookup(self, path: str) -> Optional[RouteEntry]:
        for entry in self._entries:
            if not entry.prefix and entry.matches(path):
                return entry
        for entry in self._entries:
            if entry.prefix and entry.matches(path):
                return entry
        return None

    def __iter__(self) -> Iterator[RouteEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class HostConfig:
    """One virtual host.

    Attributes:
        name: Host name matched against Host / :authority
        routes: The host's route table
        max_request_size: Upper bound for headers plus body of one request
    """
    name: str
    routes: RouteTable = field(default_factory=RouteTable)
    max_request_size: int = DEFAULT_MAX_REQUEST_SIZE


class HostTable:
    """Virtual hosts in registration order; the first one is the default."""

    def __init__(self):
        self._hosts: List[HostConfig] = []
        self._frozen = False

    def register(self, name: str, max_request_size: int = DEFAULT_MAX_REQUEST_SIZE) -> HostConfig:
        if self._frozen:
            raise RouteTableFrozenError(f"Cannot register host {name!r}: host table is frozen")
        host = HostConfig(name.lower(), RouteTable(), max_request_size)
        self._hosts.append(host)
        return host

    def freeze(self) -> None:
        self._frozen = True
        for host in self._hosts:
            host.routes.freeze()

    @property
    def default(self) -> HostConfig:
        if not self._hosts:
            raise LookupError("no hosts registered")
        return self._hosts[0]

    @property
    def max_request_size(self) -> int:
        return max((h.max_request_size for h in self._hosts), default=DEFAULT_MAX_REQUEST_SIZE)

    def select(self, authority: str) -> HostConfig:
        """Pick the host for an authority, falling back to the default host."""
        name = _strip_port(authority).lower()
        for host in self._hosts:
            if host.name == name:
                return host
        return self.default

    def __iter__(self) -> Iterator[HostConfig]:
        return iter(self._hosts)

    def __len__(self) -> int:
        return len(self._hosts)


def _strip_port(authority: str) -> str:
    if authority.startswith("["):
        end = authority.find("]")
        return authority[1:end] if end != -1 else authority
    host, _, _ = authority.partition(":")
    return host
