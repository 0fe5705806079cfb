"""Backend server pool with per-server health and load accounting.

The pool is plain state: it never decides where a request goes. Selection
policies read it through ``healthy_servers()`` and the dispatch controller
mutates it when a decision is committed or a request is resolved.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from lbsimulator.errors import InvalidConfigError

logger = logging.getLogger(__name__)


@dataclass
class Server:
    """Mutable state of one backend server.

    Attributes:
        id: Stable identifier assigned at pool creation.
        active_load: Requests currently assigned and unresolved.
        total_completed: Requests resolved by this server so far.
        is_healthy: False while the operator has marked the server down.
    """

    id: int
    active_load: int = 0
    total_completed: int = 0
    is_healthy: bool = True

    def snapshot(self) -> ServerSnapshot:
        return ServerSnapshot(
            id=self.id,
            active_load=self.active_load,
            total_completed=self.total_completed,
            is_healthy=self.is_healthy,
        )


@dataclass(frozen=True)
class ServerSnapshot:
    """Immutable view of a server handed to collaborators and policies."""

    id: int
    active_load: int
    total_completed: int
    is_healthy: bool


@dataclass
class ServerPool:
    """Ordered collection of servers keyed by id.

    Mutators referencing an id that is not in the pool are no-ops that
    return False, since late collaborator signals may race a reset.
    """

    servers: list[Server] = field(default_factory=list)

    @classmethod
    def create(cls, n: int) -> ServerPool:
        """Create ``n`` healthy, idle servers with ids ``0..n-1``.

        Raises:
            InvalidConfigError: If ``n < 1``.
        """
        if n < 1:
            raise InvalidConfigError(f"Pool needs at least one server, got {n}")
        return cls(servers=[Server(id=i) for i in range(n)])

    def __len__(self) -> int:
        return len(self.servers)

    def __iter__(self):
        return iter(self.servers)

    def get(self, server_id: int) -> Server | None:
        if 0 <= server_id < len(self.servers):
            return self.servers[server_id]
        return None

    def healthy_servers(self) -> list[Server]:
        """Healthy servers in id order."""
        return [s for s in self.servers if s.is_healthy]

    @property
    def healthy_count(self) -> int:
        return sum(1 for s in self.servers if s.is_healthy)

    def set_health(self, server_id: int, healthy: bool) -> bool:
        """Mark a server up or down. In-flight requests stay where they are."""
        server = self.get(server_id)
        if server is None:
            logger.debug("set_health on unknown server %s ignored", server_id)
            return False
        server.is_healthy = healthy
        return True

    def toggle_health(self, server_id: int) -> bool:
        server = self.get(server_id)
        if server is None:
            logger.debug("toggle_health on unknown server %s ignored", server_id)
            return False
        server.is_healthy = not server.is_healthy
        return True

    def increment_load(self, server_id: int) -> bool:
        server = self.get(server_id)
        if server is None:
            logger.debug("increment_load on unknown server %s ignored", server_id)
            return False
        server.active_load += 1
        return True

    def decrement_load(self, server_id: int) -> bool:
        """Record a resolution: drop active load (never below 0) and count it."""
        server = self.get(server_id)
        if server is None:
            logger.debug("decrement_load on unknown server %s ignored", server_id)
            return False
        server.active_load = max(0, server.active_load - 1)
        server.total_completed += 1
        return True

    def snapshot(self) -> tuple[ServerSnapshot, ...]:
        return tuple(s.snapshot() for s in self.servers)
