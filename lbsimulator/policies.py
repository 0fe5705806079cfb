"""Server selection policies.

A policy maps a pool snapshot, the shared round-robin cursor and an optional
affinity key to a target server. Policies are pure: everything they read is
passed in, everything they decide is returned in a ``SelectionResult``
together with a ``Rationale`` explaining the decision. Randomness comes from
an injected ``random.Random`` so runs can be replayed.

Available policies:
- RoundRobinPolicy: cycles through the healthy servers using the cursor
- LeastConnectionsPolicy: fewest active requests, lowest id on ties
- RandomPolicy: uniform choice among healthy servers
- IPHashPolicy: ``affinity_key mod |healthy|`` source affinity

Example:
    result = select(pool.snapshot(), PolicyKind.ROUND_ROBIN, cursor=0)
    if result.target_id is None:
        ...  # pool exhausted, drop the request
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from lbsimulator.errors import InvalidConfigError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from lbsimulator.pool import Server, ServerSnapshot

    ServerLike = Server | ServerSnapshot

logger = logging.getLogger(__name__)

NO_ACTIVE_SERVERS = "No active servers available!"

# Number of servers listed in a least-connections explanation.
_LOAD_LIST_LIMIT = 3


class PolicyKind(Enum):
    """Selection algorithm used by the dispatcher."""

    ROUND_ROBIN = "ROUND_ROBIN"
    LEAST_CONNECTIONS = "LEAST_CONNECTIONS"
    RANDOM = "RANDOM"
    IP_HASH = "IP_HASH"

    @property
    def label(self) -> str:
        return _LABELS[self]

    @classmethod
    def parse(cls, value: PolicyKind | str) -> PolicyKind:
        """Accept a PolicyKind or its name, case-insensitively.

        Raises:
            InvalidConfigError: If the name matches no policy.
        """
        if isinstance(value, cls):
            return value
        key = str(value).strip().upper().replace("-", "_")
        try:
            return cls[key]
        except KeyError:
            names = ", ".join(k.name for k in cls)
            raise InvalidConfigError(
                f"Unknown policy {value!r}. Expected one of: {names}"
            ) from None


_LABELS = {
    PolicyKind.ROUND_ROBIN: "Round Robin",
    PolicyKind.LEAST_CONNECTIONS: "Least Connections",
    PolicyKind.RANDOM: "Random Distribution",
    PolicyKind.IP_HASH: "IP Hash (Source)",
}


@dataclass(frozen=True)
class Rationale:
    """Structured explanation of one selection decision.

    Every field is derived from the inputs to ``select`` (including the
    random draw, which is recorded as an input), so equal inputs always
    produce equal rationales.

    Attributes:
        policy: The policy that made the decision.
        healthy_ids: Ids of the candidate servers, in id order.
        inputs: Sorted ``(name, value)`` pairs the policy consulted.
        comparison: The computation that picked the candidate.
        outcome: What the dispatcher should do with the request.
        target_id: Chosen server id, or None when the pool is exhausted.
        steps: Human-readable explanation, one paragraph per step.
    """

    policy: PolicyKind
    healthy_ids: tuple[int, ...]
    inputs: tuple[tuple[str, object], ...]
    comparison: str
    outcome: str
    target_id: int | None
    steps: tuple[str, ...]

    @property
    def is_drop(self) -> bool:
        return self.target_id is None

    def input(self, name: str, default: object = None) -> object:
        for key, value in self.inputs:
            if key == name:
                return value
        return default

    def describe(self) -> str:
        return "\n\n".join(self.steps)


@dataclass(frozen=True)
class SelectionResult:
    """Outcome of ``select``.

    Attributes:
        target_id: Chosen server id, or None if no healthy server exists.
        cursor: Cursor value after the decision.
        rationale: Why this target was chosen.
        log_line: One-line summary for the decision log.
    """

    target_id: int | None
    cursor: int
    rationale: Rationale
    log_line: str

    @property
    def exhausted(self) -> bool:
        return self.target_id is None


def _inputs(**values: object) -> tuple[tuple[str, object], ...]:
    return tuple(sorted(values.items()))


def _decision(
    kind: PolicyKind,
    healthy: Sequence[ServerLike],
    target: ServerLike,
    cursor: int,
    inputs: tuple[tuple[str, object], ...],
    comparison: str,
    steps: tuple[str, ...],
    log_line: str,
) -> SelectionResult:
    rationale = Rationale(
        policy=kind,
        healthy_ids=tuple(s.id for s in healthy),
        inputs=inputs,
        comparison=comparison,
        outcome=f"route to server {target.id}",
        target_id=target.id,
        steps=steps,
    )
    return SelectionResult(
        target_id=target.id, cursor=cursor, rationale=rationale, log_line=log_line
    )


@runtime_checkable
class SelectionPolicy(Protocol):
    """Protocol for selection algorithms.

    ``choose`` is only called with a non-empty healthy list; pool exhaustion
    is handled once, in ``select``.
    """

    kind: PolicyKind

    def choose(
        self,
        healthy: Sequence[ServerLike],
        cursor: int,
        affinity_key: int | None,
        rng: random.Random | None,
    ) -> SelectionResult:
        """Pick one of ``healthy``.

        Args:
            healthy: Healthy servers in id order, never empty.
            cursor: Current round-robin cursor.
            affinity_key: Origin id of the request, if known.
            rng: Random source for policies that need one.

        Returns:
            The decision, including the possibly advanced cursor.
        """
        ...


class RoundRobinPolicy:
    """Cycles through the healthy servers.

    The index is ``cursor mod |healthy|`` over the filtered list, so a health
    change shifts which server the cursor points at without resetting it.
    """

    kind = PolicyKind.ROUND_ROBIN

    def choose(
        self,
        healthy: Sequence[ServerLike],
        cursor: int,
        affinity_key: int | None,
        rng: random.Random | None,
    ) -> SelectionResult:
        index = cursor % len(healthy)
        target = healthy[index]
        steps = (
            "1. Checking Sequence...\n"
            "   -> Previous request went to the server before this one.\n"
            f"   -> Current sequential pointer is at position {cursor + 1}.",
            "2. Selecting...\n"
            "   -> Moving down the list of active servers.\n"
            f"   -> The next server in line is Server #{target.id + 1}.",
            "3. Action:\n"
            f"   -> Routing request to Server #{target.id + 1} and advancing pointer.",
        )
        return _decision(
            self.kind,
            healthy,
            target,
            cursor + 1,
            _inputs(cursor=cursor, healthy_count=len(healthy)),
            f"cursor {cursor} mod {len(healthy)} = index {index}",
            steps,
            f"[RR] Selected Server {target.id + 1}",
        )


class LeastConnectionsPolicy:
    """Picks the healthy server with the fewest active requests.

    Ties go to the lowest id so repeated decisions are deterministic.
    """

    kind = PolicyKind.LEAST_CONNECTIONS

    def choose(
        self,
        healthy: Sequence[ServerLike],
        cursor: int,
        affinity_key: int | None,
        rng: random.Random | None,
    ) -> SelectionResult:
        target = min(healthy, key=lambda s: (s.active_load, s.id))
        loads = tuple((s.id, s.active_load) for s in healthy)
        load_list = ", ".join(
            f"Server {s.id + 1}: {s.active_load} active"
            for s in healthy[:_LOAD_LIST_LIMIT]
        )
        more = "..." if len(healthy) > _LOAD_LIST_LIMIT else ""
        steps = (
            "1. Polling Server Loads...\n"
            "   -> Querying active connections on all servers.\n"
            f"   -> Current Loads: [ {load_list}{more} ]",
            "2. Comparing...\n"
            f"   -> Server #{target.id + 1} currently has the fewest connections "
            f"({target.active_load}).",
            "3. Decision:\n"
            f"   -> sending to Server #{target.id + 1} to balance the load.",
        )
        return _decision(
            self.kind,
            healthy,
            target,
            cursor,
            _inputs(loads=loads),
            f"min active_load {target.active_load} at server {target.id}, "
            "ties to lowest id",
            steps,
            f"[LC] Selected Server {target.id + 1} (Load: {target.active_load})",
        )


class RandomPolicy:
    """Uniform choice among the healthy servers."""

    kind = PolicyKind.RANDOM

    def choose(
        self,
        healthy: Sequence[ServerLike],
        cursor: int,
        affinity_key: int | None,
        rng: random.Random | None,
    ) -> SelectionResult:
        index = (rng or random).randrange(len(healthy))
        target = healthy[index]
        steps = (
            "1. Identifying Pool...\n"
            f"   -> Found {len(healthy)} healthy servers available.",
            "2. Randomizing...\n"
            f'   -> "Rolling the dice" to pick a number between 1 and {len(healthy)}.\n'
            f"   -> Result: Index {index}.",
            "3. Decision:\n"
            f"   -> Random selection chose Server #{target.id + 1}.",
        )
        return _decision(
            self.kind,
            healthy,
            target,
            cursor,
            _inputs(draw=index, healthy_count=len(healthy)),
            f"draw {index} in [0, {len(healthy)})",
            steps,
            f"[RND] Selected Server {target.id + 1}",
        )


class IPHashPolicy:
    """Source affinity: ``affinity_key mod |healthy|`` over the healthy list.

    The same key maps to the same position while the healthy set is
    unchanged. When a server goes down every key after it shifts, so the
    mapped server is not stable across health changes. There is no sticky
    session table.

    Without an affinity key the decision falls back to round-robin.
    """

    kind = PolicyKind.IP_HASH

    def __init__(self) -> None:
        self._fallback = RoundRobinPolicy()

    def choose(
        self,
        healthy: Sequence[ServerLike],
        cursor: int,
        affinity_key: int | None,
        rng: random.Random | None,
    ) -> SelectionResult:
        if affinity_key is None:
            result = self._fallback.choose(healthy, cursor, None, rng)
            rationale = result.rationale
            fallback = Rationale(
                policy=self.kind,
                healthy_ids=rationale.healthy_ids,
                inputs=rationale.inputs,
                comparison=f"no affinity key, {rationale.comparison}",
                outcome=rationale.outcome,
                target_id=rationale.target_id,
                steps=rationale.steps,
            )
            return SelectionResult(
                target_id=result.target_id,
                cursor=result.cursor,
                rationale=fallback,
                log_line=result.log_line,
            )

        index = affinity_key % len(healthy)
        target = healthy[index]
        steps = (
            "1. Reading Client Header...\n"
            f"   -> Request is from Client #{affinity_key + 1}.",
            "2. Hashing...\n"
            "   -> Applying formula: ClientID % ActiveServers.\n"
            f"   -> {affinity_key} % {len(healthy)} = Index {index}.",
            "3. Decision:\n"
            f"   -> This index maps directly to Server #{target.id + 1}.",
        )
        return _decision(
            self.kind,
            healthy,
            target,
            cursor,
            _inputs(affinity_key=affinity_key, healthy_count=len(healthy)),
            f"affinity {affinity_key} mod {len(healthy)} = index {index}",
            steps,
            f"[IP-HASH] Client {affinity_key + 1} -> Server {target.id + 1}",
        )


_POLICIES: dict[PolicyKind, SelectionPolicy] = {
    PolicyKind.ROUND_ROBIN: RoundRobinPolicy(),
    PolicyKind.LEAST_CONNECTIONS: LeastConnectionsPolicy(),
    PolicyKind.RANDOM: RandomPolicy(),
    PolicyKind.IP_HASH: IPHashPolicy(),
}


def get_policy(kind: PolicyKind | str) -> SelectionPolicy:
    return _POLICIES[PolicyKind.parse(kind)]


def exhausted_result(kind: PolicyKind, cursor: int) -> SelectionResult:
    """The NONE outcome: no healthy server, cursor untouched."""
    rationale = Rationale(
        policy=kind,
        healthy_ids=(),
        inputs=_inputs(healthy_count=0),
        comparison="healthy set is empty",
        outcome="no active servers available",
        target_id=None,
        steps=(
            "CRITICAL: Checking server health...",
            "Result: All servers are currently OFFLINE or unreachable.\n"
            "Action: Dropping request.",
        ),
    )
    return SelectionResult(
        target_id=None, cursor=cursor, rationale=rationale, log_line=NO_ACTIVE_SERVERS
    )


def select(
    servers: Sequence[ServerLike],
    kind: PolicyKind | str,
    cursor: int,
    affinity_key: int | None = None,
    rng: random.Random | None = None,
) -> SelectionResult:
    """Choose a target server for one request.

    Args:
        servers: All servers of the pool; unhealthy ones are filtered out.
        kind: Policy to apply.
        cursor: Current round-robin cursor.
        affinity_key: Origin id, used by IP_HASH.
        rng: Random source for RANDOM. Defaults to the ``random`` module.

    Returns:
        The decision. ``target_id`` is None when no server is healthy; that
        is an expected outcome, not an error.
    """
    kind = PolicyKind.parse(kind)
    healthy = sorted((s for s in servers if s.is_healthy), key=lambda s: s.id)
    if not healthy:
        logger.debug("%s: no healthy servers among %d", kind.name, len(servers))
        return exhausted_result(kind, cursor)

    result = _POLICIES[kind].choose(healthy, cursor, affinity_key, rng)
    logger.debug(
        "%s picked server %s (%s), cursor %d -> %d",
        kind.name,
        result.target_id,
        result.rationale.comparison,
        cursor,
        result.cursor,
    )
    return result
