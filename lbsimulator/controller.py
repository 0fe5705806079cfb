"""Dispatch controller: owns the pool, the cursor and every live request.

The controller is the only thing that mutates engine state. Collaborators
(a UI, a test, a driver script) create requests with ``add_request``, report
finished travel with ``advance_request``, finish service with
``resolve_at_server``, and read everything back through immutable
snapshots.

Two dispatch modes are supported:

- **Auto**: a request reaching the gateway is routed immediately.
- **Manual**: requests park at AWAITING_DECISION. Each pair of ``step()``
  calls first previews the decision for the oldest parked request, then
  commits it.

Every public method runs under one re-entrant lock, so signals arriving
from collaborator timer threads are applied one whole transition at a time.

Example:
    engine = DispatchController()
    engine.initialize(num_clients=2, num_servers=3, policy="ROUND_ROBIN")
    rid = engine.add_request(origin_id=0)
    engine.advance_request(rid)        # arrives at the gateway, routed
    engine.advance_request(rid)        # arrives at the server
    engine.resolve_at_server(rid)
"""

from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass, replace
from enum import Enum

from lbsimulator.config import BalancerConfig
from lbsimulator.decision_log import DecisionLog, DecisionRecord, RecordKind
from lbsimulator.errors import InvalidConfigError
from lbsimulator.lifecycle import (
    Request,
    RequestKind,
    RequestSnapshot,
    RequestState,
    is_travelling,
)
from lbsimulator.policies import PolicyKind, Rationale, SelectionResult, select
from lbsimulator.pool import ServerPool, ServerSnapshot
from lbsimulator.utils.ids import IdGenerator

logger = logging.getLogger(__name__)

INITIALIZED_MESSAGE = "System Initialized. Waiting for requests..."
NOTHING_WAITING_MESSAGE = "No requests waiting at Load Balancer."
BATCH_DROP_MESSAGE = "[ERR] Request dropped - No servers available"


class StepOutcome(Enum):
    """What a call to ``step()`` did."""

    IDLE = "idle"
    PREVIEW = "preview"
    COMMITTED = "committed"


@dataclass(frozen=True)
class StepResult:
    """Result of one manual-mode step.

    Attributes:
        outcome: IDLE if nothing happened, PREVIEW if a decision is now
            pending, COMMITTED if the pending decision was applied.
        message: Text for the operator.
        request_id: Request the step concerned, if any.
        rationale: Explanation of the decision, if any.
        target_id: Server chosen, or None (also None for a drop).
    """

    outcome: StepOutcome
    message: str
    request_id: str | None = None
    rationale: Rationale | None = None
    target_id: int | None = None

    @property
    def is_drop(self) -> bool:
        return self.rationale is not None and self.rationale.is_drop


@dataclass(frozen=True)
class PendingDecision:
    """A previewed but not yet committed decision."""

    request_id: str
    result: SelectionResult


@dataclass(frozen=True)
class DispatchStats:
    """Counters since the last initialize or reset."""

    assigned: int = 0
    dropped: int = 0
    resolved: int = 0
    completed: int = 0
    batches_expanded: int = 0


@dataclass(frozen=True)
class EngineState:
    """Immutable snapshot of the whole engine.

    Attributes:
        initialized: False before ``initialize`` and after ``reset``.
        policy: Active selection policy, None when uninitialized.
        auto_mode: True when decisions are made without operator steps.
        cursor: Round-robin cursor.
        servers: Server snapshots in id order.
        requests: Live request snapshots in creation order.
        pending_rationale: Rationale awaiting commit (manual mode only).
        logs: Decision log records, newest first.
        stats: Dispatch counters.
    """

    initialized: bool
    policy: PolicyKind | None
    auto_mode: bool
    cursor: int
    servers: tuple[ServerSnapshot, ...]
    requests: tuple[RequestSnapshot, ...]
    pending_rationale: Rationale | None
    logs: tuple[DecisionRecord, ...]
    stats: DispatchStats


class DispatchController:
    """The load-balancer decision engine.

    Args:
        config: Defaults for log capacity and RNG seed. If given, the engine
            is initialized from it right away.
        rng: Random source for the RANDOM policy. When omitted, a
            ``random.Random`` seeded from the config is created on every
            ``initialize``.
    """

    def __init__(
        self,
        config: BalancerConfig | None = None,
        rng: random.Random | None = None,
    ):
        self._lock = threading.RLock()
        self._ids = IdGenerator()
        self._defaults = config or BalancerConfig()
        self._injected_rng = rng
        self._rng = rng or random.Random(self._defaults.seed)

        self._config: BalancerConfig | None = None
        self._pool: ServerPool | None = None
        self._requests: dict[str, Request] = {}
        self._cursor = 0
        self._auto_mode = True
        self._pending: PendingDecision | None = None
        self._arrivals = 0
        self._log = DecisionLog(self._defaults.log_capacity)
        self._stats = DispatchStats()

        if config is not None:
            self._apply(config)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def initialize(
        self,
        num_clients: int,
        num_servers: int,
        policy: PolicyKind | str = PolicyKind.ROUND_ROBIN,
    ) -> None:
        """Build a fresh pool and clear all requests.

        The current mode is kept; everything else starts over.

        Raises:
            InvalidConfigError: If counts are out of bounds or the policy is
                unknown. The engine is left untouched.
        """
        config = replace(
            self._defaults,
            num_clients=num_clients,
            num_servers=num_servers,
            policy=policy,
        )
        with self._lock:
            self._apply(config)

    def _apply(self, config: BalancerConfig) -> None:
        pool = ServerPool.create(config.num_servers)
        self._config = config
        self._pool = pool
        self._requests.clear()
        self._cursor = 0
        self._pending = None
        self._arrivals = 0
        self._stats = DispatchStats()
        if self._injected_rng is None:
            self._rng = random.Random(config.seed)
        if self._log.capacity != config.log_capacity:
            self._log = DecisionLog(config.log_capacity)
        self._log.clear()
        self._log.record(INITIALIZED_MESSAGE)
        logger.info(
            "Initialized %d clients -> %d servers using %s",
            config.num_clients,
            config.num_servers,
            config.policy.name,
        )

    def reset(self) -> None:
        """Return to the uninitialized state, auto mode on."""
        with self._lock:
            self._config = None
            self._pool = None
            self._requests.clear()
            self._cursor = 0
            self._auto_mode = True
            self._pending = None
            self._arrivals = 0
            self._stats = DispatchStats()
            self._log.clear()
            logger.info("Engine reset")

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def add_request(self, origin_id: int, count: int = 1) -> str:
        """Create a request from ``origin_id``.

        ``count == 1`` creates a SINGLE request, larger counts one BATCH
        request that is expanded into ``count`` singles at the gateway.

        Returns:
            The new request's id.

        Raises:
            InvalidConfigError: If ``count < 1``, the origin is not one of
                the configured clients, or the engine is not initialized.
        """
        if count < 1:
            raise InvalidConfigError(f"count must be >= 1, got {count}")
        with self._lock:
            if self._config is None:
                raise InvalidConfigError("Engine is not initialized")
            if not 0 <= origin_id < self._config.num_clients:
                raise InvalidConfigError(
                    f"origin_id must be in [0, {self._config.num_clients}), got {origin_id}"
                )
            if count == 1:
                request = Request(id=self._ids.next_id(), origin_id=origin_id)
            else:
                request = Request(
                    id=self._ids.next_id(),
                    origin_id=origin_id,
                    kind=RequestKind.BATCH,
                    batch_size=count,
                )
            self._requests[request.id] = request
            logger.debug("Created %s from client %d", request.payload, origin_id)
            return request.id

    def advance_request(self, request_id: str) -> bool:
        """Report that ``request_id`` finished its current leg of travel.

        Returns:
            True if a transition was applied. False if the request is not
            live or is not travelling (parked for a decision, or at a
            server waiting to be resolved).
        """
        with self._lock:
            request = self._requests.get(request_id)
            if request is None:
                logger.debug("advance_request on unknown request %s ignored", request_id)
                return False
            if not is_travelling(request.state):
                logger.debug(
                    "advance_request on %s in %s ignored", request_id, request.state.name
                )
                return False

            if request.state is RequestState.ORIGIN_TO_GATEWAY:
                if request.is_batch:
                    self._expand_batch(request)
                else:
                    self._park(request)
                    if self._auto_mode:
                        self._commit(request, self._select_for(request))
                return True

            if request.finish_travel() is RequestState.DONE:
                del self._requests[request_id]
                self._count(completed=1)
            return True

    def resolve_at_server(self, request_id: str) -> bool:
        """Finish service for a request sitting at its server.

        Returns:
            True if the request was at a server and is now heading back.
        """
        with self._lock:
            request = self._requests.get(request_id)
            if request is None or request.state is not RequestState.AT_SERVER:
                logger.debug("resolve_at_server on %s ignored", request_id)
                return False
            server_id = request.assigned_server_id
            self._pool.decrement_load(server_id)
            request.move_to(RequestState.SERVER_TO_GATEWAY)
            self._count(resolved=1)
            self._log.record(
                f"[RESP] Server {server_id + 1} resolved {request.payload}. Returning...",
                RecordKind.RESOLVED,
                request_id=request_id,
                server_id=server_id,
            )
            return True

    def toggle_server_health(self, server_id: int) -> bool:
        """Mark a server down or back up.

        Requests already assigned to the server are left where they are.
        """
        with self._lock:
            if self._pool is None or not self._pool.toggle_health(server_id):
                logger.debug("toggle_server_health on %s ignored", server_id)
                return False
            healthy = self._pool.get(server_id).is_healthy
            self._log.record(
                f"Server {server_id + 1} marked as {'UP' if healthy else 'DOWN'}",
                RecordKind.HEALTH,
                server_id=server_id,
            )
            return True

    def toggle_mode(self) -> bool:
        """Switch between auto and manual dispatch.

        Switching to auto routes every parked request in arrival order, each
        decision committed before the next one is made.

        Returns:
            The new value of ``auto_mode``.
        """
        with self._lock:
            if not self._auto_mode:
                self._auto_mode = True
                self._pending = None
                waiting = self._waiting()
                logger.info("Auto mode on, flushing %d parked request(s)", len(waiting))
                for request in waiting:
                    self._commit(request, self._select_for(request))
            else:
                self._auto_mode = False
                logger.info("Manual mode on")
            return self._auto_mode

    def step(self) -> StepResult:
        """Advance the manual decision protocol by one phase.

        The first call previews the decision for the oldest parked request
        without changing any state. The next call commits it, re-running the
        policy if the pool changed in between. A RANDOM draw is kept as long
        as the healthy set is unchanged.
        """
        with self._lock:
            if self._pool is None:
                return StepResult(StepOutcome.IDLE, "Engine is not initialized.")
            if self._auto_mode:
                return StepResult(
                    StepOutcome.IDLE, "Auto mode routes requests without stepping."
                )
            if self._pending is not None:
                return self._commit_pending()

            waiting = self._waiting()
            if not waiting:
                return StepResult(StepOutcome.IDLE, NOTHING_WAITING_MESSAGE)

            request = waiting[0]
            result = self._select_for(request)
            self._pending = PendingDecision(request.id, result)
            logger.debug("Previewing decision for %s: %s", request.id, result.log_line)
            return StepResult(
                StepOutcome.PREVIEW,
                result.rationale.describe(),
                request_id=request.id,
                rationale=result.rationale,
                target_id=result.target_id,
            )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _count(self, **deltas: int) -> None:
        self._stats = replace(
            self._stats,
            **{k: getattr(self._stats, k) + v for k, v in deltas.items()},
        )

    def _park(self, request: Request) -> None:
        if request.state is not RequestState.AWAITING_DECISION:
            request.move_to(RequestState.AWAITING_DECISION)
        request.arrival_seq = self._arrivals
        self._arrivals += 1

    def _waiting(self) -> list[Request]:
        parked = [
            r for r in self._requests.values()
            if r.state is RequestState.AWAITING_DECISION
        ]
        return sorted(parked, key=lambda r: r.arrival_seq)

    def _select_for(self, request: Request) -> SelectionResult:
        return select(
            self._pool.servers,
            self._config.policy,
            self._cursor,
            affinity_key=request.origin_id,
            rng=self._rng,
        )

    def _commit(
        self,
        request: Request,
        result: SelectionResult,
        drop_message: str | None = None,
    ) -> None:
        self._cursor = result.cursor
        if result.target_id is None:
            request.drop()
            self._count(dropped=1)
            self._log.record(
                drop_message or result.log_line,
                RecordKind.DROPPED,
                request_id=request.id,
            )
            return

        self._pool.increment_load(result.target_id)
        request.assign(result.target_id)
        self._count(assigned=1)
        self._log.record(
            result.log_line,
            RecordKind.ASSIGNED,
            request_id=request.id,
            server_id=result.target_id,
        )

    def _commit_pending(self) -> StepResult:
        pending = self._pending
        self._pending = None
        request = self._requests.get(pending.request_id)
        if request is None or request.state is not RequestState.AWAITING_DECISION:
            return StepResult(
                StepOutcome.IDLE,
                "Pending request is no longer waiting.",
                request_id=pending.request_id,
            )

        # Deterministic policies are re-run against current state. A RANDOM
        # preview keeps its draw while the healthy set is the one it saw.
        result = pending.result
        healthy_ids = tuple(s.id for s in self._pool.healthy_servers())
        if not (
            result.rationale.policy is PolicyKind.RANDOM
            and result.rationale.healthy_ids == healthy_ids
        ):
            result = self._select_for(request)
        if result.target_id != pending.result.target_id:
            logger.debug(
                "State changed since preview of %s, target %s -> %s",
                request.id,
                pending.result.target_id,
                result.target_id,
            )

        self._commit(request, result)
        return StepResult(
            StepOutcome.COMMITTED,
            result.log_line,
            request_id=request.id,
            rationale=result.rationale,
            target_id=result.target_id,
        )

    def _expand_batch(self, batch: Request) -> None:
        del self._requests[batch.id]
        self._count(batches_expanded=1)
        singles = []
        for _ in range(batch.batch_size):
            single = Request(
                id=self._ids.next_id(),
                origin_id=batch.origin_id,
                state=RequestState.AWAITING_DECISION,
            )
            self._requests[single.id] = single
            self._park(single)
            singles.append(single)

        if not self._auto_mode:
            self._log.record(
                f"Expanded Batch into {batch.batch_size} requests. "
                "Waiting for manual processing...",
                RecordKind.BATCH,
                request_id=batch.id,
            )
            return

        for single in singles:
            self._commit(single, self._select_for(single), drop_message=BATCH_DROP_MESSAGE)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        return self._pool is not None

    @property
    def config(self) -> BalancerConfig | None:
        return self._config

    @property
    def policy(self) -> PolicyKind | None:
        return self._config.policy if self._config is not None else None

    @property
    def auto_mode(self) -> bool:
        return self._auto_mode

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def servers(self) -> tuple[ServerSnapshot, ...]:
        with self._lock:
            return self._pool.snapshot() if self._pool is not None else ()

    @property
    def requests(self) -> tuple[RequestSnapshot, ...]:
        with self._lock:
            return tuple(r.snapshot() for r in self._requests.values())

    def get_request(self, request_id: str) -> RequestSnapshot | None:
        with self._lock:
            request = self._requests.get(request_id)
            return request.snapshot() if request is not None else None

    def request_history(self, request_id: str) -> tuple[RequestState, ...]:
        """States a live request has visited, oldest first."""
        with self._lock:
            request = self._requests.get(request_id)
            return tuple(request.history) if request is not None else ()

    @property
    def pending_rationale(self) -> Rationale | None:
        with self._lock:
            return self._pending.result.rationale if self._pending is not None else None

    @property
    def pending_request_id(self) -> str | None:
        with self._lock:
            return self._pending.request_id if self._pending is not None else None

    @property
    def logs(self) -> list[str]:
        with self._lock:
            return self._log.messages()

    @property
    def log_records(self) -> tuple[DecisionRecord, ...]:
        with self._lock:
            return self._log.records()

    @property
    def waiting_count(self) -> int:
        with self._lock:
            return len(self._waiting())

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._requests)

    @property
    def stats(self) -> DispatchStats:
        return self._stats

    def get_state(self) -> EngineState:
        """Return a consistent snapshot of the whole engine."""
        with self._lock:
            return EngineState(
                initialized=self.is_initialized,
                policy=self.policy,
                auto_mode=self._auto_mode,
                cursor=self._cursor,
                servers=self.servers,
                requests=self.requests,
                pending_rationale=self.pending_rationale,
                logs=self._log.records(),
                stats=self._stats,
            )
