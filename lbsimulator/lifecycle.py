"""Request lifecycle state machine.

A request travels origin -> gateway -> server -> gateway -> origin:

    ORIGIN_TO_GATEWAY -> AWAITING_DECISION -> GATEWAY_TO_SERVER -> AT_SERVER
        -> SERVER_TO_GATEWAY -> GATEWAY_TO_ORIGIN -> DONE

Two transitions are decisions made by the dispatcher: leaving
AWAITING_DECISION (to the server, or straight back to the origin when the
pool is exhausted) and leaving AT_SERVER (an explicit resolve). All others
happen when the collaborator reports that travel has finished.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from lbsimulator.errors import IllegalTransitionError

DROPPED_PAYLOAD = "DROPPED"


class RequestState(Enum):
    """Where a request is in its journey."""

    ORIGIN_TO_GATEWAY = "ORIGIN_TO_GATEWAY"
    AWAITING_DECISION = "AWAITING_DECISION"
    GATEWAY_TO_SERVER = "GATEWAY_TO_SERVER"
    AT_SERVER = "AT_SERVER"
    SERVER_TO_GATEWAY = "SERVER_TO_GATEWAY"
    GATEWAY_TO_ORIGIN = "GATEWAY_TO_ORIGIN"
    DONE = "DONE"


class RequestKind(Enum):
    SINGLE = "SINGLE"
    BATCH = "BATCH"


# Transitions taken when travel finishes. ORIGIN_TO_GATEWAY is special-cased
# by the dispatcher for batches, which are expanded instead of parked.
TRAVEL_TRANSITIONS: dict[RequestState, RequestState] = {
    RequestState.ORIGIN_TO_GATEWAY: RequestState.AWAITING_DECISION,
    RequestState.GATEWAY_TO_SERVER: RequestState.AT_SERVER,
    RequestState.SERVER_TO_GATEWAY: RequestState.GATEWAY_TO_ORIGIN,
    RequestState.GATEWAY_TO_ORIGIN: RequestState.DONE,
}

ALLOWED_TRANSITIONS: dict[RequestState, frozenset[RequestState]] = {
    RequestState.ORIGIN_TO_GATEWAY: frozenset({RequestState.AWAITING_DECISION}),
    RequestState.AWAITING_DECISION: frozenset(
        {RequestState.GATEWAY_TO_SERVER, RequestState.GATEWAY_TO_ORIGIN}
    ),
    RequestState.GATEWAY_TO_SERVER: frozenset({RequestState.AT_SERVER}),
    RequestState.AT_SERVER: frozenset({RequestState.SERVER_TO_GATEWAY}),
    RequestState.SERVER_TO_GATEWAY: frozenset({RequestState.GATEWAY_TO_ORIGIN}),
    RequestState.GATEWAY_TO_ORIGIN: frozenset({RequestState.DONE}),
    RequestState.DONE: frozenset(),
}


def is_travelling(state: RequestState) -> bool:
    """True if finishing travel moves a request out of ``state``."""
    return state in TRAVEL_TRANSITIONS


@dataclass(frozen=True)
class RequestSnapshot:
    """Immutable view of a request handed to collaborators."""

    id: str
    origin_id: int
    assigned_server_id: int | None
    state: RequestState
    kind: RequestKind
    batch_size: int | None
    payload: str
    dropped: bool


@dataclass
class Request:
    """One client request and its position in the lifecycle.

    Attributes:
        id: Unique token assigned at creation.
        origin_id: Client that issued the request.
        kind: SINGLE, or BATCH to be expanded at the gateway.
        batch_size: Number of sub-requests, only for BATCH.
        state: Current lifecycle state.
        assigned_server_id: Server chosen by the last decision, if any.
        dropped: True once the request bounced off an exhausted pool.
        arrival_seq: Order of arrival at AWAITING_DECISION, for FIFO stepping.
        history: States visited so far, starting with the initial one.
    """

    id: str
    origin_id: int
    kind: RequestKind = RequestKind.SINGLE
    batch_size: int | None = None
    state: RequestState = RequestState.ORIGIN_TO_GATEWAY
    assigned_server_id: int | None = None
    dropped: bool = False
    arrival_seq: int | None = None
    history: list[RequestState] = field(default_factory=list)

    def __post_init__(self):
        if not self.history:
            self.history.append(self.state)

    @property
    def payload(self) -> str:
        if self.dropped:
            return DROPPED_PAYLOAD
        if self.kind is RequestKind.BATCH:
            return f"BATCH ({self.batch_size})"
        return f"REQ-{self.id}"

    @property
    def is_batch(self) -> bool:
        return self.kind is RequestKind.BATCH

    @property
    def is_done(self) -> bool:
        return self.state is RequestState.DONE

    def move_to(self, target: RequestState) -> None:
        """Apply one transition.

        Raises:
            IllegalTransitionError: If ``target`` is not reachable from the
                current state.
        """
        if target not in ALLOWED_TRANSITIONS[self.state]:
            raise IllegalTransitionError(self.id, self.state, target)
        self.state = target
        self.history.append(target)

    def finish_travel(self) -> RequestState:
        """Take the unconditional transition out of a travelling state."""
        self.move_to(TRAVEL_TRANSITIONS.get(self.state, self.state))
        return self.state

    def assign(self, server_id: int) -> None:
        self.move_to(RequestState.GATEWAY_TO_SERVER)
        self.assigned_server_id = server_id

    def drop(self) -> None:
        self.move_to(RequestState.GATEWAY_TO_ORIGIN)
        self.assigned_server_id = None
        self.dropped = True

    def snapshot(self) -> RequestSnapshot:
        return RequestSnapshot(
            id=self.id,
            origin_id=self.origin_id,
            assigned_server_id=self.assigned_server_id,
            state=self.state,
            kind=self.kind,
            batch_size=self.batch_size,
            payload=self.payload,
            dropped=self.dropped,
        )
