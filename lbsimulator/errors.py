"""Exceptions raised by the dispatch engine.

Only construction-time mistakes surface as exceptions. Runtime conditions
such as an exhausted pool or a signal for a request that is no longer live
are absorbed into state transitions and log entries instead.
"""

from __future__ import annotations


class InvalidConfigError(ValueError):
    """Construction parameters are out of bounds.

    Raised for bad client/server counts, a non-positive batch count, an
    unknown policy name, or an origin id outside the configured clients.
    Nothing is mutated when this is raised.
    """


class IllegalTransitionError(RuntimeError):
    """A request was moved to a state its lifecycle does not allow."""

    def __init__(self, request_id: str, current: object, target: object):
        super().__init__(
            f"Request {request_id} cannot move from {current} to {target}"
        )
        self.request_id = request_id
        self.current = current
        self.target = target
