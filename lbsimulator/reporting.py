"""Tabular and plotted views of engine snapshots.

These helpers only read ``EngineState`` / ``DecisionRecord`` values; they
never touch a live controller.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pandas as pd

if TYPE_CHECKING:
    from collections.abc import Iterable

    from matplotlib.axes import Axes

    from lbsimulator.controller import EngineState
    from lbsimulator.decision_log import DecisionRecord

SERVER_COLUMNS = ["server_id", "active_load", "total_completed", "is_healthy"]
REQUEST_COLUMNS = [
    "request_id",
    "origin_id",
    "assigned_server_id",
    "state",
    "kind",
    "batch_size",
    "payload",
    "dropped",
]
LOG_COLUMNS = ["seq", "kind", "message", "request_id", "server_id"]


def servers_frame(state: EngineState) -> pd.DataFrame:
    """One row per server, indexed by position in the pool."""
    rows = [
        (s.id, s.active_load, s.total_completed, s.is_healthy)
        for s in state.servers
    ]
    return pd.DataFrame(rows, columns=SERVER_COLUMNS)


def requests_frame(state: EngineState) -> pd.DataFrame:
    """One row per live request. Enum columns hold their names."""
    rows = [
        (
            r.id,
            r.origin_id,
            r.assigned_server_id,
            r.state.name,
            r.kind.name,
            r.batch_size,
            r.payload,
            r.dropped,
        )
        for r in state.requests
    ]
    return pd.DataFrame(rows, columns=REQUEST_COLUMNS)


def log_frame(records: Iterable[DecisionRecord]) -> pd.DataFrame:
    """Decision log records in the order given (newest first from the engine)."""
    rows = [
        (r.seq, r.kind.value, r.message, r.request_id, r.server_id)
        for r in records
    ]
    return pd.DataFrame(rows, columns=LOG_COLUMNS)


def plot_server_loads(state: EngineState, ax: Axes | None = None) -> Axes:
    """Bar chart of active load and completed totals per server.

    Unhealthy servers are hatched. A new figure is created when ``ax`` is
    not given.
    """
    if ax is None:
        import matplotlib.pyplot as plt

        _, ax = plt.subplots(figsize=(8, 4))

    df = servers_frame(state)
    labels = [f"Server {i + 1}" for i in df["server_id"]]
    positions = range(len(df))
    width = 0.4

    active = ax.bar(
        [p - width / 2 for p in positions], df["active_load"], width, label="Active"
    )
    ax.bar(
        [p + width / 2 for p in positions],
        df["total_completed"],
        width,
        label="Completed",
        alpha=0.7,
    )
    for bar, healthy in zip(active, df["is_healthy"]):
        if not healthy:
            bar.set_hatch("//")

    ax.set_xticks(list(positions))
    ax.set_xticklabels(labels)
    ax.set_ylabel("Requests")
    policy = state.policy.label if state.policy is not None else "uninitialized"
    ax.set_title(f"Server load ({policy}, cursor={state.cursor})")
    ax.legend()
    ax.grid(True, axis="y", alpha=0.3)
    return ax
