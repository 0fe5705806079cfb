"""Tests for DataFrame and plot helpers."""

from __future__ import annotations

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt

from lbsimulator.reporting import (
    LOG_COLUMNS,
    REQUEST_COLUMNS,
    SERVER_COLUMNS,
    log_frame,
    plot_server_loads,
    requests_frame,
    servers_frame,
)


def busy_engine(engine_factory):
    engine = engine_factory(num_servers=3)
    for _ in range(4):
        engine.advance_request(engine.add_request(0))
    engine.toggle_server_health(2)
    return engine


class TestFrames:
    """Tests for snapshot DataFrames."""

    def test_servers_frame(self, engine_factory):
        df = servers_frame(busy_engine(engine_factory).get_state())

        assert list(df.columns) == SERVER_COLUMNS
        assert df["active_load"].tolist() == [2, 1, 1]
        assert df["is_healthy"].tolist() == [True, True, False]

    def test_requests_frame(self, engine_factory):
        df = requests_frame(busy_engine(engine_factory).get_state())

        assert list(df.columns) == REQUEST_COLUMNS
        assert len(df) == 4
        assert set(df["state"]) == {"GATEWAY_TO_SERVER"}
        assert df["assigned_server_id"].tolist() == [0, 1, 2, 0]

    def test_log_frame_newest_first(self, engine_factory):
        engine = busy_engine(engine_factory)
        df = log_frame(engine.log_records)

        assert list(df.columns) == LOG_COLUMNS
        assert df["message"].iloc[0] == "Server 3 marked as DOWN"
        assert df["kind"].iloc[0] == "health"
        assert df["seq"].is_monotonic_decreasing

    def test_empty_state(self):
        from lbsimulator import DispatchController

        state = DispatchController().get_state()
        assert servers_frame(state).empty
        assert requests_frame(state).empty


class TestPlot:
    """Tests for plot_server_loads."""

    def test_draws_bars_per_server(self, engine_factory):
        fig, ax = plt.subplots()
        try:
            returned = plot_server_loads(busy_engine(engine_factory).get_state(), ax=ax)

            assert returned is ax
            assert len(ax.patches) == 6
            assert [t.get_text() for t in ax.get_xticklabels()] == [
                "Server 1",
                "Server 2",
                "Server 3",
            ]
            assert "Round Robin" in ax.get_title()
        finally:
            plt.close(fig)
