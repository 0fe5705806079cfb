"""End-to-end scenarios driving the engine the way a UI collaborator would.

The collaborator owns timing: it decides when each leg of travel finishes
and when a server finishes service. These tests play that role, including
from several threads at once.
"""

from __future__ import annotations

import random
import threading

import pytest

from lbsimulator import (
    BalancerConfig,
    DispatchController,
    PolicyKind,
    RequestState,
    StepOutcome,
)


def drive_to_completion(engine: DispatchController, rng: random.Random) -> None:
    """Advance or resolve random live requests until none are left."""
    while engine.requests:
        request = rng.choice(engine.requests)
        if request.state is RequestState.AT_SERVER:
            engine.resolve_at_server(request.id)
        elif request.state is RequestState.AWAITING_DECISION:
            engine.step()
        else:
            engine.advance_request(request.id)


class TestMixedTraffic:
    """Many clients, batches and health flaps, driven to quiescence."""

    @pytest.mark.parametrize("policy", list(PolicyKind))
    def test_load_accounting_balances(self, policy):
        rng = random.Random(11)
        engine = DispatchController(
            BalancerConfig(num_clients=4, num_servers=5, policy=policy, seed=3)
        )

        for i in range(30):
            engine.add_request(rng.randrange(4), count=rng.choice([1, 1, 1, 3]))
            if i % 7 == 0:
                engine.toggle_server_health(rng.randrange(5))

        drive_to_completion(engine, rng)

        stats = engine.stats
        servers = engine.servers
        assert all(s.active_load == 0 for s in servers)
        assert sum(s.total_completed for s in servers) == stats.assigned == stats.resolved
        assert stats.completed == stats.assigned + stats.dropped

    def test_manual_session(self):
        """Operator steps through a batch, flips to auto, and the rest flows."""
        engine = DispatchController(BalancerConfig(num_servers=2, seed=1))
        engine.toggle_mode()

        batch = engine.add_request(0, count=3)
        engine.advance_request(batch)
        assert engine.waiting_count == 3

        preview = engine.step()
        assert preview.outcome is StepOutcome.PREVIEW
        assert engine.step().outcome is StepOutcome.COMMITTED
        assert engine.waiting_count == 2

        engine.toggle_mode()
        assert engine.waiting_count == 0
        assert [s.active_load for s in engine.servers] == [2, 1]

        drive_to_completion(engine, random.Random(0))
        assert [s.total_completed for s in engine.servers] == [2, 1]

    def test_server_down_drops_then_recovers(self):
        engine = DispatchController(BalancerConfig(num_servers=1))
        engine.toggle_server_health(0)

        dropped = engine.add_request(0)
        engine.advance_request(dropped)
        assert engine.get_request(dropped).dropped

        engine.toggle_server_health(0)
        served = engine.add_request(1)
        engine.advance_request(served)
        assert engine.get_request(served).assigned_server_id == 0
        assert engine.logs[:3] == [
            "[RR] Selected Server 1",
            "Server 1 marked as UP",
            "No active servers available!",
        ]


class TestConcurrentCollaborators:
    """Signals from timer threads are applied one transition at a time."""

    def test_parallel_signals_keep_invariants(self):
        engine = DispatchController(
            BalancerConfig(num_clients=6, num_servers=4, policy=PolicyKind.LEAST_CONNECTIONS)
        )
        ids = [engine.add_request(i % 6) for i in range(200)]
        barrier = threading.Barrier(4)

        def worker(chunk):
            barrier.wait()
            for rid in chunk:
                engine.advance_request(rid)
                engine.advance_request(rid)
                engine.resolve_at_server(rid)
                engine.advance_request(rid)
                engine.advance_request(rid)

        threads = [threading.Thread(target=worker, args=(ids[i::4],)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert engine.requests == ()
        assert all(s.active_load == 0 for s in engine.servers)
        assert sum(s.total_completed for s in engine.servers) == 200
        assert engine.stats.completed == 200

    def test_late_signal_after_reset_is_ignored(self):
        engine = DispatchController(BalancerConfig())
        rid = engine.add_request(0)
        engine.advance_request(rid)
        engine.advance_request(rid)

        timer = threading.Timer(0.01, engine.resolve_at_server, args=(rid,))
        engine.reset()
        timer.start()
        timer.join()

        assert not engine.is_initialized
        assert engine.requests == ()
