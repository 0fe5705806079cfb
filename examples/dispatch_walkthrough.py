"""Walkthrough of the dispatch engine, driven from a script.

Plays the part of the UI: clients send requests, a server goes down part way
through, and an operator steps a few decisions by hand before switching back
to auto mode. Every leg of travel finishes immediately; a real collaborator
would call ``advance_request`` from its animation timers instead.

## Flow

```
  Client 1 ──┐                 ┌──> Server 1
  Client 2 ──┼──> Gateway ─────┼──> Server 2   (marked DOWN at the midpoint)
  Client 3 ──┘   (policy)      └──> Server 3
```

Output: a load chart and CSV snapshots in ``--output``.
"""

from __future__ import annotations

import random
from pathlib import Path

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt

from lbsimulator import (
    BalancerConfig,
    DispatchController,
    PolicyKind,
    RequestState,
    StepOutcome,
    enable_console_logging,
)
from lbsimulator.reporting import log_frame, plot_server_loads, requests_frame, servers_frame


def finish_travel(engine: DispatchController, rng: random.Random, resolve_ratio: float) -> None:
    """Move every travelling request one leg; resolve some at their servers."""
    for request in engine.requests:
        if request.state is RequestState.AT_SERVER:
            if rng.random() < resolve_ratio:
                engine.resolve_at_server(request.id)
        elif request.state is not RequestState.AWAITING_DECISION:
            engine.advance_request(request.id)


def run(
    policy: PolicyKind,
    clients: int,
    servers: int,
    rounds: int,
    seed: int,
    output: Path,
) -> DispatchController:
    rng = random.Random(seed)
    engine = DispatchController(
        BalancerConfig(num_clients=clients, num_servers=servers, policy=policy, seed=seed)
    )

    for i in range(rounds):
        origin = rng.randrange(clients)
        engine.add_request(origin, count=3 if i % 5 == 4 else 1)
        finish_travel(engine, rng, resolve_ratio=0.4)

        if i == rounds // 2 and servers > 1:
            engine.toggle_server_health(1)

    # Manual stepping for a handful of requests.
    engine.toggle_mode()
    for origin in range(clients):
        rid = engine.add_request(origin)
        engine.advance_request(rid)
    while True:
        result = engine.step()
        if result.outcome is StepOutcome.IDLE:
            print(result.message)
            break
        if result.outcome is StepOutcome.PREVIEW:
            print(f"--- Request {result.request_id} ---")
            print(result.message)
    engine.toggle_mode()

    output.mkdir(parents=True, exist_ok=True)
    state = engine.get_state()
    servers_frame(state).to_csv(output / "servers.csv", index=False)
    requests_frame(state).to_csv(output / "requests.csv", index=False)
    log_frame(state.logs).to_csv(output / "log.csv", index=False)

    fig, ax = plt.subplots(figsize=(8, 4))
    plot_server_loads(state, ax=ax)
    fig.tight_layout()
    fig.savefig(output / "server_loads.png", dpi=120)
    plt.close(fig)

    print("\nDecision log (newest first):")
    for line in engine.logs:
        print(f"  {line}")
    print(f"\n{engine.stats}")
    return engine


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Load balancer dispatch walkthrough")
    parser.add_argument("--policy", type=str, default="ROUND_ROBIN", help="Selection policy")
    parser.add_argument("--clients", type=int, default=3, help="Number of clients")
    parser.add_argument("--servers", type=int, default=3, help="Number of servers")
    parser.add_argument("--rounds", type=int, default=20, help="Requests sent in auto mode")
    parser.add_argument("--seed", type=int, default=42, help="Random seed")
    parser.add_argument("--output", type=str, default="output/dispatch_walkthrough", help="Output dir")
    parser.add_argument("--verbose", action="store_true", help="Log engine decisions")
    args = parser.parse_args()

    if args.verbose:
        enable_console_logging(level="DEBUG")

    run(
        PolicyKind.parse(args.policy),
        args.clients,
        args.servers,
        args.rounds,
        args.seed,
        Path(args.output),
    )
