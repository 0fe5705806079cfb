"""Engine configuration.

``BalancerConfig`` carries everything ``DispatchController.initialize``
needs. Values can be given directly or read from the environment:

    LBS_CLIENTS       Number of clients (default 2)
    LBS_SERVERS       Number of servers (default 3)
    LBS_POLICY        ROUND_ROBIN, LEAST_CONNECTIONS, RANDOM or IP_HASH
    LBS_LOG_CAPACITY  Decision log length (default 10)
    LBS_SEED          Seed for the RANDOM policy
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from lbsimulator.decision_log import DEFAULT_CAPACITY
from lbsimulator.errors import InvalidConfigError
from lbsimulator.policies import PolicyKind

MAX_CLIENTS = 6
MAX_SERVERS = 8


@dataclass(frozen=True)
class BalancerConfig:
    """Validated construction parameters for the dispatch engine.

    Attributes:
        num_clients: Number of request origins, ids ``0..num_clients-1``.
        num_servers: Number of backend servers, ids ``0..num_servers-1``.
        policy: Selection policy, a PolicyKind or its name.
        log_capacity: Records kept by the decision log.
        seed: Seed for the RANDOM policy's RNG. None for an unseeded RNG.
        max_clients: Upper bound for ``num_clients``.
        max_servers: Upper bound for ``num_servers``.

    Raises:
        InvalidConfigError: If any value is out of bounds.
    """

    num_clients: int = 2
    num_servers: int = 3
    policy: PolicyKind | str = PolicyKind.ROUND_ROBIN
    log_capacity: int = DEFAULT_CAPACITY
    seed: int | None = None
    max_clients: int = MAX_CLIENTS
    max_servers: int = MAX_SERVERS

    def __post_init__(self) -> None:
        # Frozen, so normalize through object.__setattr__.
        object.__setattr__(self, "policy", PolicyKind.parse(self.policy))

        if not 1 <= self.num_clients <= self.max_clients:
            raise InvalidConfigError(
                f"num_clients must be in [1, {self.max_clients}], got {self.num_clients}"
            )
        if not 1 <= self.num_servers <= self.max_servers:
            raise InvalidConfigError(
                f"num_servers must be in [1, {self.max_servers}], got {self.num_servers}"
            )
        if self.log_capacity < 1:
            raise InvalidConfigError(
                f"log_capacity must be >= 1, got {self.log_capacity}"
            )

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> BalancerConfig:
        """Build a config from ``LBS_*`` variables, defaults for the rest."""
        env = os.environ if environ is None else environ
        kwargs: dict[str, object] = {}

        for var, name in (
            ("LBS_CLIENTS", "num_clients"),
            ("LBS_SERVERS", "num_servers"),
            ("LBS_LOG_CAPACITY", "log_capacity"),
            ("LBS_SEED", "seed"),
        ):
            raw = env.get(var, "").strip()
            if not raw:
                continue
            try:
                kwargs[name] = int(raw)
            except ValueError:
                raise InvalidConfigError(f"{var} must be an integer, got {raw!r}") from None

        policy = env.get("LBS_POLICY", "").strip()
        if policy:
            kwargs["policy"] = policy

        return cls(**kwargs)
