"""lbsimulator: the decision engine of an educational load balancer.

A deterministic, in-memory model of how a gateway picks a backend server for
each request, tracks the request through its lifecycle and keeps per-server
load accounts. Rendering and timing are left to the caller, which drives the
engine through ``DispatchController`` and reads immutable snapshots back.
"""

import logging

from lbsimulator.config import BalancerConfig
from lbsimulator.controller import (
    DispatchController,
    DispatchStats,
    EngineState,
    StepOutcome,
    StepResult,
)
from lbsimulator.decision_log import DecisionLog, DecisionRecord, RecordKind
from lbsimulator.errors import IllegalTransitionError, InvalidConfigError
from lbsimulator.lifecycle import (
    Request,
    RequestKind,
    RequestSnapshot,
    RequestState,
)
from lbsimulator.logging_config import (
    configure_from_env,
    disable_logging,
    enable_console_logging,
    enable_file_logging,
    enable_json_logging,
    set_level,
    set_module_level,
)
from lbsimulator.policies import (
    IPHashPolicy,
    LeastConnectionsPolicy,
    PolicyKind,
    RandomPolicy,
    Rationale,
    RoundRobinPolicy,
    SelectionPolicy,
    SelectionResult,
    get_policy,
    select,
)
from lbsimulator.pool import Server, ServerPool, ServerSnapshot

# Silent unless the application configures logging.
logging.getLogger("lbsimulator").addHandler(logging.NullHandler())

__all__ = [
    # Engine
    "BalancerConfig",
    "DispatchController",
    "DispatchStats",
    "EngineState",
    "StepOutcome",
    "StepResult",
    # Decision log
    "DecisionLog",
    "DecisionRecord",
    "RecordKind",
    # Errors
    "IllegalTransitionError",
    "InvalidConfigError",
    # Lifecycle
    "Request",
    "RequestKind",
    "RequestSnapshot",
    "RequestState",
    # Policies
    "IPHashPolicy",
    "LeastConnectionsPolicy",
    "PolicyKind",
    "RandomPolicy",
    "Rationale",
    "RoundRobinPolicy",
    "SelectionPolicy",
    "SelectionResult",
    "get_policy",
    "select",
    # Pool
    "Server",
    "ServerPool",
    "ServerSnapshot",
    # Logging
    "configure_from_env",
    "disable_logging",
    "enable_console_logging",
    "enable_file_logging",
    "enable_json_logging",
    "set_level",
    "set_module_level",
]
