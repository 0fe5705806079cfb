"""
Shared pytest fixtures for lbsimulator tests.
"""

import logging
import random
from pathlib import Path

import pytest

from lbsimulator import DispatchController, PolicyKind


@pytest.fixture(scope="session")
def test_output_root() -> Path:
    """
    Returns the root test_output directory. Created once per test session.
    Files here persist after tests complete for easy access.
    """
    output_dir = Path(__file__).parent.parent / "test_output"
    output_dir.mkdir(exist_ok=True)
    return output_dir


@pytest.fixture
def test_output_dir(request, test_output_root) -> Path:
    """
    Returns a directory for the current test to write output files.
    Directory structure: test_output/<module_name>/<test_name>/
    """
    module_name = request.module.__name__.split(".")[-1]
    test_name = request.node.name

    test_dir = test_output_root / module_name / test_name
    test_dir.mkdir(parents=True, exist_ok=True)
    return test_dir


@pytest.fixture
def engine_factory():
    """Build an initialized DispatchController with a seeded RNG."""

    def make(
        num_servers: int = 3,
        policy: PolicyKind | str = PolicyKind.ROUND_ROBIN,
        num_clients: int = 2,
        seed: int = 42,
    ) -> DispatchController:
        engine = DispatchController(rng=random.Random(seed))
        engine.initialize(num_clients=num_clients, num_servers=num_servers, policy=policy)
        return engine

    return make


@pytest.fixture(autouse=True)
def reset_lbsimulator_logging():
    """Reset logging state before and after each test.

    Removes all handlers except NullHandler and resets the package and
    submodule levels to NOTSET, so logging configuration from one test does
    not leak into another.
    """
    logger = logging.getLogger("lbsimulator")

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        if not isinstance(handler, logging.NullHandler):
            handler.close()
    logger.addHandler(logging.NullHandler())
    logger.setLevel(logging.NOTSET)

    yield

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        if not isinstance(handler, logging.NullHandler):
            handler.close()
    logger.addHandler(logging.NullHandler())
    logger.setLevel(logging.NOTSET)
    for name in list(logging.root.manager.loggerDict):
        if name.startswith("lbsimulator."):
            logging.getLogger(name).setLevel(logging.NOTSET)
