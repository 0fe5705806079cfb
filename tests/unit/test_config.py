"""Tests for BalancerConfig."""

from __future__ import annotations

import pytest

from lbsimulator.config import MAX_CLIENTS, MAX_SERVERS, BalancerConfig
from lbsimulator.errors import InvalidConfigError
from lbsimulator.policies import PolicyKind


class TestBalancerConfig:
    """Tests for validation and defaults."""

    def test_defaults(self):
        config = BalancerConfig()

        assert config.num_clients == 2
        assert config.num_servers == 3
        assert config.policy is PolicyKind.ROUND_ROBIN
        assert config.log_capacity == 10
        assert config.seed is None

    def test_policy_name_is_parsed(self):
        assert BalancerConfig(policy="least_connections").policy is PolicyKind.LEAST_CONNECTIONS

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"num_clients": 0},
            {"num_clients": MAX_CLIENTS + 1},
            {"num_servers": 0},
            {"num_servers": MAX_SERVERS + 1},
            {"log_capacity": 0},
            {"policy": "FASTEST"},
        ],
    )
    def test_rejects_out_of_bounds(self, kwargs):
        with pytest.raises(InvalidConfigError):
            BalancerConfig(**kwargs)

    def test_bounds_can_be_raised(self):
        config = BalancerConfig(num_servers=20, max_servers=32)
        assert config.num_servers == 20


class TestFromEnv:
    """Tests for BalancerConfig.from_env."""

    def test_reads_variables(self):
        config = BalancerConfig.from_env(
            {
                "LBS_CLIENTS": "4",
                "LBS_SERVERS": "5",
                "LBS_POLICY": "ip_hash",
                "LBS_LOG_CAPACITY": "20",
                "LBS_SEED": "7",
            }
        )

        assert config == BalancerConfig(
            num_clients=4,
            num_servers=5,
            policy=PolicyKind.IP_HASH,
            log_capacity=20,
            seed=7,
        )

    def test_empty_environment_gives_defaults(self):
        assert BalancerConfig.from_env({}) == BalancerConfig()

    def test_rejects_non_integer(self):
        with pytest.raises(InvalidConfigError, match="LBS_SERVERS"):
            BalancerConfig.from_env({"LBS_SERVERS": "three"})

    def test_uses_process_environment(self, monkeypatch):
        monkeypatch.setenv("LBS_SERVERS", "6")
        monkeypatch.delenv("LBS_CLIENTS", raising=False)

        assert BalancerConfig.from_env().num_servers == 6
