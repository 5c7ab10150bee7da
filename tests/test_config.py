"""
Tests for environment-driven configuration
"""
import pytest

from anon_inclusion.config import ProtocolConfig, default_max_prefix_slots, get_env_int, parse_seed
from anon_inclusion.errors import ConfigError

CONFIG_VARS = ["NUM_PARTIES", "TRANSACTION_SPACE_BITS", "BRANCH_FACTOR_LOG2", "MIN_VOTES_THRESHOLD",
               "MEMPOOL_SIZE", "VOTES_PER_PARTY", "MAX_PREFIX_SLOTS", "MEMPOOL_SEED", "VOTES_SEED",
               "VOTE_DISTRIBUTION", "MAX_VOTE_WEIGHT", "ROUND_TIMEOUT_SECONDS", "ROUND_RETRY_LIMIT",
               "BASE_PORT", "PARTY_HOSTS", "MPC_PROGRAM"]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for var in CONFIG_VARS:
        monkeypatch.delenv(var, raising=False)


class TestFromEnv:

    def test_defaults(self):
        config = ProtocolConfig.from_env()
        assert config.num_parties == 4
        assert config.transaction_space_bits == 40
        assert config.branch_factor_log2 == 2
        assert config.min_votes_threshold == 2
        assert config.max_prefix_slots == 15 * 4
        assert config.mempool_seed == 42
        assert config.votes_seed == 123
        assert config.round_retry_limit == 1

    def test_reads_docker_env(self, monkeypatch):
        monkeypatch.setenv("NUM_PARTIES", "16")
        monkeypatch.setenv("MEMPOOL_SIZE", "100")
        monkeypatch.setenv("MAX_PREFIX_SLOTS", "100")
        monkeypatch.setenv("MEMPOOL_SEED", "random")
        monkeypatch.setenv("PARTY_HOSTS", " " + ",".join(f"10.0.0.{i}" for i in range(16)))
        config = ProtocolConfig.from_env()
        assert config.num_parties == 16
        assert config.max_prefix_slots == 100
        assert config.mempool_seed is None
        assert config.party_hosts[0] == "10.0.0.0"
        assert len(config.party_hosts) == 16

    def test_unparsable_value_falls_back_to_default(self, monkeypatch, caplog):
        monkeypatch.setenv("BRANCH_FACTOR_LOG2", "two")
        monkeypatch.setenv("VOTES_PER_PARTY", "-3")
        config = ProtocolConfig.from_env()
        assert config.branch_factor_log2 == 2
        assert config.votes_per_party == 10
        assert "BRANCH_FACTOR_LOG2" in caplog.text

    def test_single_party_is_rejected(self, monkeypatch):
        monkeypatch.setenv("NUM_PARTIES", "1")
        with pytest.raises(ConfigError):
            ProtocolConfig.from_env()


class TestValidate:

    def test_config_is_immutable(self):
        config = ProtocolConfig()
        with pytest.raises(AttributeError):
            config.num_parties = 7

    @pytest.mark.parametrize("overrides", [
        {"branch_factor_log2": 0},
        {"min_votes_threshold": -1},
        {"max_prefix_slots": 0},
        {"vote_distribution": "zipf"},
        {"round_timeout": 0},
        {"num_parties": 3, "party_hosts": ("a", "b")},
    ])
    def test_rejects_out_of_range_values(self, overrides):
        with pytest.raises(ConfigError):
            ProtocolConfig(**overrides).validate()

    def test_max_level(self):
        assert ProtocolConfig(transaction_space_bits=8, branch_factor_log2=2).max_level == 4
        assert ProtocolConfig(transaction_space_bits=5, branch_factor_log2=2).max_level == 3
        assert ProtocolConfig(transaction_space_bits=0, branch_factor_log2=2).max_level == 0


def test_default_max_prefix_slots():
    assert default_max_prefix_slots(0, 3) == 1
    assert default_max_prefix_slots(10, 2) == 40


def test_parse_seed():
    assert parse_seed("7") == 7
    assert parse_seed("Random") is None
    assert parse_seed("") is None
    with pytest.raises(ValueError):
        parse_seed("abc")


@pytest.mark.parametrize("var", ["VOTES_PER_PARTY", "TRANSACTION_SPACE_BITS", "MIN_VOTES_THRESHOLD",
                                 "ROUND_RETRY_LIMIT", "MEMPOOL_SIZE"])
def test_negative_counts_fall_back_to_default(monkeypatch, var):
    monkeypatch.setenv(var, "-1")
    assert ProtocolConfig.from_env() == ProtocolConfig()
    monkeypatch.setenv(var, "0")
    assert ProtocolConfig.from_env() != ProtocolConfig()


def test_get_env_int_zero_handling(monkeypatch):
    monkeypatch.setenv("SOME_COUNT", "0")
    assert get_env_int("SOME_COUNT", 5) == 5
    assert get_env_int("SOME_COUNT", 5, can_be_zero=True) == 0
    assert get_env_int("SOME_COUNT", 5, positive=True) == 5
    monkeypatch.setenv("SOME_COUNT", "-2")
    assert get_env_int("SOME_COUNT", 5, can_be_zero=True) == 5
