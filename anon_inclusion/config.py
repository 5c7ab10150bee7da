# config.py
# Run-wide configuration. Values come from environment variables (set by the
# Docker ARG -> ENV chain or the shell) and are frozen into a ProtocolConfig
# that is passed explicitly to every component.
import os
import logging
from dataclasses import dataclass, field
from typing import Optional, Tuple

from anon_inclusion.errors import ConfigError

logger = logging.getLogger(__name__)

RANDOM_SEED_KEYWORDS = ("random", "none", "")
VOTE_DISTRIBUTIONS = ("uniform", "weighted")


def get_env_int(var_name, default, positive=False, can_be_zero=False):
    """Reads an integer ENV VAR, falling back to ``default`` with a warning."""
    val_str = os.environ.get(var_name, str(default))
    try:
        val = int(val_str)
    except ValueError:
        logger.warning("ENV VAR %s ('%s') is not an int. Using default %s.", var_name, val_str, default)
        return default
    if positive and val <= 0:
        logger.warning("ENV VAR %s ('%s') should be positive. Using default %s.", var_name, val_str, default)
        return default
    if val < 0:
        logger.warning("ENV VAR %s ('%s') is negative. Using default %s.", var_name, val_str, default)
        return default
    if val == 0 and not can_be_zero:
        logger.warning("ENV VAR %s ('%s') cannot be zero. Using default %s.", var_name, val_str, default)
        return default
    return val


def get_env_float(var_name, default):
    val_str = os.environ.get(var_name, str(default))
    try:
        val = float(val_str)
    except ValueError:
        logger.warning("ENV VAR %s ('%s') is not a number. Using default %s.", var_name, val_str, default)
        return default
    if val <= 0:
        logger.warning("ENV VAR %s ('%s') should be positive. Using default %s.", var_name, val_str, default)
        return default
    return val


def parse_seed(val_str):
    """Seeds are ints; 'random' (or empty) means seed from OS entropy."""
    val_str = val_str.strip()
    if val_str.lower() in RANDOM_SEED_KEYWORDS:
        return None
    return int(val_str)


def get_env_seed(var_name, default):
    val_str = os.environ.get(var_name, str(default))
    try:
        return parse_seed(val_str)
    except ValueError:
        logger.warning("ENV VAR %s ('%s') is not an int or 'random'. Using default %s.", var_name, val_str, default)
        return default


def default_max_prefix_slots(mempool_size, branch_factor_log2):
    """Mirrors the MAX_PREFIX_SLOTS calculation of the compiled .mpc program."""
    if mempool_size == 0:
        return 1
    return max(1, mempool_size * (2 ** branch_factor_log2))


@dataclass(frozen=True)
class ProtocolConfig:
    num_parties: int = 4
    transaction_space_bits: int = 40
    branch_factor_log2: int = 2
    min_votes_threshold: int = 2
    mempool_size: int = 15
    votes_per_party: int = 10
    max_prefix_slots: Optional[int] = None
    mempool_seed: Optional[int] = 42
    votes_seed: Optional[int] = 123
    vote_distribution: str = "uniform"
    max_vote_weight: int = 1
    round_timeout: float = 600.0
    round_retry_limit: int = 1
    base_port: int = 14000
    party_hosts: Tuple[str, ...] = field(default_factory=tuple)
    mpc_program: str = "anonymous_inclusion_iterative"

    def __post_init__(self):
        if self.max_prefix_slots is None:
            object.__setattr__(self, "max_prefix_slots",
                               default_max_prefix_slots(self.mempool_size, self.branch_factor_log2))
        object.__setattr__(self, "party_hosts", tuple(self.party_hosts))

    @classmethod
    def from_env(cls):
        mempool_size = get_env_int("MEMPOOL_SIZE", 15, can_be_zero=True)
        branch_factor_log2 = get_env_int("BRANCH_FACTOR_LOG2", 2, positive=True)
        hosts = os.environ.get("PARTY_HOSTS", "")
        config = cls(
            num_parties=get_env_int("NUM_PARTIES", 4, positive=True),
            transaction_space_bits=get_env_int("TRANSACTION_SPACE_BITS", 40, can_be_zero=True),
            branch_factor_log2=branch_factor_log2,
            min_votes_threshold=get_env_int("MIN_VOTES_THRESHOLD", 2, can_be_zero=True),
            mempool_size=mempool_size,
            votes_per_party=get_env_int("VOTES_PER_PARTY", 10, can_be_zero=True),
            max_prefix_slots=get_env_int("MAX_PREFIX_SLOTS",
                                         default_max_prefix_slots(mempool_size, branch_factor_log2),
                                         positive=True),
            mempool_seed=get_env_seed("MEMPOOL_SEED", 42),
            votes_seed=get_env_seed("VOTES_SEED", 123),
            vote_distribution=os.environ.get("VOTE_DISTRIBUTION", "uniform").strip().lower(),
            max_vote_weight=get_env_int("MAX_VOTE_WEIGHT", 1, positive=True),
            round_timeout=get_env_float("ROUND_TIMEOUT_SECONDS", 600.0),
            round_retry_limit=get_env_int("ROUND_RETRY_LIMIT", 1, can_be_zero=True),
            base_port=get_env_int("BASE_PORT", 14000, positive=True),
            party_hosts=tuple(h.strip() for h in hosts.split(",") if h.strip()),
            mpc_program=os.environ.get("MPC_PROGRAM", "anonymous_inclusion_iterative"),
        )
        config.validate()
        return config

    def validate(self):
        if self.num_parties < 2:
            raise ConfigError(f"NUM_PARTIES must be at least 2, got {self.num_parties}")
        if self.transaction_space_bits < 0:
            raise ConfigError("TRANSACTION_SPACE_BITS cannot be negative")
        if self.branch_factor_log2 < 1:
            raise ConfigError("BRANCH_FACTOR_LOG2 must be at least 1")
        if self.min_votes_threshold < 0:
            raise ConfigError("MIN_VOTES_THRESHOLD cannot be negative")
        if self.mempool_size < 0 or self.votes_per_party < 0:
            raise ConfigError("MEMPOOL_SIZE and VOTES_PER_PARTY cannot be negative")
        if self.max_prefix_slots < 1:
            raise ConfigError("MAX_PREFIX_SLOTS must be positive")
        if self.vote_distribution not in VOTE_DISTRIBUTIONS:
            raise ConfigError(f"VOTE_DISTRIBUTION must be one of {VOTE_DISTRIBUTIONS}, "
                              f"got '{self.vote_distribution}'")
        if self.max_vote_weight < 1:
            raise ConfigError("MAX_VOTE_WEIGHT must be at least 1")
        if self.round_timeout <= 0:
            raise ConfigError("ROUND_TIMEOUT_SECONDS must be positive")
        if self.round_retry_limit < 0:
            raise ConfigError("ROUND_RETRY_LIMIT cannot be negative")
        if self.party_hosts and len(self.party_hosts) != self.num_parties:
            raise ConfigError(f"PARTY_HOSTS lists {len(self.party_hosts)} hosts "
                              f"for {self.num_parties} parties")
        return self

    @property
    def max_level(self):
        """Index of the round that reaches full transaction length."""
        return -(-self.transaction_space_bits // self.branch_factor_log2)

    def log_summary(self):
        logger.info("--- Orchestrator Configuration ---")
        logger.info("NUM_PARTIES: %s", self.num_parties)
        logger.info("TRANSACTION_SPACE_BITS: %s", self.transaction_space_bits)
        logger.info("BRANCH_FACTOR_LOG2: %s", self.branch_factor_log2)
        logger.info("MIN_VOTES_THRESHOLD: %s", self.min_votes_threshold)
        logger.info("VOTES_PER_PARTY: %s", self.votes_per_party)
        logger.info("MEMPOOL_SIZE: %s", self.mempool_size)
        logger.info("MAX_PREFIX_SLOTS: %s", self.max_prefix_slots)
        logger.info("------------------------------------")
