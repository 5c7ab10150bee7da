"""Iterative anonymous inclusion: prefix-narrowing orchestration of MP-SPDZ vote tallies."""

from anon_inclusion.config import ProtocolConfig
from anon_inclusion.execute_mpc import LocalTallyExecutor, MPSPDZExecutor, SecureRoundExecutor
from anon_inclusion.run_iterative_workflow import IterationController
from anon_inclusion.models import Mempool, Prefix, ProtocolPhase, ProtocolReport

__version__ = "0.1.0"

__all__ = [
    "IterationController",
    "LocalTallyExecutor",
    "MPSPDZExecutor",
    "Mempool",
    "Prefix",
    "ProtocolConfig",
    "ProtocolPhase",
    "ProtocolReport",
    "SecureRoundExecutor",
]
