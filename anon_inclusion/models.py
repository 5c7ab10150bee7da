"""Data structures shared by the iterative anonymous inclusion workflow."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

TransactionID = int
VoteVector = Dict[TransactionID, int]


class ProtocolPhase(Enum):
    """States of the iteration controller."""

    INITIALIZING = "Initializing"
    ROUND_PREPARING = "RoundPreparing"
    ROUND_EXECUTING = "RoundExecuting"
    ROUND_PARSING = "RoundParsing"
    ROUND_ADVANCING = "RoundAdvancing"
    TERMINATED = "Terminated"
    FAILED = "Failed"


@dataclass(frozen=True, order=True)
class Prefix:
    """All transaction ids whose top ``bit_length`` bits equal ``value``."""

    bit_length: int
    value: int

    def __post_init__(self) -> None:
        if self.bit_length < 0 or self.value < 0 or self.value >= 2 ** self.bit_length:
            raise ValueError(f"Invalid prefix: {self.value} does not fit in {self.bit_length} bits")

    @classmethod
    def root(cls) -> "Prefix":
        return cls(0, 0)

    @classmethod
    def from_str(cls, prefix_str: str) -> "Prefix":
        return cls(len(prefix_str), int(prefix_str, 2) if prefix_str else 0)

    @property
    def prefix_str(self) -> str:
        """Binary string form, ``""`` for the root."""
        return format(self.value, f"0{self.bit_length}b") if self.bit_length else ""

    def is_resolved(self, transaction_space_bits: int) -> bool:
        return self.bit_length >= transaction_space_bits

    def children(self, num_new_bits: int) -> List["Prefix"]:
        return [Prefix(self.bit_length + num_new_bits, (self.value << num_new_bits) | i)
                for i in range(2 ** num_new_bits)]

    def id_range(self, transaction_space_bits: int) -> Tuple[int, int]:
        """Inclusive ``(min, max)`` of the transaction ids under this prefix."""
        remaining_bits = transaction_space_bits - self.bit_length
        return self.value << remaining_bits, ((self.value + 1) << remaining_bits) - 1

    def contains(self, tx_id: TransactionID, transaction_space_bits: int) -> bool:
        return tx_id >> (transaction_space_bits - self.bit_length) == self.value

    def is_ancestor_of(self, other: "Prefix") -> bool:
        """True for ``other`` itself and every prefix nested inside this one."""
        if other.bit_length < self.bit_length:
            return False
        return other.value >> (other.bit_length - self.bit_length) == self.value

    def __str__(self) -> str:
        return f"'{self.prefix_str}'"


@dataclass(frozen=True)
class Mempool:
    """Sorted, distinct candidate transaction ids; read-only for the whole run."""

    tx_ids: Tuple[TransactionID, ...]
    transaction_space_bits: int

    def __len__(self) -> int:
        return len(self.tx_ids)

    def __iter__(self):
        return iter(self.tx_ids)

    def __contains__(self, tx_id: object) -> bool:
        return tx_id in self.tx_ids

    def under(self, prefix: Prefix) -> List[TransactionID]:
        return [tx for tx in self.tx_ids if prefix.contains(tx, self.transaction_space_bits)]


@dataclass(frozen=True)
class RoundInput:
    """Handle on one party's prepared MPC input file; the tallies stay in the file."""

    party_id: int
    round_number: int
    path: str
    num_active_slots: int
    capacity: int


@dataclass(frozen=True)
class PartyOutput:
    """Terminal output of one party process for one round."""

    party_id: int
    returncode: int
    text: str
    elapsed: float = 0.0


@dataclass(frozen=True)
class RoundResult:
    """Threshold outcome for one frontier prefix."""

    prefix: Prefix
    passed: bool
    tx_id: Optional[TransactionID] = None


@dataclass
class RoundSummary:
    """Audit record of one completed round."""

    round_number: int
    bit_length: int
    candidates: int
    passed: int
    pruned: int
    attempts: int
    included: List[TransactionID] = field(default_factory=list)
    engine_time: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "round": self.round_number,
            "bit_length": self.bit_length,
            "candidates": self.candidates,
            "passed": self.passed,
            "pruned": self.pruned,
            "attempts": self.attempts,
            "included": list(self.included),
            "engine_time": self.engine_time,
        }


@dataclass
class ProtocolState:
    """Mutable record owned by the iteration controller."""

    phase: ProtocolPhase = ProtocolPhase.INITIALIZING
    round_number: int = 0
    frontier: Tuple[Prefix, ...] = (Prefix.root(),)
    included: set = field(default_factory=set)
    pruned: set = field(default_factory=set)
    terminated: bool = False
    failure_count: int = 0
    summaries: List[RoundSummary] = field(default_factory=list)


@dataclass(frozen=True)
class FailureInfo:
    round_number: int
    kind: str
    message: str
    frontier: Tuple[Prefix, ...]
    party_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "round": self.round_number,
            "kind": self.kind,
            "message": self.message,
            "party_id": self.party_id,
            "frontier": [p.prefix_str for p in self.frontier],
        }


@dataclass(frozen=True)
class ProtocolReport:
    """Final output of a run: either Terminated with an inclusion list, or Failed."""

    status: ProtocolPhase
    included: Tuple[TransactionID, ...]
    rounds_executed: int
    rounds: Tuple[RoundSummary, ...]
    failed_attempts: int = 0
    failure: Optional[FailureInfo] = None

    @property
    def succeeded(self) -> bool:
        return self.status is ProtocolPhase.TERMINATED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "included_tx_ids": list(self.included),
            "rounds_executed": self.rounds_executed,
            "failed_attempts": self.failed_attempts,
            "rounds": [summary.to_dict() for summary in self.rounds],
            "failure": self.failure.to_dict() if self.failure else None,
        }
