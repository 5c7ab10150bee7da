# tests/conftest.py
"""
Shared fixtures for the test suite.

Every test gets its own Player-Data / Logs directories under tmp_path, so
nothing touches the working directory of the checkout.
"""

from __future__ import annotations

import pytest

from anon_inclusion.config import ProtocolConfig
from anon_inclusion.execute_mpc import LocalTallyExecutor
from anon_inclusion.prepare_iteration_inputs import load_candidates_file, CANDIDATE_PREFIXES_FILE_NAME


@pytest.fixture
def data_dir(tmp_path):
    path = tmp_path / "Player-Data"
    path.mkdir()
    return str(path)


@pytest.fixture
def make_config():
    """ProtocolConfig factory with small, test-friendly defaults."""
    def _make(**overrides):
        values = dict(num_parties=4, transaction_space_bits=8, branch_factor_log2=2,
                      min_votes_threshold=3, mempool_size=16, votes_per_party=16,
                      round_timeout=5.0, round_retry_limit=1)
        values.update(overrides)
        return ProtocolConfig(**values).validate()
    return _make


class RecordingExecutor:
    """
    Wraps LocalTallyExecutor; records each round's published candidates and
    can inject one execution error per listed (round, attempt).
    """

    def __init__(self, config, data_dir, failures=None, outputs_hook=None):
        self.inner = LocalTallyExecutor(config)
        self.data_dir = data_dir
        self.failures = dict(failures or {})
        self.outputs_hook = outputs_hook
        self.calls = []
        self.frontiers = {}

    def run_round(self, round_number, inputs):
        self.calls.append(round_number)
        attempt = self.calls.count(round_number)
        frontier, level = load_candidates_file(f"{self.data_dir}/{CANDIDATE_PREFIXES_FILE_NAME}")
        assert level == round_number
        self.frontiers[round_number] = frontier
        error = self.failures.get((round_number, attempt))
        if error is not None:
            raise error
        outputs = self.inner.run_round(round_number, inputs)
        if self.outputs_hook is not None:
            outputs = self.outputs_hook(round_number, outputs)
        return outputs


@pytest.fixture
def recording_executor():
    return RecordingExecutor
