"""
Tests for frontier expansion and per-party MPC input tapes
"""
import pytest

from anon_inclusion.errors import FrontierOverflowError, GenerationError, ProtocolInvariantError
from anon_inclusion.generate_inputs import write_party_votes
from anon_inclusion.generate_mempool import build_mempool
from anon_inclusion.models import Prefix
from anon_inclusion.prepare_iteration_inputs import (CANDIDATE_PREFIXES_FILE_NAME, calculate_prefix_range,
                                                     compute_slot_counts, generate_child_prefixes,
                                                     load_candidates_file, main, next_frontier,
                                                     prepare_round_inputs, read_round_input,
                                                     run_party_preparation, write_candidates_file)


class TestChildPrefixes:

    def test_children_partition_the_parent(self):
        mempool = build_mempool(10, 64, seed=3)
        parent = Prefix.from_str("01")
        children = generate_child_prefixes(parent, 10, 3)
        assert len(children) == 8
        under_children = sorted(tx for child in children for tx in mempool.under(child))
        assert under_children == mempool.under(parent)

    def test_last_level_takes_remaining_bits(self):
        assert [c.prefix_str for c in generate_child_prefixes(Prefix.from_str("0110"), 5, 2)] == \
            ["01100", "01101"]

    def test_resolved_prefix_has_no_children(self):
        assert generate_child_prefixes(Prefix(5, 3), 5, 2) == []

    def test_prefix_range(self):
        assert calculate_prefix_range(Prefix.from_str("10"), 4) == (8, 11)
        assert calculate_prefix_range(Prefix.root(), 4) == (0, 15)


class TestNextFrontier:

    def test_sorted_children_of_survivors(self, make_config):
        config = make_config()
        frontier = next_frontier([Prefix.from_str("11"), Prefix.from_str("00")], config, 2)
        assert [p.prefix_str for p in frontier] == ["0000", "0001", "0010", "0011",
                                                   "1100", "1101", "1110", "1111"]

    def test_overflow_aborts(self, make_config):
        config = make_config(max_prefix_slots=7)
        with pytest.raises(FrontierOverflowError) as exc_info:
            next_frontier([Prefix.from_str("11"), Prefix.from_str("00")], config, 2)
        assert exc_info.value.num_prefixes == 8
        assert exc_info.value.capacity == 7
        assert exc_info.value.round_number == 2

    def test_mixed_lengths_are_an_invariant_error(self, make_config, data_dir):
        with pytest.raises(ProtocolInvariantError):
            prepare_round_inputs((Prefix.from_str("01"), Prefix.from_str("0110")), 1, make_config(), data_dir)


class TestRoundInputs:

    def test_slot_counts_are_padded(self):
        votes = {0b0001: 2, 0b0111: 1, 0b1000: 5}
        frontier = [Prefix.from_str("00"), Prefix.from_str("01")]
        assert compute_slot_counts(votes, frontier, 4, capacity=4) == [2, 1, 0, 0]

    def test_party_zero_carries_the_header(self, make_config, data_dir):
        config = make_config(num_parties=2, max_prefix_slots=6)
        write_party_votes(0, {0b00010000: 2, 0b11000000: 1}, data_dir)
        write_party_votes(1, {0b00000001: 4}, data_dir)
        frontier = tuple(Prefix.root().children(2))

        inputs = prepare_round_inputs(frontier, 1, config, data_dir)

        assert [i.party_id for i in inputs] == [0, 1]
        assert all(i.num_active_slots == 4 and i.capacity == 6 for i in inputs)
        assert read_round_input(inputs[0].path) == (4, 1, [2, 0, 0, 1, 0, 0])
        assert read_round_input(inputs[1].path) == (0, 0, [4, 0, 0, 0, 0, 0])

    def test_candidates_file_round_trip(self, data_dir):
        frontier = (Prefix.from_str("0010"), Prefix.from_str("1011"))
        path = write_candidates_file(frontier, 2, data_dir)
        assert load_candidates_file(path) == (frontier, 2)

    def test_main_prepares_one_party(self, data_dir):
        write_party_votes(1, {0b1111: 3}, data_dir)
        write_candidates_file((Prefix.from_str("0"), Prefix.from_str("1")), 1, data_dir)
        candidates = f"{data_dir}/{CANDIDATE_PREFIXES_FILE_NAME}"
        assert main(["1", candidates, "4", "4", "--data-dir", data_dir]) == 0
        assert read_round_input(f"{data_dir}/Input-P1-0") == (0, 0, [0, 3, 0, 0])

    def test_main_rejects_small_capacity(self, data_dir):
        write_candidates_file(tuple(Prefix.root().children(2)), 1, data_dir)
        candidates = f"{data_dir}/{CANDIDATE_PREFIXES_FILE_NAME}"
        assert main(["0", candidates, "3", "4", "--data-dir", data_dir]) == 1


class TestPartyProcesses:

    def test_separate_processes_write_the_same_tapes(self, make_config, data_dir):
        config = make_config(num_parties=3)
        write_party_votes(0, {0b01000000: 2}, data_dir)
        write_party_votes(2, {0b01000001: 1, 0b11111111: 5}, data_dir)
        frontier = tuple(Prefix.root().children(2))

        separate = [read_round_input(i.path) for i in prepare_round_inputs(frontier, 1, config, data_dir)]
        in_process = [read_round_input(i.path)
                      for i in prepare_round_inputs(frontier, 1, config, data_dir, in_process=True)]

        assert separate == in_process
        assert separate[2] == (0, 0, [0, 1, 0, 5] + [0] * (config.max_prefix_slots - 4))

    def test_failed_party_preparation(self, make_config, data_dir):
        config = make_config()
        with pytest.raises(GenerationError) as exc_info:
            run_party_preparation(1, f"{data_dir}/missing.json", 1, 4, config, data_dir)
        assert "Input Prep P1" in exc_info.value.message
