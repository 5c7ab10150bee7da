"""
Tests for per-party vote generation and the private vote files
"""
import os
import random

import pytest

from anon_inclusion.errors import GenerationError
from anon_inclusion.generate_inputs import (draw_votes, generate_and_write_party_votes, generate_party_votes,
                                            load_party_votes, main, party_votes_path, write_party_votes)
from anon_inclusion.generate_mempool import build_mempool, write_mempool


def test_uniform_votes_have_weight_one():
    votes = draw_votes(range(100), 10, random.Random(0))
    assert len(votes) == 10
    assert set(votes.values()) == {1}


def test_weighted_votes_stay_in_range():
    votes = draw_votes(range(100), 50, random.Random(0), distribution="weighted", max_vote_weight=3)
    assert all(1 <= w <= 3 for w in votes.values())


def test_votes_are_capped_at_mempool_size(make_config, caplog):
    mempool = build_mempool(8, 5)
    config = make_config(mempool_size=5, votes_per_party=9)
    all_votes = generate_party_votes(mempool, config, seed=1)
    assert len(all_votes) == config.num_parties
    assert all(sorted(v) == list(mempool.tx_ids) for v in all_votes)
    assert "VOTES_PER_PARTY" in caplog.text


def test_unknown_distribution():
    with pytest.raises(GenerationError):
        draw_votes([1, 2], 1, random.Random(0), distribution="zipf")


class TestVoteFiles:

    def test_write_then_load(self, data_dir):
        write_party_votes(2, {7: 1, 3: 4}, data_dir)
        with open(party_votes_path(2, data_dir)) as f:
            assert f.read() == "3 4\n7 1\n"
        assert load_party_votes(2, data_dir) == {3: 4, 7: 1}

    def test_bare_ids_and_repeats(self, data_dir):
        with open(party_votes_path(0, data_dir), 'w') as f:
            f.write("# party 0\n5\n9 2\n\n5\n")
        assert load_party_votes(0, data_dir) == {5: 2, 9: 2}

    def test_non_integer_line(self, data_dir):
        with open(party_votes_path(1, data_dir), 'w') as f:
            f.write("12\nabc\n")
        with pytest.raises(GenerationError):
            load_party_votes(1, data_dir)

    def test_negative_weight(self, data_dir):
        with open(party_votes_path(1, data_dir), 'w') as f:
            f.write("12 -1\n")
        with pytest.raises(GenerationError):
            load_party_votes(1, data_dir)
        with pytest.raises(GenerationError):
            write_party_votes(1, {12: -1}, data_dir)

    def test_missing_file_means_no_votes(self, data_dir):
        assert load_party_votes(3, data_dir) == {}

    def test_every_party_gets_a_file(self, make_config, data_dir):
        config = make_config()
        mempool = build_mempool(8, 16)
        paths = generate_and_write_party_votes(mempool, config, data_dir)
        assert paths == [party_votes_path(i, data_dir) for i in range(4)]
        for i in range(4):
            votes = load_party_votes(i, data_dir)
            assert len(votes) == 16
            assert set(votes) <= set(mempool.tx_ids)


def test_main_reads_the_mempool(data_dir):
    write_mempool(build_mempool(8, 12), data_dir)
    assert main(["3", "4", "--data-dir", data_dir]) == 0
    assert all(os.path.exists(party_votes_path(i, data_dir)) for i in range(3))
    assert len(load_party_votes(0, data_dir)) == 4


def test_main_without_mempool(data_dir):
    assert main(["3", "4", "--data-dir", data_dir]) == 1
