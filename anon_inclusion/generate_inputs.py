# generate_inputs.py
# usage: python3 -m anon_inclusion.generate_inputs NUM_PARTIES VOTES_PER_PARTY
#
# Each party picks VOTES_PER_PARTY transactions from the mempool and writes
# them, with their vote weight, to its own private file Player-Data/Input-P<i>-1.
# That file is only ever read back by the same party's input preparation step.
import os
import sys
import random
import logging
import argparse

from anon_inclusion.config import VOTE_DISTRIBUTIONS, parse_seed
from anon_inclusion.errors import GenerationError
from anon_inclusion.generate_mempool import load_mempool

logger = logging.getLogger(__name__)

# Fixed random seed for reproducibility of party inputs
RANDOM_SEED = 123


def party_votes_path(party_id, data_dir="Player-Data"):
    return os.path.join(data_dir, f"Input-P{party_id}-1")


def draw_votes(mempool_tx_ids, votes_per_party, rng, distribution="uniform", max_vote_weight=1):
    """Draws one party's vote vector ``{tx_id: weight}``."""
    if distribution not in VOTE_DISTRIBUTIONS:
        raise GenerationError(f"Unknown vote distribution '{distribution}'")
    num_to_select = min(votes_per_party, len(mempool_tx_ids))
    selected = rng.sample(list(mempool_tx_ids), num_to_select)
    if distribution == "weighted":
        return {tx_id: rng.randint(1, max_vote_weight) for tx_id in sorted(selected)}
    return {tx_id: 1 for tx_id in sorted(selected)}


def generate_party_votes(mempool, config, seed=RANDOM_SEED):
    """Returns one vote vector per party. Only used where a single process owns all parties."""
    if config.votes_per_party > len(mempool):
        logger.warning("VOTES_PER_PARTY (%d) > mempool size (%d). Each party will vote for all transactions.",
                       config.votes_per_party, len(mempool))
    rng = random.Random(seed)
    return [draw_votes(mempool.tx_ids, config.votes_per_party, rng,
                       config.vote_distribution, config.max_vote_weight)
            for _ in range(config.num_parties)]


def write_party_votes(party_id, votes, data_dir="Player-Data"):
    os.makedirs(data_dir, exist_ok=True)
    output_file = party_votes_path(party_id, data_dir)
    with open(output_file, 'w') as f:
        for tx_id, weight in sorted(votes.items()):
            if weight < 0:
                raise GenerationError(f"Party {party_id} has a negative weight for TX {tx_id}")
            f.write(f"{tx_id} {weight}\n")
    logger.info("Generated %d votes for Party %d and saved to %s", len(votes), party_id, output_file)
    return output_file


def generate_and_write_party_votes(mempool, config, data_dir="Player-Data"):
    """Writes every party's votes straight to its private file; nothing is returned but paths."""
    paths = []
    for party_id, votes in enumerate(generate_party_votes(mempool, config, seed=config.votes_seed)):
        paths.append(write_party_votes(party_id, votes, data_dir))
    return paths


def load_party_votes(party_id, data_dir="Player-Data"):
    """Loads a party's raw votes. Lines are ``tx_id [weight]``; weight defaults to 1."""
    filepath = party_votes_path(party_id, data_dir)
    votes = {}
    try:
        with open(filepath, 'r') as f:
            for line_no, line in enumerate(f, start=1):
                line = line.strip()
                if not line or line.startswith('#'):
                    continue
                parts = line.split()
                try:
                    tx_id = int(parts[0])
                    weight = int(parts[1]) if len(parts) > 1 else 1
                except ValueError as e:
                    raise GenerationError(f"Non-integer vote in {filepath}:{line_no}: '{line}'") from e
                if weight < 0:
                    raise GenerationError(f"Negative vote weight in {filepath}:{line_no}")
                votes[tx_id] = votes.get(tx_id, 0) + weight
    except FileNotFoundError:
        logger.warning("Party raw votes file not found: %s. Assuming party has no votes.", filepath)
    return votes


def main(argv=None):
    parser = argparse.ArgumentParser(description="Generate each party's private vote file.")
    parser.add_argument("num_parties", type=int)
    parser.add_argument("votes_per_party", type=int)
    parser.add_argument("--seed", type=parse_seed, default=RANDOM_SEED)
    parser.add_argument("--distribution", choices=VOTE_DISTRIBUTIONS, default="uniform")
    parser.add_argument("--max-weight", type=int, default=1)
    parser.add_argument("--data-dir", default="Player-Data")
    args = parser.parse_args(argv)

    if args.num_parties <= 0 or args.votes_per_party < 0 or args.max_weight < 1:
        print("Error: NUM_PARTIES must be positive, VOTES_PER_PARTY non-negative and --max-weight at least 1.")
        return 1

    try:
        mempool = load_mempool(args.data_dir)
        rng = random.Random(args.seed)
        for i in range(args.num_parties):
            votes = draw_votes(mempool.tx_ids, args.votes_per_party, rng,
                               args.distribution, args.max_weight)
            write_party_votes(i, votes, args.data_dir)
    except (GenerationError, OSError) as e:
        print(f"Error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    sys.exit(main())
