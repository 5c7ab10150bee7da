# generate_mempool.py
# usage: python3 -m anon_inclusion.generate_mempool TRANSACTION_SPACE_BITS MEMPOOL_SIZE [--seed N|random]
import os
import sys
import json
import random
import logging
import argparse

from anon_inclusion.config import parse_seed
from anon_inclusion.errors import GenerationError
from anon_inclusion.models import Mempool

logger = logging.getLogger(__name__)

# Fixed random seed for reproducibility
RANDOM_SEED = 42
MEMPOOL_FILE_NAME = "mempool_definition.json"


def build_mempool(transaction_space_bits, mempool_size, seed=RANDOM_SEED):
    """Draws ``mempool_size`` distinct transaction ids uniformly from the id space.

    ``seed=None`` seeds from OS entropy, any int gives a reproducible mempool.
    """
    if transaction_space_bits < 0 or mempool_size < 0:
        raise GenerationError("TRANSACTION_SPACE_BITS and MEMPOOL_SIZE cannot be negative.")

    # With 0 bits there is exactly one possible transaction: 0.
    max_possible_txs = 2 ** transaction_space_bits
    if mempool_size > max_possible_txs:
        raise GenerationError(f"MEMPOOL_SIZE ({mempool_size}) cannot exceed the maximum possible unique "
                              f"transactions for {transaction_space_bits} bits, which is {max_possible_txs}.")

    rng = random.Random(seed)
    if seed is None:
        logger.info("Using OS entropy for mempool generation")
    else:
        logger.info("Using fixed random seed: %s", seed)

    # random.sample over a range does not materialise the population
    tx_ids = sorted(rng.sample(range(max_possible_txs), mempool_size))
    return Mempool(tuple(tx_ids), transaction_space_bits)


def build_mempool_from_config(config):
    return build_mempool(config.transaction_space_bits, config.mempool_size, seed=config.mempool_seed)


def write_mempool(mempool, data_dir="Player-Data"):
    os.makedirs(data_dir, exist_ok=True)
    output_file = os.path.join(data_dir, MEMPOOL_FILE_NAME)
    with open(output_file, 'w') as f:
        json.dump({"mempool_tx_ids": list(mempool.tx_ids),
                   "transaction_space_bits": mempool.transaction_space_bits}, f, indent=4)
    logger.info("Mempool definition (%d integer transactions) saved to: %s", len(mempool), output_file)
    return output_file


def load_mempool(data_dir="Player-Data", transaction_space_bits=None):
    mempool_file = os.path.join(data_dir, MEMPOOL_FILE_NAME)
    try:
        with open(mempool_file, 'r') as f:
            data = json.load(f)
        tx_ids = data["mempool_tx_ids"]
    except (FileNotFoundError, KeyError, json.JSONDecodeError) as e:
        raise GenerationError(f"Could not read mempool from {mempool_file}. "
                              f"Run generate_mempool first. Error: {e}") from e

    bits = data.get("transaction_space_bits", transaction_space_bits)
    if bits is None:
        raise GenerationError(f"{mempool_file} does not record TRANSACTION_SPACE_BITS")
    if len(set(tx_ids)) != len(tx_ids) or any(not 0 <= tx < 2 ** bits for tx in tx_ids):
        raise GenerationError(f"{mempool_file} holds duplicate or out-of-range transaction ids")
    return Mempool(tuple(sorted(tx_ids)), bits)


def main(argv=None):
    parser = argparse.ArgumentParser(description="Generate the shared mempool definition.")
    parser.add_argument("transaction_space_bits", type=int)
    parser.add_argument("mempool_size", type=int)
    parser.add_argument("--seed", type=parse_seed, default=RANDOM_SEED,
                        help="Integer seed, or 'random' for a non-reproducible mempool.")
    parser.add_argument("--data-dir", default="Player-Data")
    args = parser.parse_args(argv)

    try:
        mempool = build_mempool(args.transaction_space_bits, args.mempool_size, seed=args.seed)
        write_mempool(mempool, args.data_dir)
    except (GenerationError, OSError) as e:
        print(f"Error: {e}")
        return 1
    print(f"Successfully generated {len(mempool)} unique integer transactions.")
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    sys.exit(main())
