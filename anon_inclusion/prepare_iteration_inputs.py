# prepare_iteration_inputs.py
# usage: python3 -m anon_inclusion.prepare_iteration_inputs <PARTY_ID> <CANDIDATES_JSON> <MAX_PREFIX_SLOTS> <TX_BITS>
#
# Builds one party's MPC input tape for the current level. The tape is
#   public header  (party 0: number of active prefixes, level; others: 0, 0)
#   MAX_PREFIX_SLOTS secret tallies, one per candidate prefix, zero padded.
import os
import sys
import json
import logging
import argparse
import subprocess

from anon_inclusion.config import ProtocolConfig
from anon_inclusion.errors import FrontierOverflowError, GenerationError, ProtocolInvariantError
from anon_inclusion.generate_inputs import load_party_votes
from anon_inclusion.models import Prefix, RoundInput

logger = logging.getLogger(__name__)

CANDIDATE_PREFIXES_FILE_NAME = "current_iteration_candidates.json"


def generate_child_prefixes(parent, transaction_space_bits, branch_factor_log2):
    """Splits ``parent`` into 2**k children, k being BRANCH_FACTOR_LOG2 or the bits left."""
    num_new_bits = min(branch_factor_log2, transaction_space_bits - parent.bit_length)
    if num_new_bits <= 0:
        return []
    return parent.children(num_new_bits)


def check_frontier(frontier, config, round_number=None):
    if len(frontier) > config.max_prefix_slots:
        raise FrontierOverflowError(len(frontier), config.max_prefix_slots, round_number)
    lengths = {p.bit_length for p in frontier}
    if len(lengths) > 1:
        raise ProtocolInvariantError(f"Frontier for L{round_number} mixes bit-lengths {sorted(lengths)}")
    if len(set(frontier)) != len(frontier):
        raise ProtocolInvariantError(f"Frontier for L{round_number} contains duplicate prefixes")


def next_frontier(survivors, config, round_number=None):
    """Children of every surviving prefix, sorted, checked against MAX_PREFIX_SLOTS.

    Overflow aborts the run instead of dropping branches.
    """
    children = []
    for parent in survivors:
        children.extend(generate_child_prefixes(parent, config.transaction_space_bits,
                                                config.branch_factor_log2))
    frontier = tuple(sorted(children))
    check_frontier(frontier, config, round_number)
    return frontier


def calculate_prefix_range(prefix, tx_space_bits):
    """Calculates the integer range [min, max] for a given prefix."""
    return prefix.id_range(tx_space_bits)


def compute_slot_counts(votes, frontier, tx_space_bits, capacity=None):
    """Sums a party's vote weight under each prefix, zero padded to ``capacity`` slots."""
    counts = []
    for prefix in frontier:
        range_min, range_max = calculate_prefix_range(prefix, tx_space_bits)
        counts.append(sum(weight for tx_id, weight in votes.items() if range_min <= tx_id <= range_max))
    if capacity is not None:
        if len(counts) > capacity:
            raise FrontierOverflowError(len(counts), capacity)
        counts.extend([0] * (capacity - len(counts)))
    return counts


def write_candidates_file(frontier, round_number, data_dir="Player-Data"):
    """Publishes the slot -> prefix mapping; it carries no vote information."""
    os.makedirs(data_dir, exist_ok=True)
    path = os.path.join(data_dir, CANDIDATE_PREFIXES_FILE_NAME)
    with open(path, 'w') as f:
        json.dump({"candidate_prefixes_info": [{'level': round_number,
                                                'prefix_len': p.bit_length,
                                                'prefix_str': p.prefix_str} for p in frontier],
                   "num_active_prefixes": len(frontier),
                   "current_level": round_number}, f)
    return path


def load_candidates_file(path):
    try:
        with open(path, 'r') as f:
            data = json.load(f)
        candidates = data["candidate_prefixes_info"]
        num_active = data["num_active_prefixes"]
        frontier = tuple(Prefix.from_str(c['prefix_str']) for c in candidates)
    except (OSError, KeyError, ValueError) as e:
        raise GenerationError(f"Error loading candidate prefixes from {path}: {e}") from e
    if num_active != len(frontier):
        raise GenerationError(f"Mismatch between num_active_prefixes ({num_active}) and "
                              f"length of candidate_prefixes_info ({len(frontier)}).")
    return frontier, data.get("current_level", 0)


def round_input_path(party_id, data_dir="Player-Data"):
    return os.path.join(data_dir, f"Input-P{party_id}-0")


def read_round_input(path):
    """Reads an input tape back as ``(num_active, level, counts)``."""
    with open(path, 'r') as f:
        values = [int(line) for line in f if line.strip()]
    if len(values) < 2:
        raise GenerationError(f"MPC input file {path} is missing its header")
    return values[0], values[1], values[2:]


def prepare_party_input(party_id, frontier, round_number, config, data_dir="Player-Data"):
    """Writes Player-Data/Input-P<party_id>-0 for this level from the party's own votes."""
    capacity = config.max_prefix_slots
    if len(frontier) > capacity:
        raise FrontierOverflowError(len(frontier), capacity, round_number)

    counts = compute_slot_counts(load_party_votes(party_id, data_dir), frontier,
                                 config.transaction_space_bits, capacity)

    # Party 0 provides the public inputs; the others keep the tape aligned with dummies.
    if party_id == 0:
        lines_to_write = [str(len(frontier)), str(round_number)]
    else:
        lines_to_write = ["0", "0"]
    lines_to_write.extend(str(count) for count in counts)

    path = round_input_path(party_id, data_dir)
    with open(path, 'w') as f_out:
        f_out.write('\n'.join(lines_to_write) + '\n')
    logger.debug("Party %d: wrote %d lines to %s for L%d", party_id, len(lines_to_write), path, round_number)
    return RoundInput(party_id=party_id, round_number=round_number, path=path,
                      num_active_slots=len(frontier), capacity=capacity)


def _party_env():
    """Child environment in which ``anon_inclusion`` resolves to this same package."""
    env = dict(os.environ)
    package_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    env["PYTHONPATH"] = os.pathsep.join(p for p in (package_root, env.get("PYTHONPATH")) if p)
    return env


def run_party_preparation(party_id, candidates_path, round_number, num_active, config, data_dir="Player-Data"):
    """
    Runs one party's input preparation as its own process, so the party's raw
    votes are only ever read there. Returns the handle on the tape it wrote.
    """
    command = [sys.executable, "-m", "anon_inclusion.prepare_iteration_inputs", str(party_id),
               candidates_path, str(config.max_prefix_slots), str(config.transaction_space_bits),
               "--data-dir", data_dir]
    logger.debug("Orchestrator: Running Input Prep P%d: %s", party_id, ' '.join(command))
    proc = subprocess.run(command, capture_output=True, text=True, check=False, env=_party_env())
    if proc.returncode != 0:
        detail = (proc.stdout + proc.stderr).strip().splitlines()
        raise GenerationError(f"Input Prep P{party_id} for L{round_number} exited with {proc.returncode}: "
                              f"{detail[-1] if detail else 'no output'}")
    return RoundInput(party_id=party_id, round_number=round_number, path=round_input_path(party_id, data_dir),
                      num_active_slots=num_active, capacity=config.max_prefix_slots)


def prepare_round_inputs(frontier, round_number, config, data_dir="Player-Data", in_process=False):
    """
    Publishes the candidates file and has every party build its input tape.

    Each party runs in a separate process by default. ``in_process=True`` reads
    every party's votes in this process and is meant for tests and demos only.
    """
    check_frontier(frontier, config, round_number)
    candidates_path = write_candidates_file(frontier, round_number, data_dir)
    logger.info("Orchestrator: Preparing inputs for %d parties for L%d (active prefixes: %d, capacity: %d)",
                config.num_parties, round_number, len(frontier), config.max_prefix_slots)
    if in_process:
        return [prepare_party_input(i, frontier, round_number, config, data_dir)
                for i in range(config.num_parties)]
    return [run_party_preparation(i, candidates_path, round_number, len(frontier), config, data_dir)
            for i in range(config.num_parties)]


def main(argv=None):
    parser = argparse.ArgumentParser(description="Prepare one party's MPC input for the current level.")
    parser.add_argument("party_id", type=int)
    parser.add_argument("candidates_json")
    parser.add_argument("max_prefix_slots", type=int)
    parser.add_argument("transaction_space_bits", type=int)
    parser.add_argument("--data-dir", default="Player-Data")
    args = parser.parse_args(argv)

    try:
        frontier, level = load_candidates_file(args.candidates_json)
        config = ProtocolConfig(num_parties=max(2, args.party_id + 1),
                                transaction_space_bits=args.transaction_space_bits,
                                max_prefix_slots=args.max_prefix_slots)
        prepare_party_input(args.party_id, frontier, level, config, args.data_dir)
    except (GenerationError, FrontierOverflowError, OSError) as e:
        print(f"Error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    sys.exit(main())
