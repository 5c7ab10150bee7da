"""
Parsing of the textual reports printed by the compiled MPC program.

Each party prints, for every active prefix slot of the level,

    RAW_ITERATION_RESULT: SlotIndex=<i> Level=<k> MeetsThreshold=<0|1>

(older builds of the program reveal ``GlobalVotes=<v>`` instead of the
threshold bit), an ``ITERATION_INFO:`` summary line and the engine's
``Time = X seconds`` footer.
"""
import re
import sys
import logging
import argparse

from anon_inclusion.errors import ParseError
from anon_inclusion.models import RoundResult

logger = logging.getLogger(__name__)

RESULT_MARKER = "RAW_ITERATION_RESULT:"
INFO_MARKER = "ITERATION_INFO:"
TIME_PATTERN = re.compile(r"Time = ([\d.eE+-]+) seconds")


def _key_values(line, marker):
    parts = {}
    for item in line[len(marker):].split():
        if "=" in item:
            key, value = item.split("=", 1)
            parts[key.strip()] = value.strip()
    return parts


def parse_iteration_info(text):
    """Returns ``(level, active_slots)`` from the ITERATION_INFO line, -1 where absent."""
    level, active_slots = -1, -1
    for line in text.splitlines():
        line = line.strip()
        if not line.startswith(INFO_MARKER):
            continue
        for part in line[len(INFO_MARKER):].split(','):
            part = part.strip()
            try:
                if part.startswith("Active Prefix Slots"):
                    active_slots = int(part.split('=')[1].strip().split(' ')[0])
                elif part.startswith("Current Level"):
                    level = int(part.split('=')[1].strip())
            except (IndexError, ValueError):
                logger.warning("Could not fully parse ITERATION_INFO: '%s'", line)
        break
    return level, active_slots


def parse_party_output(text, round_number, min_votes_threshold, party_id=0):
    """Maps slot index -> passed for one party's output."""
    outcomes = {}
    for line in text.splitlines():
        line = line.strip()
        if not line.startswith(RESULT_MARKER):
            continue
        parts = _key_values(line, RESULT_MARKER)
        try:
            slot_index = int(parts["SlotIndex"])
            if "Level" in parts and int(parts["Level"]) != round_number:
                logger.warning("Party %d: mismatched level in result line, expected %d: '%s'",
                               party_id, round_number, line)
                continue
            if "MeetsThreshold" in parts:
                flag = int(parts["MeetsThreshold"])
                if flag not in (0, 1):
                    raise ValueError(f"MeetsThreshold={flag}")
                passed = flag == 1
            elif "GlobalVotes" in parts:
                passed = int(parts["GlobalVotes"]) >= min_votes_threshold
            else:
                raise KeyError("MeetsThreshold")
        except (KeyError, ValueError) as e:
            raise ParseError(f"Party {party_id}: unreadable result line '{line}' ({e})", round_number) from e

        if outcomes.get(slot_index, passed) != passed:
            raise ParseError(f"Party {party_id} reported conflicting outcomes for slot {slot_index}",
                             round_number, slot_index)
        outcomes[slot_index] = passed
    return outcomes


def parse_round_outputs(outputs, frontier, round_number, config):
    """Builds one RoundResult per frontier prefix from every party's output.

    Exactly one output per party is required. All parties learn the same
    revealed bits; any gap or disagreement is fatal.
    """
    if not outputs:
        raise ParseError(f"No party outputs for L{round_number}", round_number)
    party_ids = [output.party_id for output in outputs]
    if len(set(party_ids)) != len(party_ids):
        raise ParseError(f"Duplicate party outputs for L{round_number}: parties {sorted(party_ids)}",
                         round_number)
    if set(party_ids) != set(range(config.num_parties)):
        raise ParseError(f"L{round_number} needs output from all {config.num_parties} parties, "
                         f"got parties {sorted(party_ids)}", round_number)

    per_party = {}
    for output in outputs:
        per_party[output.party_id] = parse_party_output(output.text, round_number,
                                                        config.min_votes_threshold, output.party_id)
        _, active_slots = parse_iteration_info(output.text)
        if active_slots not in (-1, len(frontier)):
            logger.warning("Party %d reported %d active slots, orchestrator generated %d for L%d",
                           output.party_id, active_slots, len(frontier), round_number)

    results = []
    for slot_index, prefix in enumerate(frontier):
        seen = {}
        for party_id, outcomes in sorted(per_party.items()):
            if slot_index not in outcomes:
                raise ParseError(f"Party {party_id} has no result for slot {slot_index} "
                                 f"(prefix {prefix}) in L{round_number}", round_number, slot_index)
            seen[party_id] = outcomes[slot_index]
        if len(set(seen.values())) != 1:
            raise ParseError(f"Parties disagree on slot {slot_index} (prefix {prefix}) in "
                             f"L{round_number}: {seen}", round_number, slot_index)
        passed = next(iter(seen.values()))
        tx_id = prefix.value if prefix.is_resolved(config.transaction_space_bits) else None
        results.append(RoundResult(prefix=prefix, passed=passed, tx_id=tx_id))

    extra = {s for outcomes in per_party.values() for s in outcomes if s >= len(frontier)}
    if extra:
        logger.debug("Ignoring results for %d padding slots in L%d", len(extra), round_number)
    return results


def extract_round_times(text):
    """All ``Time = X seconds`` values printed by the engine, in order."""
    return [float(t) for t in TIME_PATTERN.findall(text)]


def parse_mpc_log(file_path):
    """
    Extracts the time taken by each MPC summation from a log file and prints
    one line per level followed by the total. Returns the list of times.
    """
    with open(file_path, 'r') as f:
        time_values = extract_round_times(f.read())

    if not time_values:
        print(f"No 'Time =' entries found in the log file: {file_path}")
        return []

    print("--- MPC Summation Times Per Level ---")
    for i, time_val in enumerate(time_values):
        print(f"  Level {i} Time: {time_val:.6f} seconds")

    print("\n--- Total Execution Time ---")
    print(f"Total MPC summation time: {sum(time_values):.6f} seconds")
    return time_values


def main(argv=None):
    parser = argparse.ArgumentParser(description="Parse an MPC log file to extract and sum execution times.")
    parser.add_argument(
        "file_path",
        type=str,
        nargs='?',
        default='./Logs/mpc_run.log',
        help="The path to the log file. Defaults to './Logs/mpc_run.log' if not provided."
    )
    args = parser.parse_args(argv)
    try:
        parse_mpc_log(args.file_path)
    except FileNotFoundError:
        print(f"Error: The file at the specified path was not found: {args.file_path}")
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
