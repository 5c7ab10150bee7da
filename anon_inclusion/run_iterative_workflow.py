# run_iterative_workflow.py
# usage: anon-inclusion <protocol> [--report PATH] [--check-expected]
#
# Drives the level-by-level narrowing of the transaction id space:
#   level 0 checks the root prefix, every later level splits each surviving
#   prefix into 2**BRANCH_FACTOR_LOG2 children, and only children whose
#   secret tally reaches MIN_VOTES_THRESHOLD survive. Prefixes that reach
#   TRANSACTION_SPACE_BITS and pass are the final inclusion list.
import os
import sys
import json
import time
import logging
import argparse

from anon_inclusion.config import ProtocolConfig
from anon_inclusion.errors import InclusionProtocolError, ProtocolInvariantError, RoundExecutionError
from anon_inclusion.execute_mpc import RUN_LOG_NAME, build_executor
from anon_inclusion.generate_inputs import generate_and_write_party_votes, load_party_votes, write_party_votes
from anon_inclusion.generate_mempool import build_mempool_from_config, write_mempool
from anon_inclusion.parse_log import extract_round_times, parse_round_outputs
from anon_inclusion.prepare_iteration_inputs import next_frontier, prepare_round_inputs
from anon_inclusion.models import (FailureInfo, Prefix, ProtocolPhase, ProtocolReport, ProtocolState,
                                  RoundSummary)

logger = logging.getLogger(__name__)


class IterationController:
    """
    Runs the protocol to completion and returns a ProtocolReport.

    ``mempool`` and ``party_votes`` may be supplied instead of being generated
    from the configured seeds. Party votes are written to each party's private
    file during initialisation and are not kept by the controller. Each round,
    every party prepares its input tape in its own process unless
    ``prepare_in_process`` is set.
    """

    def __init__(self, config, executor, data_dir="Player-Data", mempool=None, party_votes=None,
                 prepare_in_process=False):
        self.config = config
        self.executor = executor
        self.data_dir = data_dir
        self.mempool = mempool
        self._party_votes = party_votes
        self.prepare_in_process = prepare_in_process
        self.state = ProtocolState()

    def run(self):
        start_time = time.monotonic()
        try:
            self._initialize()
            while not self.state.terminated:
                inputs = self._prepare_round()
                outputs, attempts = self._execute_round(inputs)
                results = self._parse_round(outputs)
                self._advance(results, attempts, outputs)
        except InclusionProtocolError as e:
            return self._fail(e)
        except OSError as e:
            return self._fail(InclusionProtocolError(f"I/O error: {e}", "IO_ERROR"))
        finally:
            logger.info("MPC Workflow completed in %.2f seconds", time.monotonic() - start_time)
        return self._report()

    def _initialize(self):
        self.state.phase = ProtocolPhase.INITIALIZING
        self.config.validate()
        os.makedirs(self.data_dir, exist_ok=True)

        if self.mempool is None:
            self.mempool = build_mempool_from_config(self.config)
        elif self.mempool.transaction_space_bits != self.config.transaction_space_bits:
            raise ProtocolInvariantError(f"Mempool uses {self.mempool.transaction_space_bits} bit ids, "
                                         f"configuration expects {self.config.transaction_space_bits}")
        write_mempool(self.mempool, self.data_dir)

        if self._party_votes is None:
            generate_and_write_party_votes(self.mempool, self.config, self.data_dir)
        else:
            if len(self._party_votes) != self.config.num_parties:
                raise ProtocolInvariantError(f"Got votes for {len(self._party_votes)} parties, "
                                             f"NUM_PARTIES is {self.config.num_parties}")
            for party_id, votes in enumerate(self._party_votes):
                write_party_votes(party_id, votes, self.data_dir)
            self._party_votes = None
        logger.info("Initial data generation complete.")

        self.state.round_number = 0
        self.state.frontier = (Prefix.root(),)

    def _expected_bit_length(self, round_number):
        return min(round_number * self.config.branch_factor_log2, self.config.transaction_space_bits)

    def _prepare_round(self):
        state = self.state
        state.phase = ProtocolPhase.ROUND_PREPARING
        logger.info("--- Iteration: Processing Level %d (%d candidate prefixes) ---",
                    state.round_number, len(state.frontier))
        expected = self._expected_bit_length(state.round_number)
        if any(p.bit_length != expected for p in state.frontier):
            raise ProtocolInvariantError(f"L{state.round_number} frontier should hold {expected}-bit prefixes")
        return prepare_round_inputs(state.frontier, state.round_number, self.config, self.data_dir,
                                    in_process=self.prepare_in_process)

    def _execute_round(self, inputs):
        """Runs the round, relaunching every party on a timeout or crash up to the retry limit."""
        state = self.state
        state.phase = ProtocolPhase.ROUND_EXECUTING
        max_attempts = self.config.round_retry_limit + 1
        for attempt in range(1, max_attempts + 1):
            try:
                return self.executor.run_round(state.round_number, inputs), attempt
            except RoundExecutionError as e:
                state.failure_count += 1
                if attempt == max_attempts:
                    logger.error("Orchestrator: L%d failed on attempt %d/%d: %s",
                                 state.round_number, attempt, max_attempts, e.message)
                    raise
                logger.warning("Orchestrator: L%d attempt %d/%d failed (%s): %s. Relaunching all parties.",
                               state.round_number, attempt, max_attempts, e.kind, e.message)

    def _parse_round(self, outputs):
        self.state.phase = ProtocolPhase.ROUND_PARSING
        logger.info("Orchestrator: Parsing MPC output for level %d...", self.state.round_number)
        return parse_round_outputs(outputs, self.state.frontier, self.state.round_number, self.config)

    def _advance(self, results, attempts, outputs):
        state = self.state
        state.phase = ProtocolPhase.ROUND_ADVANCING
        if [r.prefix for r in results] != list(state.frontier):
            raise ProtocolInvariantError(f"L{state.round_number} results do not line up with the frontier")

        survivors, included_now, pruned_now = [], [], 0
        for result in results:
            if any(p.is_ancestor_of(result.prefix) for p in state.pruned):
                raise ProtocolInvariantError(f"Prefix {result.prefix} descends from a pruned prefix")
            if not result.passed:
                if result.tx_id is not None and result.tx_id in state.included:
                    raise ProtocolInvariantError(f"Cannot prune already included TX {result.tx_id}")
                state.pruned.add(result.prefix)
                pruned_now += 1
            elif result.tx_id is None:
                survivors.append(result.prefix)
            elif result.tx_id not in self.mempool:
                logger.warning("Orchestrator: TX ID %d met the threshold but is not in the mempool; "
                               "not included.", result.tx_id)
            elif result.tx_id in state.included:
                raise ProtocolInvariantError(f"TX {result.tx_id} was already included")
            else:
                state.included.add(result.tx_id)
                included_now.append(result.tx_id)
                logger.info("  --> FINAL TX: ID %d (prefix %s)", result.tx_id, result.prefix)

        times = extract_round_times(outputs[0].text) if outputs else []
        state.summaries.append(RoundSummary(
            round_number=state.round_number,
            bit_length=state.frontier[0].bit_length,
            candidates=len(results),
            passed=len(results) - pruned_now,
            pruned=pruned_now,
            attempts=attempts,
            included=included_now,
            engine_time=times[0] if times else max((o.elapsed for o in outputs), default=None),
        ))
        logger.info("Level %d: Found %d prefixes for next level.", state.round_number, len(survivors))

        if not survivors:
            state.terminated = True
            state.phase = ProtocolPhase.TERMINATED
            return

        # An overflow is reported against the level being entered.
        state.round_number += 1
        frontier = next_frontier(survivors, self.config, state.round_number)
        if any(p.is_ancestor_of(child) for child in frontier for p in state.pruned):
            raise ProtocolInvariantError(f"L{state.round_number} frontier revisits a pruned prefix")
        state.frontier = frontier

    def _fail(self, error):
        state = self.state
        failed_phase = state.phase
        state.phase = ProtocolPhase.FAILED
        failure = FailureInfo(round_number=state.round_number, kind=error.kind, message=error.message,
                              frontier=tuple(state.frontier), party_id=getattr(error, "party_id", None))
        logger.error("Orchestrator: protocol FAILED in L%d during %s (%s): %s",
                     state.round_number, failed_phase.value, error.kind, error.message)
        return ProtocolReport(status=ProtocolPhase.FAILED, included=tuple(sorted(state.included)),
                              rounds_executed=len(state.summaries), rounds=tuple(state.summaries),
                              failed_attempts=state.failure_count, failure=failure)

    def _report(self):
        state = self.state
        return ProtocolReport(status=ProtocolPhase.TERMINATED, included=tuple(sorted(state.included)),
                              rounds_executed=len(state.summaries), rounds=tuple(state.summaries),
                              failed_attempts=state.failure_count)


def compute_expected_outcome(config, data_dir="Player-Data"):
    """
    Plaintext reference result: tallies every party's vote file directly and
    returns the transaction ids that meet the threshold. Only for benchmarking
    runs where the operator holds all inputs.
    """
    vote_counts = {}
    for party_id in range(config.num_parties):
        for tx_id, weight in load_party_votes(party_id, data_dir).items():
            vote_counts[tx_id] = vote_counts.get(tx_id, 0) + weight
    return {tx_id for tx_id, votes in vote_counts.items()
            if votes >= config.min_votes_threshold and votes > 0}


def print_report(report):
    print("\n--- Workflow Complete ---")
    if not report.succeeded:
        failure = report.failure
        print(f"Protocol FAILED in level {failure.round_number}: {failure.kind}")
        print(f"  {failure.message}")
        print(f"  Frontier at failure: {[p.prefix_str for p in failure.frontier]}")
    print(f"Levels executed: {report.rounds_executed} (failed attempts: {report.failed_attempts})")
    for summary in report.rounds:
        print(f"  Level {summary.round_number} ({summary.bit_length} bits): "
              f"{summary.passed} passed / {summary.pruned} pruned of {summary.candidates}")
    print("Final Anonymous Inclusion List (Unique TX IDs):")
    if report.included:
        for tx_id in report.included:
            print(f"  - TX ID: {tx_id}")
    else:
        print("  No transactions met the final threshold.")


def main(argv=None):
    parser = argparse.ArgumentParser(description="Run the iterative anonymous inclusion workflow.")
    parser.add_argument("protocol", help="MP-SPDZ protocol (e.g. mascot, shamir) or 'local' for the "
                                         "in-process simulation.")
    parser.add_argument("--data-dir", default="Player-Data")
    parser.add_argument("--log-dir", default="Logs")
    parser.add_argument("--report", help="Write the final report as JSON to this path.")
    parser.add_argument("--check-expected", action="store_true",
                        help="Compare the result with a plaintext tally of all vote files.")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        config = ProtocolConfig.from_env()
    except InclusionProtocolError as e:
        print(f"CRITICAL Error: {e.message}")
        return 2
    config.log_summary()

    os.makedirs(args.log_dir, exist_ok=True)
    run_log = os.path.join(args.log_dir, RUN_LOG_NAME)
    if os.path.exists(run_log):
        os.remove(run_log)

    logger.info("Orchestrator: Running protocol %s", args.protocol)
    executor = build_executor(args.protocol, config, log_dir=args.log_dir, data_dir=args.data_dir)
    report = IterationController(config, executor, data_dir=args.data_dir).run()
    print_report(report)

    if args.check_expected:
        expected = compute_expected_outcome(config, args.data_dir)
        print(f"Expected outcome: {sorted(expected)}")
        if report.succeeded and set(report.included) != expected:
            print("WARNING: MPC result differs from the plaintext tally.")

    if args.report:
        with open(args.report, 'w') as f:
            json.dump(report.to_dict(), f, indent=4)
        logger.info("Report written to %s", args.report)

    return 0 if report.succeeded else 1


if __name__ == "__main__":
    sys.exit(main())
