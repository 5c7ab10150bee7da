# execute_mpc.py
# Launching the secure computation for one level. Any backend that implements
# run_round(round_number, inputs) -> [PartyOutput] can drive the controller.
import os
import time
import logging
import subprocess
from concurrent.futures import ThreadPoolExecutor, wait
from typing import List, Protocol, Sequence

from anon_inclusion.errors import ConfigError, GenerationError, PartyFailed, RoundTimedOut
from anon_inclusion.parse_log import INFO_MARKER, RESULT_MARKER
from anon_inclusion.prepare_iteration_inputs import read_round_input
from anon_inclusion.models import PartyOutput, RoundInput

logger = logging.getLogger(__name__)

RUN_LOG_NAME = "mpc_run.log"


class SecureRoundExecutor(Protocol):
    def run_round(self, round_number: int, inputs: Sequence[RoundInput]) -> List[PartyOutput]:
        """Runs every party for one level and returns their outputs once all have finished.

        Raises RoundTimedOut or PartyFailed when the round cannot complete.
        """
        ...


def find_party_executable(protocol_or_name, search_dir="."):
    """Locates ``<protocol>-party.x`` (or an explicit name) in the usual MP-SPDZ places."""
    name = protocol_or_name if protocol_or_name.endswith((".x", ".sh")) else f"{protocol_or_name}-party.x"
    possible_paths = [
        os.path.join(search_dir, name),
        os.path.join(search_dir, "Parties", name),
        os.path.join(search_dir, name.replace('.x', '.sh')),
        os.path.join(search_dir, "Parties", name.replace('.x', '.sh')),
    ]
    for path_option in possible_paths:
        if os.path.isfile(path_option) and os.access(path_option, os.X_OK):
            return path_option
    raise ConfigError(f"MPC executable '{name}' not found or not executable "
                      f"in checked locations: {possible_paths}")


def _tail(text, head=10, tail=10):
    lines = text.splitlines()
    if len(lines) <= head + tail:
        return "\n".join(lines)
    return "\n".join(lines[:head] + ["..."] + lines[-tail:])


def _check_inputs(round_number, inputs, num_parties):
    if sorted(i.party_id for i in inputs) != list(range(num_parties)):
        raise GenerationError(f"L{round_number} needs one input per party, got parties "
                              f"{sorted(i.party_id for i in inputs)}")
    for round_input in inputs:
        if round_input.round_number != round_number:
            raise GenerationError(f"Input for party {round_input.party_id} was prepared for "
                                  f"L{round_input.round_number}, not L{round_number}")


class MPSPDZExecutor:
    """
    Runs one MP-SPDZ party process per party, concurrently, and waits for all of
    them at a single barrier. Each party has its own wall-clock timeout counted
    from its launch; a timeout or a non-zero exit status kills the siblings.
    """

    def __init__(self, config, protocol="mascot", executable=None, workdir=".",
                 log_dir="Logs", data_dir="Player-Data", poll_interval=0.1, launch_delay=0.1):
        self.config = config
        self.protocol = protocol
        self.workdir = workdir
        self.log_dir = log_dir
        self.data_dir = data_dir
        self.poll_interval = poll_interval
        self.launch_delay = launch_delay
        if executable is None:
            self._command_prefix = None
        elif isinstance(executable, str):
            self._command_prefix = [executable]
        else:
            self._command_prefix = list(executable)

    @property
    def program_name(self):
        return f"{self.config.mpc_program}-{self.config.num_parties}"

    def command_prefix(self):
        if self._command_prefix is None:
            self._command_prefix = [find_party_executable(self.protocol, self.workdir)]
            logger.info("Orchestrator: Using MPC executable at '%s'", self._command_prefix[0])
        return list(self._command_prefix)

    def write_hosts_file(self):
        """Party index -> host mapping for MP-SPDZ's ``-ip`` option."""
        if not self.config.party_hosts:
            return None
        os.makedirs(self.data_dir, exist_ok=True)
        path = os.path.join(self.data_dir, "hosts")
        with open(path, 'w') as f:
            f.write("\n".join(self.config.party_hosts) + "\n")
        return os.path.abspath(path)

    def party_command(self, party_id, hosts_file=None):
        command = self.command_prefix() + [
            "-p", str(party_id),
            "-N", str(self.config.num_parties),
            "-pn", str(self.config.base_port),
            "-OF", ".",
        ]
        if hosts_file:
            command += ["-ip", hosts_file]
        return command + [self.program_name]

    def party_log_path(self, party_id):
        return os.path.join(self.log_dir, f"P{party_id}_{self.program_name}.log")

    def run_round(self, round_number, inputs):
        _check_inputs(round_number, inputs, self.config.num_parties)
        os.makedirs(self.log_dir, exist_ok=True)
        hosts_file = self.write_hosts_file()

        for i in range(self.config.num_parties):
            log_file_path = self.party_log_path(i)
            if os.path.exists(log_file_path):
                os.remove(log_file_path)

        logger.info("Orchestrator: Launching %d MPC parties for program '%s'. Base port: %d",
                    self.config.num_parties, self.program_name, self.config.base_port)
        parties = []
        try:
            for i in range(self.config.num_parties):
                command = self.party_command(i, hosts_file)
                log_file_path = self.party_log_path(i)
                logger.debug("Orchestrator: Launching Party %d: %s > %s", i, ' '.join(command), log_file_path)
                log_handle = open(log_file_path, 'w')
                try:
                    process = subprocess.Popen(command, stdout=log_handle, stderr=subprocess.STDOUT,
                                               cwd=self.workdir)
                except OSError as e:
                    log_handle.close()
                    raise PartyFailed(round_number, i, -1, f"could not launch: {e}") from e
                parties.append((i, process, log_handle, time.monotonic()))
                if self.launch_delay:
                    time.sleep(self.launch_delay)

            returncodes, elapsed = self._wait_for_parties(round_number, parties)
        finally:
            for _, process, log_handle, _ in parties:
                if process.poll() is None:
                    process.kill()
                    process.wait()
                log_handle.close()

        outputs = []
        for party_id, _, _, _ in parties:
            with open(self.party_log_path(party_id), 'r') as f:
                text = f.read()
            outputs.append(PartyOutput(party_id, returncodes[party_id], text, elapsed[party_id]))
        self._append_run_log(round_number, outputs)
        logger.info("Orchestrator: All MPC parties finished successfully for L%d.", round_number)
        return outputs

    def _wait_for_parties(self, round_number, parties):
        """The round barrier: returns once every party exited 0, raises otherwise."""
        returncodes, elapsed = {}, {}
        pending = {party_id: (process, started) for party_id, process, _, started in parties}
        while pending:
            for party_id, (process, started) in list(pending.items()):
                return_code = process.poll()
                if return_code is None:
                    if time.monotonic() - started > self.config.round_timeout:
                        logger.error("Orchestrator: Party %d (PID %d) timed out after %ss in L%d",
                                     party_id, process.pid, self.config.round_timeout, round_number)
                        raise RoundTimedOut(round_number, party_id, self.config.round_timeout)
                    continue
                del pending[party_id]
                returncodes[party_id] = return_code
                elapsed[party_id] = time.monotonic() - started
                logger.debug("Orchestrator: Party %d finished with status %d", party_id, return_code)
                if return_code != 0:
                    log_path = self.party_log_path(party_id)
                    logger.error("Orchestrator: ***** ERROR DETECTED FOR PARTY %d ***** Log: %s",
                                 party_id, log_path)
                    raise PartyFailed(round_number, party_id, return_code, self._read_tail(log_path))
            if pending:
                time.sleep(self.poll_interval)
        return returncodes, elapsed

    def _read_tail(self, path):
        try:
            with open(path, 'r') as f:
                return _tail(f.read(), head=0, tail=5)
        except OSError:
            return ""

    def _append_run_log(self, round_number, outputs):
        with open(os.path.join(self.log_dir, RUN_LOG_NAME), 'a') as log_file:
            log_file.write(f"\n===== Iteration Level {round_number} =====\n")
            for output in outputs:
                log_file.write(f"--- Party {output.party_id} (exit {output.returncode}) ---\n")
                log_file.write(output.text)
                if not output.text.endswith("\n"):
                    log_file.write("\n")
            log_file.write("=" * 30 + "\n")


class LocalTallyExecutor:
    """
    Plaintext stand-in for the MPC engine, for demos and tests. Each party is a
    worker that reads only its own input tape; the tallies are combined in the
    clear and every party prints the report the compiled program would print.
    It provides no secrecy.
    """

    def __init__(self, config):
        self.config = config

    def _read_party(self, round_input):
        return read_round_input(round_input.path)

    def run_round(self, round_number, inputs):
        _check_inputs(round_number, inputs, self.config.num_parties)
        started = time.monotonic()
        tapes = {}
        pool = ThreadPoolExecutor(max_workers=len(inputs))
        try:
            futures = {pool.submit(self._read_party, round_input): round_input.party_id
                       for round_input in inputs}
            done, not_done = wait(futures, timeout=self.config.round_timeout)
            if not_done:
                for future in not_done:
                    future.cancel()
                raise RoundTimedOut(round_number, min(futures[f] for f in not_done),
                                    self.config.round_timeout)
            for future in done:
                party_id = futures[future]
                try:
                    tapes[party_id] = future.result()
                except (OSError, ValueError, GenerationError) as e:
                    raise PartyFailed(round_number, party_id, 1, str(e)) from e
        finally:
            # Workers are not joined: a worker still blocked on its tape is abandoned with the
            # round. cancel_futures needs 3.9, so pending futures are cancelled above instead.
            pool.shutdown(wait=False)

        num_active, level, _ = tapes[0]
        for party_id, (_, _, counts) in tapes.items():
            if len(counts) < num_active:
                raise PartyFailed(round_number, party_id, 1,
                                  f"input tape holds {len(counts)} tallies, {num_active} slots are active")
        totals = [sum(tapes[p][2][slot] for p in tapes) for slot in range(num_active)]
        elapsed = time.monotonic() - started

        lines = [f"{INFO_MARKER} Current Level = {level}, Active Prefix Slots for this level = {num_active}"]
        for slot, total in enumerate(totals):
            meets = int(total >= self.config.min_votes_threshold)
            lines.append(f"{RESULT_MARKER} SlotIndex={slot} Level={level} MeetsThreshold={meets}")
        lines.append(f"Time = {elapsed:.6f} seconds")
        text = "\n".join(lines) + "\n"
        return [PartyOutput(party_id, 0, text, elapsed) for party_id in sorted(tapes)]


def build_executor(protocol, config, log_dir="Logs", data_dir="Player-Data", workdir="."):
    """``local`` selects the in-process simulation, anything else an MP-SPDZ protocol."""
    if protocol == "local":
        return LocalTallyExecutor(config)
    return MPSPDZExecutor(config, protocol=protocol, workdir=workdir, log_dir=log_dir, data_dir=data_dir)

