"""
Exception classes for the iterative anonymous inclusion workflow
"""


class InclusionProtocolError(Exception):
    """Base exception for the inclusion protocol"""
    kind = "ProtocolError"
    retryable = False

    def __init__(self, message: str, code: str = None):
        super().__init__(message)
        self.message = message
        self.code = code or "PROTOCOL_ERROR"


class ConfigError(InclusionProtocolError):
    """Configuration values are out of range"""
    kind = "ConfigError"

    def __init__(self, message: str):
        super().__init__(message, "CONFIG_ERROR")


class GenerationError(InclusionProtocolError):
    """Mempool or vote generation cannot satisfy its parameters"""
    kind = "GenerationError"

    def __init__(self, message: str):
        super().__init__(message, "GENERATION_ERROR")


class FrontierOverflowError(InclusionProtocolError):
    """More candidate prefixes than the MPC program has slots for"""
    kind = "FrontierOverflow"

    def __init__(self, num_prefixes: int, capacity: int, round_number: int = None):
        message = (f"Active prefixes ({num_prefixes}) exceed MAX_PREFIX_SLOTS ({capacity})"
                   + (f" for L{round_number}" if round_number is not None else ""))
        super().__init__(message, "FRONTIER_OVERFLOW")
        self.num_prefixes = num_prefixes
        self.capacity = capacity
        self.round_number = round_number


class RoundExecutionError(InclusionProtocolError):
    """A party process did not complete the round; the round may be retried"""
    kind = "RoundExecutionError"
    retryable = True

    def __init__(self, message: str, round_number: int, party_id: int, code: str):
        super().__init__(message, code)
        self.round_number = round_number
        self.party_id = party_id


class RoundTimedOut(RoundExecutionError):
    """A party exceeded its wall-clock budget"""
    kind = "TimedOut"

    def __init__(self, round_number: int, party_id: int, timeout: float):
        message = f"Party {party_id} exceeded {timeout}s in L{round_number}"
        super().__init__(message, round_number, party_id, "TIMED_OUT")
        self.timeout = timeout


class PartyFailed(RoundExecutionError):
    """A party process exited with a non-zero status"""
    kind = "PartyFailed"

    def __init__(self, round_number: int, party_id: int, returncode: int, detail: str = ""):
        message = f"Party {party_id} failed with exit code {returncode} in L{round_number}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message, round_number, party_id, "PARTY_FAILED")
        self.returncode = returncode


class ParseError(InclusionProtocolError):
    """Party outputs are missing a result or disagree on one"""
    kind = "ParseError"

    def __init__(self, message: str, round_number: int = None, slot_index: int = None):
        super().__init__(message, "PARSE_ERROR")
        self.round_number = round_number
        self.slot_index = slot_index


class ProtocolInvariantError(InclusionProtocolError):
    """The controller reached a state that should be impossible"""
    kind = "ProtocolInvariant"

    def __init__(self, message: str):
        super().__init__(message, "PROTOCOL_INVARIANT")
