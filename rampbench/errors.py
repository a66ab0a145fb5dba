"""Exception hierarchy for rampbench."""

from typing import List, Optional


class RampbenchError(Exception):
    """Base class for all rampbench errors."""


class EngineError(RampbenchError):
    """A load-engine invocation did not produce a valid measurement."""


class EngineUnavailable(EngineError):
    """Raised when the load engine cannot be located or started."""


class EngineTimeout(EngineError):
    """Raised when the load engine does not finish within its timeout."""


class MalformedOutput(EngineError):
    """Raised when the load engine output cannot be parsed into a result."""


class InsufficientData(RampbenchError):
    """Raised when a campaign has no healthy run to estimate capacity from."""


class InvalidConfiguration(RampbenchError):
    """Raised when a campaign configuration fails validation."""

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        self.problems = list(problems or [])
        if self.problems:
            message = message + ":\n  - " + "\n  - ".join(self.problems)
        super().__init__(message)
