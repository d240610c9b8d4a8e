"""Exception types for flowpilot.

Expected step failures are reported as result values; these exceptions are
raised only for programmer and configuration errors.
"""


class FlowpilotError(Exception):
    """Base class for flowpilot errors."""


class ConfigurationError(FlowpilotError):
    """Raised when a component is wired or invoked incorrectly."""


class SolutionNotFoundError(FlowpilotError):
    """Raised when a solution id does not exist in the store."""

    def __init__(self, solution_id: str) -> None:
        super().__init__(f"Solution {solution_id} not found")
        self.solution_id = solution_id


class SnapshotFormatError(FlowpilotError):
    """Raised when an imported solution snapshot is malformed."""
