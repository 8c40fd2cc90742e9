"""Error taxonomy for progress tracking.

All errors derive from ProgressError so callers (CLI, web layer) can
surface them as request-level failures with a single except clause.
None of them is worth retrying without correcting the input.
"""

from typing import Any


class ProgressError(Exception):
    """Base class for all progress-tracking failures."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(ProgressError):
    """A referenced entity does not exist.

    Attributes:
        entity: Kind of entity that was looked up (e.g. "topic", "word")
        identifier: The identifier that was not found
    """

    def __init__(self, entity: str, identifier: Any):
        super().__init__(f"{entity.capitalize()} not found: {identifier}")
        self.entity = entity
        self.identifier = identifier


class ValidationError(ProgressError):
    """Malformed input: bad percentages, thresholds, or payload shapes."""


class StateConflict(ProgressError):
    """Input is well-formed but inconsistent with stored state."""
