"""Domain exceptions raised by services and mapped to HTTP responses in `main`.

Services raise these instead of `HTTPException` so they stay usable from
scripts and the background sweep.
"""

from typing import Optional


class WoodpeckerError(Exception):
    """Base class for all domain errors."""


class NotFoundError(WoodpeckerError, LookupError):
    """A puzzle, set, cycle, session or plan referenced by id does not exist."""

    def __init__(self, kind: str, key):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}")


class MalformedInputError(WoodpeckerError, ValueError):
    """Request data that cannot be processed at all (e.g. no puzzle id)."""


class ConflictError(WoodpeckerError):
    """The operation would violate a uniqueness rule (email, active cycle, open session)."""


class AuthError(WoodpeckerError):
    """Credentials or token rejected."""


class SolutionParseError(WoodpeckerError, ValueError):
    """Stored solution data could not be loaded into the solution tree."""

    def __init__(self, message: str, puzzle_id: Optional[str] = None):
        self.puzzle_id = puzzle_id
        if puzzle_id:
            message = f"{message} (puzzle {puzzle_id})"
        super().__init__(message)
