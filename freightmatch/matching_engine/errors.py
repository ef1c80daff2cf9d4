"""
Matching engine error taxonomy.

Only ``InvalidInput`` is meant to reach callers as a hard failure.
The rest are caught inside the engine and turned into degraded
results (unknown distance, omitted fields, skipped candidates).
"""


class MatchingError(Exception):
    """Base class for all matching engine errors."""


class InvalidInput(MatchingError, ValueError):
    """Malformed input to a pure computation (e.g. negative distance)."""


class LocationUnavailable(MatchingError):
    """A distance cannot be computed because a point is missing."""


class UndefinedCostPerMile(MatchingError):
    """Cost per mile requested for a zero-distance estimate."""


class ConstraintViolation(MatchingError):
    """A match for this (load, carrier) pair already exists."""

    def __init__(self, load_id, carrier_id):
        self.load_id = load_id
        self.carrier_id = carrier_id
        super().__init__(f"Match already exists for load {load_id} / carrier {carrier_id}")


class InvalidTransition(MatchingError):
    """A state-machine guard rejected the requested transition."""


class CandidateStoreFailure(MatchingError):
    """The candidate store could not be read."""
