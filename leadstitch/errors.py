"""
Error taxonomy for the matching engine.

Job-fatal errors (PolicyValidationError, InfrastructureError) propagate to the
caller of a match job. Per-event errors (UsageLimitExceeded, PersistenceError)
are collected into the job summary and never abort the batch.
"""

from typing import List, Optional


class LeadStitchError(Exception):
    """Base class for engine errors."""
    pass


class PolicyValidationError(LeadStitchError):
    """Raised when a policy document is missing or malformed."""

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        super().__init__(message)
        self.problems = list(problems or [])


class UsageLimitExceeded(LeadStitchError):
    """Raised when creating a lead would exceed the account's plan limit."""

    def __init__(self, account_id: int, limit: int):
        super().__init__(f"Monthly limit of {limit} stitched leads exceeded")
        self.account_id = account_id
        self.limit = limit


class PersistenceError(LeadStitchError):
    """A read or write against the store failed for a single event."""
    pass


class InfrastructureError(LeadStitchError):
    """The job cannot start: events or policy could not be read."""
    pass


class JobConflictError(InfrastructureError):
    """Another match job holds the account lock."""
    pass
