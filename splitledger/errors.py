"""
Error Taxonomy for SplitLedger

Every failure the core raises belongs to one of four kinds:

- InvalidArgument: malformed, missing or out-of-range input
- NotFound: a referenced user, group, expense or post does not exist
- Conflict: the input is well-formed but clashes with current state
  (duplicate handle, sum mismatch, overpayment, empty broadcast group)
- PersistenceFailure: the storage backend rejected or failed a write

DESIGN DECISION: Errors carry structured fields (field name and the rule
that was violated) so callers can classify them without parsing text.
str(error) still renders the exact legacy message, because existing
clients match on those strings.
"""

from enum import Enum
from typing import Optional


class ErrorRule(str, Enum):
    """The rule an input or operation violated."""
    REQUIRED = "required"
    WRONG_TYPE = "wrong_type"
    EMPTY = "empty"
    MALFORMED = "malformed"
    OUT_OF_RANGE = "out_of_range"
    NOT_FOUND = "not_found"
    DUPLICATE = "duplicate"
    NOT_A_MEMBER = "not_a_member"
    SUM_MISMATCH = "sum_mismatch"
    EXCEEDS_OWED = "exceeds_owed"
    NO_MEMBERS = "no_members"
    INVALID_CREDENTIALS = "invalid_credentials"
    WRITE_FAILED = "write_failed"
    CONCURRENT_UPDATE = "concurrent_update"


class SplitLedgerError(Exception):
    """Base class for every error raised by the core."""

    kind = "error"

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        rule: Optional[ErrorRule] = None,
    ):
        super().__init__(message)
        self.message = message
        self.field = field
        self.rule = rule

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "kind": self.kind,
            "message": self.message,
            "field": self.field,
            "rule": self.rule.value if self.rule else None,
        }


class InvalidArgument(SplitLedgerError, ValueError):
    """Input was missing, of the wrong type, empty, malformed or out of range."""

    kind = "invalid_argument"


class NotFound(SplitLedgerError, LookupError):
    """A referenced entity does not exist."""

    kind = "not_found"


class Conflict(SplitLedgerError):
    """Input is well-formed but conflicts with the current state."""

    kind = "conflict"


class PersistenceFailure(SplitLedgerError):
    """The storage backend failed to apply a write."""

    kind = "persistence_failure"

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        rule: Optional[ErrorRule] = ErrorRule.WRITE_FAILED,
    ):
        super().__init__(message, field=field, rule=rule)
