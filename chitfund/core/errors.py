"""
Error taxonomy for the chit fund engine.

Every operation validates before it mutates, so any of these errors
means the aggregate was left untouched:

- ValidationError: malformed input (non-positive amounts, missing fields)
- StateError: operation invalid for the current lifecycle state
- BusinessRuleViolation: a specific rule was broken (carries `reason`)
- NotFoundError: unknown group / auction / entry / member
- ConcurrencyConflict: stored version moved underneath the writer
- DuplicateSettlement: ledger triple already exists (skipped by settlement)
"""

from typing import Optional


class ChitFundError(Exception):
    """Base class for all engine errors."""


# =============================================================================
# Validation
# =============================================================================


class ValidationError(ChitFundError, ValueError):
    """Malformed input, rejected before any state change."""


class InvalidAmount(ValidationError):
    """Amount is zero, negative or not an integer number of minor units."""


# =============================================================================
# Lifecycle
# =============================================================================


class StateError(ChitFundError):
    """Operation is not valid for the aggregate's current state."""


class InvalidState(StateError):
    """Raised by lifecycle transitions (schedule/start/close/extend)."""


# =============================================================================
# Business Rules
# =============================================================================


class BusinessRuleViolation(ChitFundError):
    """A business rule was violated; `reason` is a short machine-readable tag."""

    reason = "business_rule"

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message)
        if reason is not None:
            self.reason = reason


class DuplicateBid(BusinessRuleViolation):
    reason = "duplicate_bid"


class BidTooLow(BusinessRuleViolation):
    reason = "bid_too_low"


class MemberExcluded(BusinessRuleViolation):
    reason = "member_excluded"


class NotAMember(BusinessRuleViolation):
    reason = "not_a_member"


class WinnerHasNoBid(BusinessRuleViolation):
    reason = "winner_has_no_bid"


class NoBids(BusinessRuleViolation):
    reason = "no_bids"


class NoEligibleMembers(BusinessRuleViolation):
    reason = "no_eligible_members"


class ExceedsOutstanding(BusinessRuleViolation):
    reason = "exceeds_outstanding"


class CapacityReached(BusinessRuleViolation):
    reason = "capacity_reached"


class DividendOverrideTooHigh(BusinessRuleViolation):
    reason = "dividend_override_too_high"


# =============================================================================
# Lookup / Persistence
# =============================================================================


class NotFoundError(ChitFundError, LookupError):
    """Unknown group, auction, ledger entry or member."""


class ConcurrencyConflict(ChitFundError):
    """Version mismatch on write; the caller should retry the whole operation."""

    def __init__(self, kind: str, key: str, expected: int, actual: int):
        super().__init__(
            f"{kind} {key} was modified concurrently "
            f"(expected version {expected}, found {actual})"
        )
        self.kind = kind
        self.key = key
        self.expected = expected
        self.actual = actual


class DuplicateSettlement(ChitFundError):
    """A ledger entry already exists for (group, member, period)."""

    def __init__(self, group_id: str, member_id: str, period_number: int):
        super().__init__(
            f"Ledger entry already exists for group={group_id} "
            f"member={member_id} period={period_number}"
        )
        self.group_id = group_id
        self.member_id = member_id
        self.period_number = period_number


__all__ = [
    "ChitFundError",
    "ValidationError",
    "InvalidAmount",
    "StateError",
    "InvalidState",
    "BusinessRuleViolation",
    "DuplicateBid",
    "BidTooLow",
    "MemberExcluded",
    "NotAMember",
    "WinnerHasNoBid",
    "NoBids",
    "NoEligibleMembers",
    "ExceedsOutstanding",
    "CapacityReached",
    "DividendOverrideTooHigh",
    "NotFoundError",
    "ConcurrencyConflict",
    "DuplicateSettlement",
]
