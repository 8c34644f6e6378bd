"""
Quote status lifecycle.

draft → calculated → sent → approved → paid → ordered → shipped → fulfilled,
with rejection, expiry and cancellation branches.
"""

DRAFT = 'draft'
CALCULATED = 'calculated'
SENT = 'sent'
APPROVED = 'approved'
REJECTED = 'rejected'
EXPIRED = 'expired'
PAID = 'paid'
ORDERED = 'ordered'
SHIPPED = 'shipped'
FULFILLED = 'fulfilled'
CANCELLED = 'cancelled'

STATUSES = (
    DRAFT, CALCULATED, SENT, APPROVED, REJECTED, EXPIRED,
    PAID, ORDERED, SHIPPED, FULFILLED, CANCELLED,
)

TERMINAL_STATUSES = (FULFILLED, CANCELLED)

TRANSITIONS = {
    DRAFT: (CALCULATED, SENT, CANCELLED),
    CALCULATED: (DRAFT, SENT, CANCELLED),
    SENT: (APPROVED, REJECTED, EXPIRED, CALCULATED, CANCELLED),
    APPROVED: (PAID, EXPIRED, CANCELLED),
    REJECTED: (DRAFT, CALCULATED, CANCELLED),
    EXPIRED: (DRAFT, CALCULATED, CANCELLED),
    PAID: (ORDERED, CANCELLED),
    ORDERED: (SHIPPED, CANCELLED),
    SHIPPED: (FULFILLED,),
    FULFILLED: (),
    CANCELLED: (),
}


class QuoteStatusError(ValueError):
    """Raised for unknown statuses and illegal status changes."""


def _check(status: str) -> str:
    status = str(status).strip().lower()
    if status not in STATUSES:
        raise QuoteStatusError(f"Unknown quote status '{status}', must be one of: {STATUSES}")
    return status


def allowed_transitions(current: str) -> tuple:
    return TRANSITIONS[_check(current)]


def can_transition(current: str, target: str) -> bool:
    return _check(target) in allowed_transitions(current)


def transition(current: str, target: str) -> str:
    """Return the new status, or raise QuoteStatusError when the change is not allowed."""
    current = _check(current)
    target = _check(target)
    if current in TERMINAL_STATUSES:
        raise QuoteStatusError(f"Quote is {current} and can no longer change status")
    if target not in TRANSITIONS[current]:
        raise QuoteStatusError(
            f"Cannot move quote from {current} to {target}; allowed: {TRANSITIONS[current]}"
        )
    return target
