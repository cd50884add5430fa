# Overview: One-way close funnel for shifts and business days, gated on variance approval.

"""
Variance Approval Workflow

STATE MACHINE:
    OPEN -> CLOSING -> CLOSED
                   \\
                    -> VARIANCE_REVIEW -> CLOSED

    OPEN:            Shift/day in progress
    CLOSING:         Counts being reconciled
    VARIANCE_REVIEW: Reconciliation left a difference beyond tolerance; a
                     manager must approve it with a written reason
    CLOSED:          Final (terminal)

RULES:
1. A difference beyond tolerance always lands in VARIANCE_REVIEW
2. approve() needs a reason that is non-empty after trimming whitespace
3. Nothing leads back to OPEN; once in review the only exit is CLOSED
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from ..time_utils import utcnow, to_utc_z
from ..validation import ValidationError, ConflictError


class CloseStatus(str, Enum):
    OPEN = "OPEN"
    CLOSING = "CLOSING"
    VARIANCE_REVIEW = "VARIANCE_REVIEW"
    CLOSED = "CLOSED"


class SubjectKind(str, Enum):
    SHIFT = "SHIFT"
    DAY = "DAY"


CLOSE_TRANSITIONS: dict[CloseStatus, frozenset[CloseStatus]] = {
    CloseStatus.OPEN: frozenset({CloseStatus.CLOSING}),
    CloseStatus.CLOSING: frozenset({CloseStatus.CLOSED, CloseStatus.VARIANCE_REVIEW}),
    CloseStatus.VARIANCE_REVIEW: frozenset({CloseStatus.CLOSED}),
    CloseStatus.CLOSED: frozenset(),
}


class CloseStateError(ConflictError):
    code = "INVALID_CLOSE_TRANSITION"


class VarianceReasonRequired(ValidationError):
    code = "VARIANCE_REASON_REQUIRED"


@dataclass
class CloseSubject:
    """In-memory shift/day; the ORM model ClosingSession exposes the same attributes."""

    id: Any = None
    kind: SubjectKind = SubjectKind.DAY
    status: CloseStatus = CloseStatus.OPEN
    difference: int | None = None
    variance_reason: str | None = None
    approved_by: Any = None
    approved_at: datetime | None = None
    closing_started_at: datetime | None = None
    closed_at: datetime | None = None


@dataclass(frozen=True)
class VarianceApproval:
    subject_id: Any
    reason: str
    approved_by: Any
    approved_at: datetime

    def to_dict(self) -> dict:
        return {
            "subject_id": self.subject_id,
            "reason": self.reason,
            "approved_by": self.approved_by,
            "approved_at": to_utc_z(self.approved_at),
        }


def _require(subject, to_status: CloseStatus) -> None:
    current = CloseStatus(subject.status)
    if to_status not in CLOSE_TRANSITIONS[current]:
        raise CloseStateError(
            f"Cannot move {getattr(subject, 'kind', 'subject')} {subject.id} "
            f"from {current.value} to {to_status.value}"
        )


def begin_closing(subject, *, now: datetime | None = None):
    """OPEN -> CLOSING."""
    _require(subject, CloseStatus.CLOSING)
    subject.status = CloseStatus.CLOSING
    subject.closing_started_at = now or utcnow()
    return subject


def submit_reconciliation(
    subject,
    difference: int,
    *,
    tolerance: int = 0,
    force_review: bool = False,
    now: datetime | None = None,
) -> CloseStatus:
    """
    Record the reconciled difference and route the close.

    Args:
        subject: Shift/day in CLOSING
        difference: Expected-vs-actual difference (tickets or cents)
        tolerance: Largest |difference| that closes without review
        force_review: Another check (e.g. cash) already failed

    Returns:
        CLOSED when |difference| <= tolerance and nothing forced review,
        else VARIANCE_REVIEW
    """
    if tolerance < 0:
        raise ValidationError("tolerance must be >= 0")
    within = abs(difference) <= tolerance and not force_review
    target = CloseStatus.CLOSED if within else CloseStatus.VARIANCE_REVIEW
    _require(subject, target)

    subject.difference = difference
    subject.status = target
    if target == CloseStatus.CLOSED:
        subject.closed_at = now or utcnow()
    return target


def approve(subject, reason: str | None, *, approved_by, now: datetime | None = None) -> VarianceApproval:
    """
    Approve a variance and close the subject (VARIANCE_REVIEW -> CLOSED).

    Raises:
        CloseStateError: If the subject is not in VARIANCE_REVIEW
        VarianceReasonRequired: If reason is empty after trimming
    """
    # CLOSING -> CLOSED is legal in the table but not through approval
    if CloseStatus(subject.status) != CloseStatus.VARIANCE_REVIEW:
        raise CloseStateError(
            f"Only subjects in VARIANCE_REVIEW can be approved; current status is "
            f"{CloseStatus(subject.status).value}"
        )

    cleaned = reason.strip() if isinstance(reason, str) else ""
    if not cleaned:
        raise VarianceReasonRequired("variance_reason is required when approving variance")
    if approved_by is None:
        raise ValidationError("approved_by is required")

    approved_at = now or utcnow()
    subject.variance_reason = cleaned
    subject.approved_by = approved_by
    subject.approved_at = approved_at
    subject.status = CloseStatus.CLOSED
    subject.closed_at = approved_at

    return VarianceApproval(
        subject_id=subject.id,
        reason=cleaned,
        approved_by=approved_by,
        approved_at=approved_at,
    )


def variance_percentage(expected_cents: int, actual_cents: int) -> float | None:
    if not expected_cents:
        return None
    return round(abs(actual_cents - expected_cents) * 100 / expected_cents, 2)


def cash_variance_exceeds(
    expected_cents: int,
    actual_cents: int,
    *,
    absolute_cents: int = 500,
    percent: float = 1.0,
) -> bool:
    """
    Cash tolerance rule for shift closes.

    A cash difference needs review once it is over absolute_cents AND over
    percent of the expected drawer. With nothing expected, only the absolute
    bound applies.
    """
    diff = abs(actual_cents - expected_cents)
    if diff <= absolute_cents:
        return False
    pct = variance_percentage(expected_cents, actual_cents)
    return pct is None or pct > percent
