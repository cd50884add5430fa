# Overview: Service-layer operations for shift/day closes; reconciliation plus variance approval.

"""
Closing Service

FLOW:
    open_closing      -> OPEN
    begin_closing     -> CLOSING
    reconcile_scans   -> CLOSED, or VARIANCE_REVIEW when tickets or cash are off
    approve_variance  -> CLOSED (VARIANCE_REVIEW only, written reason required)

reconcile_scans builds the reconciliation snapshot from the database,
then, only if every scan counted and every active bin was scanned:
- writes a ClosingLine per counted bin
- carries each scanned position forward as the pack's last_sold_serial
- depletes packs whose scan reached serial_end (or were marked sold out)
- routes the session through the variance workflow

A scan set with problems (returned, unknown or malformed packs, bins left
unscanned, or one pack scanned twice at different positions) is reported
back and leaves the session in CLOSING so the operator can rescan.
Nothing is written in that case.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterable

from ..extensions import db
from ..models import ClosingSession, ClosingLine, LotteryPack, VarianceApprovalRecord
from ..time_utils import utcnow
from ..validation import ValidationError, ConflictError, NotFoundError
from .concurrency import lock_for_update, run_with_retry
from .pack_lifecycle import mark_depleted
from .pack_service import active_packs_by_bin, returned_records, game_infos
from .reconciliation import ClosingReconciliation, ClosingScan, ReconciliationEngine
from .variance_workflow import (
    CloseStatus,
    CloseStateError,
    SubjectKind,
    approve,
    begin_closing as workflow_begin,
    cash_variance_exceeds,
    submit_reconciliation,
)


logger = logging.getLogger(__name__)


class ClosingNotFoundError(NotFoundError):
    code = "CLOSING_NOT_FOUND"


@dataclass
class ReconcileOutcome:
    session: ClosingSession
    reconciliation: ClosingReconciliation
    finalized: bool
    cash_variance: bool = False

    def to_dict(self) -> dict:
        return {
            "session": self.session.to_dict(),
            "reconciliation": self.reconciliation.to_dict(),
            "finalized": self.finalized,
            "cash_variance": self.cash_variance,
        }


def open_closing(
    store_id: int,
    kind: SubjectKind | str = SubjectKind.DAY,
    *,
    business_date: date | None = None,
    expected_cash_cents: int | None = None,
) -> ClosingSession:
    """
    Open a shift or business-day close.

    Only one unfinished DAY close may exist per store and date.

    Raises:
        ValidationError: Unknown kind or negative expected cash
        ConflictError: An unfinished DAY close already exists
    """
    try:
        kind = SubjectKind(kind)
    except ValueError:
        raise ValidationError(
            f"Invalid kind '{kind}'. Must be one of: {', '.join(k.value for k in SubjectKind)}"
        )
    if expected_cash_cents is not None and expected_cash_cents < 0:
        raise ValidationError("expected_cash_cents cannot be negative")

    business_date = business_date or utcnow().date()

    if kind == SubjectKind.DAY:
        existing = (
            db.session.query(ClosingSession)
            .filter_by(store_id=store_id, kind=SubjectKind.DAY, business_date=business_date)
            .filter(ClosingSession.status != CloseStatus.CLOSED)
            .first()
        )
        if existing:
            raise ConflictError(
                f"Day close {existing.id} for {business_date.isoformat()} is still {CloseStatus(existing.status).value}"
            )

    session = ClosingSession(
        store_id=store_id,
        kind=kind,
        status=CloseStatus.OPEN,
        business_date=business_date,
        opened_at=utcnow(),
        expected_cash_cents=expected_cash_cents,
    )
    db.session.add(session)
    db.session.commit()
    return session


def get_closing(session_id: int) -> ClosingSession:
    session = db.session.query(ClosingSession).filter_by(id=session_id).first()
    if not session:
        raise ClosingNotFoundError(f"Closing session {session_id} not found")
    return session


def _locked_closing(session_id: int) -> ClosingSession:
    session = lock_for_update(db.session.query(ClosingSession).filter_by(id=session_id)).first()
    if not session:
        raise ClosingNotFoundError(f"Closing session {session_id} not found")
    return session


def begin_closing(session_id: int) -> ClosingSession:
    """OPEN -> CLOSING. Scans are only accepted after this."""
    def _op():
        session = _locked_closing(session_id)
        workflow_begin(session)
        db.session.commit()
        return session

    try:
        return run_with_retry(_op)
    except (ValidationError, ConflictError, NotFoundError):
        db.session.rollback()
        raise


def reconcile_scans(
    session_id: int,
    scans: Iterable[ClosingScan | str],
    *,
    actual_cash_cents: int | None = None,
    ticket_tolerance: int = 0,
    cash_absolute_cents: int = 500,
    cash_percent: float = 1.0,
) -> ReconcileOutcome:
    """
    Reconcile the closing scans for a session in CLOSING.

    Args:
        session_id: ClosingSession id
        scans: One ClosingScan (or bare barcode) per bin
        actual_cash_cents: Counted drawer; compared to expected_cash_cents
        ticket_tolerance: Largest summed |ticket difference| that closes
            without review
        cash_absolute_cents, cash_percent: Cash tolerance rule

    Returns:
        ReconcileOutcome; finalized is False when the scan set had problems

    Raises:
        ClosingNotFoundError
        CloseStateError: Session not in CLOSING
    """
    if actual_cash_cents is not None and actual_cash_cents < 0:
        raise ValidationError("actual_cash_cents cannot be negative")

    scans = list(scans)

    def _op():
        session = _locked_closing(session_id)
        if CloseStatus(session.status) != CloseStatus.CLOSING:
            raise CloseStateError(
                f"Closing session {session.id} must be CLOSING to accept scans; "
                f"current status is {CloseStatus(session.status).value}"
            )

        engine = ReconciliationEngine(
            active_packs_by_bin(session.store_id),
            returned_records(session.store_id),
            game_infos(),
        )
        summary = engine.reconcile_closing(scans)

        if summary.needs_rescan:
            logger.warning(
                "Closing %s not finalized: %d problem scan(s), %d unscanned bin(s), %d conflicting rescan(s)",
                session.id, len(summary.problems), len(summary.unscanned_bin_ids),
                len(summary.conflicting_barcodes),
            )
            db.session.rollback()
            return ReconcileOutcome(session=get_closing(session_id), reconciliation=summary, finalized=False)

        now = utcnow()
        for result in summary.counted:
            pack = lock_for_update(db.session.query(LotteryPack).filter_by(id=result.pack_id)).one()
            closing_serial = pack.serial_end if result.depletes_pack else result.serial_position
            db.session.add(ClosingLine(
                closing_session_id=session.id,
                bin_id=result.bin_id,
                pack_id=pack.id,
                outcome=result.outcome.value,
                starting_serial=result.starting_serial,
                closing_serial=closing_serial,
                expected_count=result.expected_count,
                actual_count=result.actual_count,
                difference=result.difference,
                sales_amount_cents=result.sales_amount_cents,
                depleted=result.depletes_pack,
            ))
            if result.depletes_pack:
                mark_depleted(pack, now=now)
            else:
                pack.last_sold_serial = result.serial_position

        cash_flagged = False
        if actual_cash_cents is not None:
            session.actual_cash_cents = actual_cash_cents
            if session.expected_cash_cents is not None:
                session.cash_difference_cents = actual_cash_cents - session.expected_cash_cents
                cash_flagged = cash_variance_exceeds(
                    session.expected_cash_cents,
                    actual_cash_cents,
                    absolute_cents=cash_absolute_cents,
                    percent=cash_percent,
                )

        session.tickets_sold = summary.tickets_sold
        session.sales_amount_cents = summary.sales_amount_cents
        submit_reconciliation(
            session,
            summary.absolute_difference,
            tolerance=ticket_tolerance,
            force_review=cash_flagged,
            now=now,
        )
        db.session.commit()

        logger.info(
            "Closing %s reconciled: %d tickets sold, difference %d, status %s",
            session.id, summary.tickets_sold, summary.absolute_difference,
            CloseStatus(session.status).value,
        )
        return ReconcileOutcome(
            session=session,
            reconciliation=summary,
            finalized=True,
            cash_variance=cash_flagged,
        )

    try:
        return run_with_retry(_op)
    except (ValidationError, ConflictError, NotFoundError):
        db.session.rollback()
        raise


def approve_variance(session_id: int, reason: str | None, *, approved_by: int | None) -> VarianceApprovalRecord:
    """
    Approve a session in VARIANCE_REVIEW and close it.

    Raises:
        ClosingNotFoundError
        CloseStateError: Session not in VARIANCE_REVIEW
        VarianceReasonRequired: Reason empty after trimming
    """
    def _op():
        session = _locked_closing(session_id)
        approval = approve(session, reason, approved_by=approved_by)
        record = VarianceApprovalRecord(
            closing_session_id=session.id,
            reason=approval.reason,
            approved_by=approval.approved_by,
            approved_at=approval.approved_at,
        )
        db.session.add(record)
        db.session.commit()
        logger.info("Closing %s variance approved by %s", session.id, approval.approved_by)
        return record

    try:
        return run_with_retry(_op)
    except (ValidationError, ConflictError, NotFoundError):
        db.session.rollback()
        raise


def get_closing_summary(session_id: int) -> dict:
    session = get_closing(session_id)
    data = session.to_dict()
    data["lines"] = [line.to_dict() for line in session.lines]
    data["approval"] = session.approval.to_dict() if session.approval else None
    return data
