from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from ..services.identifier_codec import format_serial
from ..services.variance_workflow import CloseStatus, SubjectKind


class ClosingSession(db.Model):
    """
    Shift or business-day close.

    Attribute names match variance_workflow.CloseSubject so the workflow
    functions drive rows directly.

    LIFECYCLE:
    OPEN -> CLOSING -> CLOSED
                   \\
                    -> VARIANCE_REVIEW -> CLOSED

    difference is the absolute ticket variance summed over bins; cash
    variance is kept separately in cash_difference_cents.
    """
    __tablename__ = "closing_sessions"
    __table_args__ = (
        db.Index("ix_closing_sessions_store_kind_date", "store_id", "kind", "business_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, nullable=False, default=1, index=True)

    kind = db.Column(
        db.Enum(SubjectKind, native_enum=False, length=8, name="closing_kind"),
        nullable=False,
        default=SubjectKind.DAY,
    )
    status = db.Column(
        db.Enum(CloseStatus, native_enum=False, length=16, name="closing_status"),
        nullable=False,
        default=CloseStatus.OPEN,
        index=True,
    )
    business_date = db.Column(db.Date, nullable=False)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    closing_started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Reconciliation totals
    difference = db.Column(db.Integer, nullable=True)
    tickets_sold = db.Column(db.Integer, nullable=True)
    sales_amount_cents = db.Column(db.Integer, nullable=True)

    # Cash drawer (shift closes)
    expected_cash_cents = db.Column(db.Integer, nullable=True)
    actual_cash_cents = db.Column(db.Integer, nullable=True)
    cash_difference_cents = db.Column(db.Integer, nullable=True)

    # Variance approval
    variance_reason = db.Column(db.Text, nullable=True)
    approved_by = db.Column(db.Integer, nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship(
        "ClosingLine",
        backref="closing_session",
        lazy=True,
        order_by="ClosingLine.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<ClosingSession id={self.id} kind={SubjectKind(self.kind).value} status={CloseStatus(self.status).value}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "kind": SubjectKind(self.kind).value,
            "status": CloseStatus(self.status).value,
            "business_date": self.business_date.isoformat() if self.business_date else None,
            "opened_at": to_utc_z(self.opened_at),
            "closing_started_at": to_utc_z(self.closing_started_at),
            "closed_at": to_utc_z(self.closed_at),
            "difference": self.difference,
            "tickets_sold": self.tickets_sold,
            "sales_amount_cents": self.sales_amount_cents,
            "expected_cash_cents": self.expected_cash_cents,
            "actual_cash_cents": self.actual_cash_cents,
            "cash_difference_cents": self.cash_difference_cents,
            "variance_reason": self.variance_reason,
            "approved_by": self.approved_by,
            "approved_at": to_utc_z(self.approved_at),
            "version_id": self.version_id,
        }


class ClosingLine(db.Model):
    """One counted bin in a finalized close."""
    __tablename__ = "closing_lines"
    __table_args__ = (
        db.UniqueConstraint("closing_session_id", "pack_id", name="uq_closing_lines_session_pack"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    closing_session_id = db.Column(db.Integer, db.ForeignKey("closing_sessions.id"), nullable=False, index=True)
    bin_id = db.Column(db.Integer, db.ForeignKey("lottery_bins.id"), nullable=True)
    pack_id = db.Column(db.Integer, db.ForeignKey("lottery_packs.id"), nullable=False, index=True)

    outcome = db.Column(db.String(32), nullable=False)
    starting_serial = db.Column(db.Integer, nullable=False)
    closing_serial = db.Column(db.Integer, nullable=False)
    expected_count = db.Column(db.Integer, nullable=False)
    actual_count = db.Column(db.Integer, nullable=False)
    difference = db.Column(db.Integer, nullable=False)
    sales_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    depleted = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "closing_session_id": self.closing_session_id,
            "bin_id": self.bin_id,
            "pack_id": self.pack_id,
            "outcome": self.outcome,
            "starting_serial": format_serial(self.starting_serial),
            "closing_serial": format_serial(self.closing_serial),
            "expected_count": self.expected_count,
            "actual_count": self.actual_count,
            "difference": self.difference,
            "sales_amount_cents": self.sales_amount_cents,
            "depleted": self.depleted,
        }


class VarianceApprovalRecord(db.Model):
    """Persisted VarianceApproval. One per session; written once, when the session closes."""
    __tablename__ = "variance_approvals"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    closing_session_id = db.Column(
        db.Integer, db.ForeignKey("closing_sessions.id"), nullable=False, unique=True
    )
    reason = db.Column(db.Text, nullable=False)
    approved_by = db.Column(db.Integer, nullable=False)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=False)

    closing_session = db.relationship(
        "ClosingSession",
        backref=db.backref("approval", uselist=False, lazy=True),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "subject_id": self.closing_session_id,
            "reason": self.reason,
            "approved_by": self.approved_by,
            "approved_at": to_utc_z(self.approved_at),
        }
