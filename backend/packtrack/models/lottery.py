from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..time_utils import to_utc_z
from ..services.identifier_codec import format_serial
from ..services.pack_lifecycle import PackStatus, ReturnReason, ReturnedPackRecord
from ..services.reconciliation import GameInfo


class LotteryGame(db.Model):
    """
    Scratch game master data.

    The 4-digit code is printed on every ticket and pack barcode, so it is
    the natural key: packs reference games by code, not by surrogate id.
    """
    __tablename__ = "lottery_games"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(4), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)

    # Ticket face value in cents
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    # Used to derive serial_end when receiving from a pack barcode
    tickets_per_pack = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<LotteryGame code={self.code!r} name={self.name!r}>"

    def to_info(self) -> GameInfo:
        return GameInfo(
            code=self.code,
            name=self.name,
            price_cents=self.price_cents or 0,
            tickets_per_pack=self.tickets_per_pack,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "price_cents": self.price_cents,
            "tickets_per_pack": self.tickets_per_pack,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class LotteryBin(db.Model):
    """Physical display slot. Occupancy is derived from ACTIVE packs, never stored here."""
    __tablename__ = "lottery_bins"
    __table_args__ = (
        db.UniqueConstraint("store_id", "bin_number", name="uq_lottery_bins_store_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Multi-store ready (even if you only have one store today)
    store_id = db.Column(db.Integer, nullable=False, default=1, index=True)

    bin_number = db.Column(db.Integer, nullable=False)
    name = db.Column(db.String(64), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<LotteryBin id={self.id} number={self.bin_number} store_id={self.store_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "bin_number": self.bin_number,
            "name": self.name,
            "is_active": self.is_active,
        }


class LotteryPack(db.Model):
    """
    One physical pack of scratch tickets.

    Attribute names match pack_lifecycle.Pack so the lifecycle and
    reconciliation engines operate on rows directly.

    LIFECYCLE:
    RECEIVED -> ACTIVE -> DEPLETED
         \\         \\
          +---------+-> RETURNED

    last_sold_serial is the carry-forward baseline: each close writes the
    scanned position here and the next close counts from it.
    """
    __tablename__ = "lottery_packs"
    __table_args__ = (
        db.UniqueConstraint("store_id", "pack_number", name="uq_lottery_packs_store_pack"),
        db.Index("ix_lottery_packs_store_status", "store_id", "status"),
        db.Index("ix_lottery_packs_bin_status", "bin_id", "status"),
        # A bin holds at most one ACTIVE pack
        db.Index(
            "uq_lottery_packs_active_bin",
            "bin_id",
            unique=True,
            sqlite_where=db.text("status = 'ACTIVE'"),
            postgresql_where=db.text("status = 'ACTIVE'"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, nullable=False, default=1, index=True)

    game_code = db.Column(db.String(4), db.ForeignKey("lottery_games.code"), nullable=False, index=True)

    # Always zero-padded to 7 digits
    pack_number = db.Column(db.String(7), nullable=False)

    serial_start = db.Column(db.Integer, nullable=False)
    serial_end = db.Column(db.Integer, nullable=False)
    ticket_count = db.Column(db.Integer, nullable=False)

    status = db.Column(
        db.Enum(PackStatus, native_enum=False, length=16, name="lottery_pack_status"),
        nullable=False,
        default=PackStatus.RECEIVED,
    )

    bin_id = db.Column(db.Integer, db.ForeignKey("lottery_bins.id"), nullable=True, index=True)
    last_sold_serial = db.Column(db.Integer, nullable=True)

    received_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    activated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    depleted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    returned_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    game = db.relationship("LotteryGame", backref=db.backref("packs", lazy=True))
    bin = db.relationship("LotteryBin", backref=db.backref("packs", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<LotteryPack id={self.id} game={self.game_code} pack={self.pack_number} "
            f"status={PackStatus(self.status).value}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "game_code": self.game_code,
            "game_name": self.game.name if self.game else None,
            "pack_number": self.pack_number,
            "serial_start": format_serial(self.serial_start),
            "serial_end": format_serial(self.serial_end),
            "ticket_count": self.ticket_count,
            "status": PackStatus(self.status).value,
            "bin_id": self.bin_id,
            "bin_number": self.bin.bin_number if self.bin else None,
            "last_sold_serial": format_serial(self.last_sold_serial),
            "received_at": to_utc_z(self.received_at),
            "activated_at": to_utc_z(self.activated_at),
            "depleted_at": to_utc_z(self.depleted_at),
            "returned_at": to_utc_z(self.returned_at),
            "version_id": self.version_id,
        }


class ReturnedPack(db.Model):
    """
    Persisted ReturnedPackRecord.

    WHY: Shift reconciliation must explain a scanned returned pack with its
    game, reason and date even after the pack row is purged. pack_id is
    therefore a plain column with no foreign key, and every display field
    is copied in at return time.

    Rows are append-only; updates are refused at flush time.
    """
    __tablename__ = "returned_packs"
    __table_args__ = (
        db.Index("ix_returned_packs_store_key", "store_id", "game_code", "pack_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, nullable=False, default=1, index=True)

    # Not a foreign key on purpose; see class docstring
    pack_id = db.Column(db.Integer, nullable=True, index=True)

    pack_number = db.Column(db.String(7), nullable=False)
    game_code = db.Column(db.String(4), nullable=False)
    game_name = db.Column(db.String(255), nullable=True)
    bin_number = db.Column(db.Integer, nullable=True)

    activated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    returned_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    return_reason = db.Column(db.String(32), nullable=False)
    return_notes = db.Column(db.Text, nullable=True)

    last_sold_serial = db.Column(db.Integer, nullable=True)
    tickets_sold_on_return = db.Column(db.Integer, nullable=False, default=0)
    return_sales_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    returned_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @classmethod
    def from_record(cls, record: ReturnedPackRecord, *, store_id: int, returned_by: int | None = None) -> "ReturnedPack":
        return cls(
            store_id=store_id,
            pack_id=record.pack_id,
            pack_number=record.pack_number,
            game_code=record.game_code,
            game_name=record.game_name,
            bin_number=record.bin_number,
            activated_at=record.activated_at,
            returned_at=record.returned_at,
            return_reason=record.return_reason.value,
            return_notes=record.return_notes,
            last_sold_serial=record.last_sold_serial,
            tickets_sold_on_return=record.tickets_sold_on_return,
            return_sales_amount_cents=record.return_sales_amount_cents,
            returned_by=returned_by,
        )

    def to_record(self) -> ReturnedPackRecord:
        return ReturnedPackRecord(
            pack_id=self.pack_id,
            pack_number=self.pack_number,
            game_code=self.game_code,
            game_name=self.game_name,
            bin_number=self.bin_number,
            activated_at=self.activated_at,
            returned_at=self.returned_at,
            return_reason=ReturnReason(self.return_reason),
            return_notes=self.return_notes,
            last_sold_serial=self.last_sold_serial,
            tickets_sold_on_return=self.tickets_sold_on_return,
            return_sales_amount_cents=self.return_sales_amount_cents,
        )

    def to_dict(self) -> dict:
        data = self.to_record().to_dict()
        data["id"] = self.id
        data["store_id"] = self.store_id
        data["returned_by"] = self.returned_by
        return data


@event.listens_for(ReturnedPack, "before_update")
def _refuse_returned_pack_update(mapper, connection, target):
    raise ValueError(f"ReturnedPack {target.id} is immutable")
