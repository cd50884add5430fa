# Overview: Service-layer operations for lottery packs; persistence around the lifecycle engine.

"""
Pack Service

WHY: pack_lifecycle owns the rules; this module owns the rows. Every
transition here loads the pack under a row lock, hands it to the engine and
commits, so two terminals racing on the same pack cannot both win.

BATCH RECEIVE:
- Up to BATCH_RECEIVE_LIMIT barcodes per call
- Each barcode gets its own outcome (CREATED, DUPLICATE, ERROR,
  GAME_NOT_FOUND) and its own commit; one bad barcode never rolls back
  the packs already received
- A pack scanned twice in the same batch is reported DUPLICATE
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Mapping, Sequence

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import LotteryGame, LotteryBin, LotteryPack, ReturnedPack
from ..validation import ValidationError, ConflictError, NotFoundError
from .concurrency import lock_for_update, run_with_retry
from .identifier_codec import (
    validate_game_code,
    parse_scan_barcode,
    generate_upcs,
    validate_ticket_count,
)
from .pack_lifecycle import (
    PackStatus,
    BinOccupied,
    DuplicatePack,
    receive_pack as lifecycle_receive,
    activate_pack as lifecycle_activate,
    mark_depleted as lifecycle_deplete,
    return_pack as lifecycle_return,
)
from .reconciliation import GameInfo
from .scan_detector import (
    ScanPolicy,
    DEFAULT_POLICY,
    ManualEntryRejected,
    ScanRejected,
    validate_submitted_metrics,
)


logger = logging.getLogger(__name__)

DEFAULT_BATCH_LIMIT = 100
DEFAULT_STORE_ID = 1


class GameNotFoundError(NotFoundError):
    code = "GAME_NOT_FOUND"


class PackNotFoundError(NotFoundError):
    code = "PACK_NOT_FOUND"


class BinNotFoundError(NotFoundError):
    code = "BIN_NOT_FOUND"


class BatchItemStatus(str, Enum):
    CREATED = "CREATED"
    DUPLICATE = "DUPLICATE"
    ERROR = "ERROR"
    GAME_NOT_FOUND = "GAME_NOT_FOUND"


@dataclass
class BatchItemResult:
    barcode: str
    status: BatchItemStatus
    pack: LotteryPack | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "barcode": self.barcode,
            "status": self.status.value,
            "pack": self.pack.to_dict() if self.pack is not None else None,
            "error": self.error,
        }


@dataclass
class BatchReceiveResult:
    items: list[BatchItemResult] = field(default_factory=list)

    def count(self, status: BatchItemStatus) -> int:
        return sum(1 for item in self.items if item.status == status)

    def to_dict(self) -> dict:
        return {
            "items": [item.to_dict() for item in self.items],
            "summary": {
                "total": len(self.items),
                "created": self.count(BatchItemStatus.CREATED),
                "duplicates": self.count(BatchItemStatus.DUPLICATE),
                "errors": self.count(BatchItemStatus.ERROR),
                "games_not_found": self.count(BatchItemStatus.GAME_NOT_FOUND),
            },
        }


# =============================================================================
# GAMES AND BINS
# =============================================================================

def create_game(code: str, name: str, *, price_cents: int = 0, tickets_per_pack: int | None = None) -> LotteryGame:
    """
    Register a scratch game.

    Raises:
        InvalidGameCode: Bad code
        ValidationError: Missing name, negative price, bad tickets_per_pack
        ConflictError: Code already registered
    """
    validate_game_code(code)
    if not name or not name.strip():
        raise ValidationError("name is required")
    if price_cents < 0:
        raise ValidationError("price_cents cannot be negative")
    if tickets_per_pack is not None:
        validate_ticket_count(tickets_per_pack)

    if db.session.query(LotteryGame).filter_by(code=code).first():
        raise ConflictError(f"Game {code} already exists")

    game = LotteryGame(
        code=code,
        name=name.strip(),
        price_cents=price_cents,
        tickets_per_pack=tickets_per_pack,
    )
    db.session.add(game)
    db.session.commit()
    return game


def get_game(code: str) -> LotteryGame:
    game = db.session.query(LotteryGame).filter_by(code=code).first()
    if not game:
        raise GameNotFoundError(f"Game {code} not found")
    return game


def list_games(*, include_inactive: bool = False) -> list[LotteryGame]:
    query = db.session.query(LotteryGame)
    if not include_inactive:
        query = query.filter_by(is_active=True)
    return query.order_by(LotteryGame.code.asc()).all()


def game_infos() -> dict[str, GameInfo]:
    """game_code -> GameInfo for every known game (inactive games still name old packs)."""
    return {game.code: game.to_info() for game in db.session.query(LotteryGame).all()}


def create_bin(store_id: int, bin_number: int, *, name: str | None = None) -> LotteryBin:
    if bin_number < 1:
        raise ValidationError("bin_number must be >= 1")
    existing = db.session.query(LotteryBin).filter_by(store_id=store_id, bin_number=bin_number).first()
    if existing:
        raise ConflictError(f"Bin {bin_number} already exists for store {store_id}")

    lottery_bin = LotteryBin(store_id=store_id, bin_number=bin_number, name=name)
    db.session.add(lottery_bin)
    db.session.commit()
    return lottery_bin


def get_bin(bin_id: int) -> LotteryBin:
    lottery_bin = db.session.query(LotteryBin).filter_by(id=bin_id).first()
    if not lottery_bin:
        raise BinNotFoundError(f"Bin {bin_id} not found")
    return lottery_bin


def list_bins(store_id: int) -> list[LotteryBin]:
    return (
        db.session.query(LotteryBin)
        .filter_by(store_id=store_id)
        .order_by(LotteryBin.bin_number.asc())
        .all()
    )


# =============================================================================
# RECEIVE
# =============================================================================

def verify_scan_metrics(
    metrics: Mapping[str, Any] | None,
    *,
    now_ms: int,
    policy: ScanPolicy = DEFAULT_POLICY,
    max_age_ms: int = 120_000,
) -> None:
    """
    Server-side scan-only gate for a submitted scan.

    Does nothing when enforcement is off. With enforcement on, metrics are
    mandatory and must re-analyze as scanner input.

    Raises:
        ManualEntryRejected: Missing, tampered or non-scanner metrics
    """
    if not policy.enforce:
        return
    if not metrics:
        raise ManualEntryRejected("scan_metrics are required: please scan the barcode")
    if not isinstance(metrics, Mapping):
        raise ManualEntryRejected("scan_metrics must be an object")

    verdict = validate_submitted_metrics(metrics, now_ms=now_ms, policy=policy, max_age_ms=max_age_ms)
    if verdict.valid:
        return
    if verdict.tampered:
        logger.warning("Tampered scan metrics rejected: %s", verdict.reason)
    raise ManualEntryRejected(
        f"Scan rejected: {verdict.reason}. Please scan the barcode.",
        metrics=verdict.reanalyzed,
    )


def _pack_exists(store_id: int):
    def check(padded_pack_number: str) -> bool:
        return (
            db.session.query(LotteryPack.id)
            .filter_by(store_id=store_id, pack_number=padded_pack_number)
            .first()
            is not None
        )
    return check


def _new_pack(store_id: int):
    def factory(**kwargs) -> LotteryPack:
        return LotteryPack(store_id=store_id, **kwargs)
    return factory


def receive_pack(
    store_id: int,
    game_code: str,
    pack_number: str,
    serial_start: int,
    serial_end: int | None = None,
    *,
    ticket_count: int | None = None,
) -> LotteryPack:
    """
    Receive one pack into back-office inventory (status RECEIVED).

    serial_end may be omitted when the game defines tickets_per_pack.

    Raises:
        GameNotFoundError: Unknown game code
        DuplicatePack: Pack number already received for this store
        ValidationError subclasses: Bad identifiers or serials
    """
    validate_game_code(game_code)
    game = get_game(game_code)

    if serial_end is None:
        if not game.tickets_per_pack:
            raise ValidationError(
                f"serial_end is required: game {game_code} has no tickets_per_pack"
            )
        serial_end = serial_start + game.tickets_per_pack - 1

    pack = lifecycle_receive(
        game_code,
        pack_number,
        serial_start,
        serial_end,
        ticket_count=ticket_count,
        pack_exists=_pack_exists(store_id),
        factory=_new_pack(store_id),
    )
    db.session.add(pack)
    try:
        db.session.commit()
    except IntegrityError:
        # Lost the race against a concurrent receive of the same pack
        db.session.rollback()
        raise DuplicatePack(f"Pack {pack.pack_number} already exists for this store")
    return pack


def receive_pack_from_barcode(store_id: int, barcode: str) -> LotteryPack:
    """Receive a pack from its 24-digit scan barcode; the scanned serial is serial_start."""
    parsed = parse_scan_barcode(barcode)
    return receive_pack(
        store_id,
        parsed.game_code,
        parsed.pack_number,
        parsed.serial_position,
    )


def receive_packs_batch(
    store_id: int,
    barcodes: Iterable[str],
    *,
    limit: int = DEFAULT_BATCH_LIMIT,
    scan_metrics: Sequence[Mapping[str, Any] | None] | None = None,
    verify: Callable[[Mapping[str, Any] | None], None] | None = None,
) -> BatchReceiveResult:
    """
    Receive many packs from scan barcodes.

    Args:
        store_id: Receiving store
        barcodes: Scanned 24-digit barcodes
        limit: Maximum barcodes per call
        scan_metrics: Per-barcode scan metrics, parallel to barcodes
        verify: Scan-only gate applied to each barcode's metrics; an item
            whose metrics are rejected is reported as ERROR

    Returns:
        BatchReceiveResult with one item per barcode, in input order

    Raises:
        ValidationError: Empty batch or more than limit barcodes
    """
    barcodes = list(barcodes)
    if not barcodes:
        raise ValidationError("barcodes must contain at least one barcode")
    if len(barcodes) > limit:
        raise ValidationError(f"Batch size exceeds maximum of {limit} barcodes")
    if scan_metrics is not None and len(scan_metrics) != len(barcodes):
        raise ValidationError("scan_metrics must have one entry per barcode")

    result = BatchReceiveResult()
    seen: set[tuple[str, str]] = set()

    for index, barcode in enumerate(barcodes):
        if verify is not None:
            try:
                verify(scan_metrics[index] if scan_metrics is not None else None)
            except ScanRejected as e:
                result.items.append(BatchItemResult(str(barcode), BatchItemStatus.ERROR, error=str(e)))
                continue

        try:
            parsed = parse_scan_barcode(barcode)
        except ValidationError as e:
            result.items.append(BatchItemResult(str(barcode), BatchItemStatus.ERROR, error=str(e)))
            continue

        if parsed.key in seen:
            result.items.append(
                BatchItemResult(barcode, BatchItemStatus.DUPLICATE, error="Duplicate barcode in batch")
            )
            continue
        seen.add(parsed.key)

        try:
            pack = receive_pack(store_id, parsed.game_code, parsed.pack_number, parsed.serial_position)
        except GameNotFoundError as e:
            result.items.append(BatchItemResult(barcode, BatchItemStatus.GAME_NOT_FOUND, error=str(e)))
        except DuplicatePack as e:
            result.items.append(BatchItemResult(barcode, BatchItemStatus.DUPLICATE, error=str(e)))
        except (ValidationError, ConflictError) as e:
            db.session.rollback()
            logger.warning("Batch receive item %s failed: %s", barcode, e)
            result.items.append(BatchItemResult(barcode, BatchItemStatus.ERROR, error=str(e)))
        else:
            result.items.append(BatchItemResult(barcode, BatchItemStatus.CREATED, pack=pack))

    return result


# =============================================================================
# TRANSITIONS
# =============================================================================

def get_pack(pack_id: int) -> LotteryPack:
    pack = db.session.query(LotteryPack).filter_by(id=pack_id).first()
    if not pack:
        raise PackNotFoundError(f"Pack {pack_id} not found")
    return pack


def _locked_pack(pack_id: int) -> LotteryPack:
    pack = lock_for_update(db.session.query(LotteryPack).filter_by(id=pack_id)).first()
    if not pack:
        raise PackNotFoundError(f"Pack {pack_id} not found")
    return pack


def activate_pack(pack_id: int, bin_id: int) -> LotteryPack:
    """
    Put a RECEIVED pack on display in a bin.

    Raises:
        PackNotFoundError, BinNotFoundError
        ValidationError: Bin inactive or in another store
        InvalidStateTransition: Pack not RECEIVED
        BinOccupied: Bin already holds an ACTIVE pack
    """
    def _op():
        pack = _locked_pack(pack_id)
        # Lock the bin row too: an empty bin has no occupant row to lock
        lottery_bin = lock_for_update(db.session.query(LotteryBin).filter_by(id=bin_id)).first()
        if not lottery_bin:
            raise BinNotFoundError(f"Bin {bin_id} not found")
        if not lottery_bin.is_active:
            raise ValidationError(f"Bin {lottery_bin.bin_number} is inactive")
        if lottery_bin.store_id != pack.store_id:
            raise ValidationError("Bin does not belong to this store")

        occupant = lock_for_update(
            db.session.query(LotteryPack).filter_by(bin_id=lottery_bin.id, status=PackStatus.ACTIVE)
        ).first()
        bin_number = lottery_bin.bin_number
        lifecycle_activate(pack, lottery_bin.id, bin_occupant=occupant)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise BinOccupied(f"Bin {bin_number} already has an active pack")
        return pack

    try:
        return run_with_retry(_op)
    except (ValidationError, ConflictError, NotFoundError):
        db.session.rollback()
        raise


def mark_pack_depleted(pack_id: int) -> LotteryPack:
    """Mark an ACTIVE pack sold out outside of a close (e.g. last ticket sold mid-shift)."""
    def _op():
        pack = _locked_pack(pack_id)
        lifecycle_deplete(pack)
        db.session.commit()
        return pack

    try:
        return run_with_retry(_op)
    except (ValidationError, ConflictError, NotFoundError):
        db.session.rollback()
        raise


def return_pack(
    pack_id: int,
    reason: str,
    *,
    notes: str | None = None,
    last_sold_serial: int | None = None,
    returned_by: int | None = None,
) -> ReturnedPack:
    """
    Return a RECEIVED or ACTIVE pack and persist its snapshot.

    The pack row and the ReturnedPack snapshot are committed together.

    Raises:
        PackNotFoundError
        InvalidStateTransition: Pack already DEPLETED or RETURNED
        InvalidReturnReason, InvalidSerial
    """
    def _op():
        pack = _locked_pack(pack_id)
        game = pack.game
        record = lifecycle_return(
            pack,
            reason,
            notes=notes,
            last_sold_serial=last_sold_serial,
            game_name=game.name if game else None,
            price_cents=game.price_cents if game else 0,
            bin_number=pack.bin.bin_number if pack.bin else None,
        )
        row = ReturnedPack.from_record(record, store_id=pack.store_id, returned_by=returned_by)
        db.session.add(row)
        db.session.commit()
        logger.info(
            "Pack %s (game %s) returned: %s, %d tickets sold",
            record.pack_number, record.game_code, record.return_reason.value,
            record.tickets_sold_on_return,
        )
        return row

    try:
        return run_with_retry(_op)
    except (ValidationError, ConflictError, NotFoundError):
        db.session.rollback()
        raise


# =============================================================================
# QUERIES
# =============================================================================

def get_returned_pack(pack_id: int) -> ReturnedPack:
    """Latest return snapshot for a pack id (works after the pack row is purged)."""
    row = (
        db.session.query(ReturnedPack)
        .filter_by(pack_id=pack_id)
        .order_by(ReturnedPack.returned_at.desc(), ReturnedPack.id.desc())
        .first()
    )
    if not row:
        raise NotFoundError(f"No return recorded for pack {pack_id}")
    return row


def list_packs(
    store_id: int,
    *,
    status: PackStatus | str | None = None,
    game_code: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[LotteryPack]:
    query = db.session.query(LotteryPack).filter_by(store_id=store_id)
    if status is not None:
        try:
            status = PackStatus(status)
        except ValueError:
            raise ValidationError(
                f"Invalid status '{status}'. Must be one of: {', '.join(s.value for s in PackStatus)}"
            )
        query = query.filter_by(status=status)
    if game_code is not None:
        query = query.filter_by(game_code=game_code)
    return (
        query.order_by(LotteryPack.received_at.desc(), LotteryPack.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def active_packs_by_bin(store_id: int) -> dict[int, LotteryPack]:
    """bin_id -> ACTIVE pack, for every bin of the store that holds one."""
    packs = (
        db.session.query(LotteryPack)
        .filter_by(store_id=store_id, status=PackStatus.ACTIVE)
        .filter(LotteryPack.bin_id.isnot(None))
        .order_by(LotteryPack.bin_id.asc())
        .all()
    )
    return {pack.bin_id: pack for pack in packs}


def returned_records(store_id: int) -> list:
    rows = db.session.query(ReturnedPack).filter_by(store_id=store_id).all()
    return [row.to_record() for row in rows]


def ticket_upcs_for_pack(pack_id: int) -> list[str]:
    pack = get_pack(pack_id)
    return generate_upcs(pack.game_code, pack.pack_number, pack.ticket_count)
