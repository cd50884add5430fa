# Overview: Pure state machine for one lottery pack; receive, activate, deplete and return.

"""
Pack Lifecycle Engine

================================================================================
PURPOSE: Enforce RECEIVED -> ACTIVE -> DEPLETED / RETURNED for lottery packs
================================================================================

STATE MACHINE:
    RECEIVED -> ACTIVE -> DEPLETED
         \\         \\
          +---------+-> RETURNED

    RECEIVED: Pack is in the back office, not on display, nothing sold
    ACTIVE:   Pack sits in exactly one bin and is being sold
    DEPLETED: Every ticket sold (terminal)
    RETURNED: Sent back to the lottery (terminal, snapshot recorded)

RULES (NON-NEGOTIABLE):
1. DEPLETED and RETURNED are terminal
2. A bin holds at most one ACTIVE pack
3. A return always produces an immutable ReturnedPackRecord snapshot
4. Validation runs before any field is touched; a failed call leaves the
   pack exactly as it was

The functions here operate on any object carrying the Pack attributes, so
the persistence layer passes its ORM rows straight through. The engine never
locks; callers serialize transitions per pack (see concurrency.lock_for_update).
================================================================================
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from ..time_utils import utcnow, to_utc_z
from ..validation import ValidationError, ConflictError
from .identifier_codec import (
    validate_game_code,
    normalize_pack_number,
    validate_ticket_count,
    format_serial,
)


MAX_SERIAL = 999


class PackStatus(str, Enum):
    RECEIVED = "RECEIVED"
    ACTIVE = "ACTIVE"
    DEPLETED = "DEPLETED"
    RETURNED = "RETURNED"


class ReturnReason(str, Enum):
    SUPPLIER_RECALL = "SUPPLIER_RECALL"
    DAMAGED = "DAMAGED"
    EXPIRED = "EXPIRED"
    INVENTORY_ADJUSTMENT = "INVENTORY_ADJUSTMENT"
    STORE_CLOSURE = "STORE_CLOSURE"
    OTHER = "OTHER"


TRANSITIONS: dict[PackStatus, frozenset[PackStatus]] = {
    PackStatus.RECEIVED: frozenset({PackStatus.ACTIVE, PackStatus.RETURNED}),
    PackStatus.ACTIVE: frozenset({PackStatus.DEPLETED, PackStatus.RETURNED}),
    PackStatus.DEPLETED: frozenset(),
    PackStatus.RETURNED: frozenset(),
}


class InvalidSerial(ValidationError):
    code = "INVALID_SERIAL"


class InvalidReturnReason(ValidationError):
    code = "INVALID_RETURN_REASON"


class InvalidStateTransition(ConflictError):
    code = "INVALID_STATE_TRANSITION"


class BinOccupied(ConflictError):
    code = "BIN_OCCUPIED"


class DuplicatePack(ConflictError):
    code = "DUPLICATE_PACK"


@dataclass
class Pack:
    """In-memory pack; the ORM model LotteryPack exposes the same attributes."""

    game_code: str
    pack_number: str
    serial_start: int
    serial_end: int
    ticket_count: int
    status: PackStatus = PackStatus.RECEIVED
    id: Any = None
    bin_id: Any = None
    received_at: datetime | None = None
    activated_at: datetime | None = None
    depleted_at: datetime | None = None
    returned_at: datetime | None = None
    last_sold_serial: int | None = None


@dataclass(frozen=True)
class ReturnedPackRecord:
    """
    Snapshot taken the moment a pack is returned.

    Owns copies of every field it shows, so purging or editing the pack row
    later cannot change what was recorded.
    """

    pack_id: Any
    pack_number: str
    game_code: str
    game_name: str | None
    bin_number: int | None
    activated_at: datetime | None
    returned_at: datetime
    return_reason: ReturnReason
    return_notes: str | None
    last_sold_serial: int | None
    tickets_sold_on_return: int
    return_sales_amount_cents: int

    @property
    def key(self) -> tuple[str, str]:
        return (self.game_code, self.pack_number)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["return_reason"] = self.return_reason.value
        data["activated_at"] = to_utc_z(self.activated_at)
        data["returned_at"] = to_utc_z(self.returned_at)
        data["last_sold_serial"] = format_serial(self.last_sold_serial)
        return data


def status_of(pack) -> PackStatus:
    return PackStatus(pack.status)


def can_transition(from_status: PackStatus | str, to_status: PackStatus | str) -> bool:
    """True when the transition table allows from_status -> to_status."""
    return PackStatus(to_status) in TRANSITIONS[PackStatus(from_status)]


def allowed_transitions(status: PackStatus | str) -> frozenset[PackStatus]:
    return TRANSITIONS[PackStatus(status)]


def is_terminal(status: PackStatus | str) -> bool:
    return not TRANSITIONS[PackStatus(status)]


def _require_transition(pack, to_status: PackStatus, action: str) -> None:
    current = status_of(pack)
    if not can_transition(current, to_status):
        allowed = sorted(s.value for s, targets in TRANSITIONS.items() if to_status in targets)
        raise InvalidStateTransition(
            f"Cannot {action} pack {pack.pack_number}: "
            f"current status is '{current.value}', must be one of: {', '.join(allowed)}"
        )


def _validate_serial(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidSerial(f"{field} must be an integer")
    if value < 0 or value > MAX_SERIAL:
        raise InvalidSerial(f"{field} must be between 0 and {MAX_SERIAL}, got {value}")
    return value


def receive_pack(
    game_code: str,
    pack_number: str,
    serial_start: int,
    serial_end: int,
    *,
    ticket_count: int | None = None,
    pack_exists: Callable[[str], bool] | None = None,
    now: datetime | None = None,
    factory: Callable[..., Any] = Pack,
):
    """
    Create a pack in RECEIVED status.

    Args:
        game_code: 4-digit game code
        pack_number: 1-7 digit pack number (stored zero-padded to 7)
        serial_start: First ticket serial in the pack
        serial_end: Last ticket serial in the pack
        ticket_count: Explicit count; defaults to serial_end - serial_start + 1
        pack_exists: Store-level uniqueness check supplied by the persistence
            layer; called with the padded pack number
        factory: Pack constructor (the ORM model when persisting)

    Raises:
        InvalidGameCode, InvalidPackNumber, InvalidSerial, InvalidTicketCount
        DuplicatePack: If pack_exists reports the pack number is taken
    """
    validate_game_code(game_code)
    padded = normalize_pack_number(pack_number)
    _validate_serial(serial_start, "serial_start")
    _validate_serial(serial_end, "serial_end")
    if serial_start > serial_end:
        raise InvalidSerial(
            f"serial_start ({serial_start}) must not exceed serial_end ({serial_end})"
        )

    if ticket_count is None:
        ticket_count = serial_end - serial_start + 1
    validate_ticket_count(ticket_count)

    if pack_exists is not None and pack_exists(padded):
        raise DuplicatePack(f"Pack {padded} already exists for this store")

    return factory(
        game_code=game_code,
        pack_number=padded,
        serial_start=serial_start,
        serial_end=serial_end,
        ticket_count=ticket_count,
        status=PackStatus.RECEIVED,
        received_at=now or utcnow(),
    )


def activate_pack(pack, bin_id, *, bin_occupant=None, now: datetime | None = None):
    """
    Put a RECEIVED pack on display in a bin (RECEIVED -> ACTIVE).

    bin_occupant is the pack currently ACTIVE in that bin according to the
    caller's snapshot, or None for an empty bin.

    Raises:
        InvalidStateTransition: If the pack is not RECEIVED
        BinOccupied: If another ACTIVE pack already sits in the bin
    """
    _require_transition(pack, PackStatus.ACTIVE, "activate")
    if bin_id is None:
        raise ValidationError("bin_id is required to activate a pack")

    if (
        bin_occupant is not None
        and bin_occupant is not pack
        and status_of(bin_occupant) == PackStatus.ACTIVE
    ):
        raise BinOccupied(
            f"Bin {bin_id} already holds active pack {bin_occupant.pack_number}"
        )

    pack.status = PackStatus.ACTIVE
    pack.bin_id = bin_id
    pack.activated_at = now or utcnow()
    return pack


def mark_depleted(pack, *, now: datetime | None = None):
    """
    Mark an ACTIVE pack sold out (ACTIVE -> DEPLETED).

    Triggered when the closing scan lands on serial_end. bin_id is kept for
    history; occupancy only ever counts ACTIVE packs.
    """
    _require_transition(pack, PackStatus.DEPLETED, "deplete")
    pack.status = PackStatus.DEPLETED
    pack.depleted_at = now or utcnow()
    pack.last_sold_serial = pack.serial_end
    return pack


def return_pack(
    pack,
    reason: ReturnReason | str,
    *,
    notes: str | None = None,
    last_sold_serial: int | None = None,
    game_name: str | None = None,
    price_cents: int | None = None,
    bin_number: int | None = None,
    now: datetime | None = None,
) -> ReturnedPackRecord:
    """
    Return a RECEIVED or ACTIVE pack to the lottery.

    Args:
        pack: Pack being returned
        reason: ReturnReason (OTHER requires notes)
        notes: Free-text detail
        last_sold_serial: Serial of the last ticket sold before the return
        game_name, price_cents, bin_number: Display data copied into the snapshot

    Returns:
        The immutable ReturnedPackRecord. The pack itself ends RETURNED with
        its bin association cleared.

    Raises:
        InvalidStateTransition: If the pack is DEPLETED or RETURNED
        InvalidReturnReason: Unknown reason, or OTHER without notes
        InvalidSerial: last_sold_serial outside the pack's serial range
    """
    _require_transition(pack, PackStatus.RETURNED, "return")

    try:
        reason = ReturnReason(reason)
    except ValueError:
        raise InvalidReturnReason(
            f"Invalid return_reason '{reason}'. Must be one of: "
            f"{', '.join(r.value for r in ReturnReason)}"
        )

    notes = notes.strip() if isinstance(notes, str) else None
    notes = notes or None
    if reason == ReturnReason.OTHER and not notes:
        raise InvalidReturnReason("Notes are required when return_reason is OTHER")

    if last_sold_serial is not None:
        _validate_serial(last_sold_serial, "last_sold_serial")
        if not pack.serial_start <= last_sold_serial <= pack.serial_end:
            raise InvalidSerial(
                f"last_sold_serial {format_serial(last_sold_serial)} is outside pack range "
                f"{format_serial(pack.serial_start)}-{format_serial(pack.serial_end)}"
            )
        tickets_sold = last_sold_serial - pack.serial_start + 1
    else:
        tickets_sold = 0

    returned_at = now or utcnow()
    record = ReturnedPackRecord(
        pack_id=pack.id,
        pack_number=pack.pack_number,
        game_code=pack.game_code,
        game_name=game_name,
        bin_number=bin_number,
        activated_at=pack.activated_at,
        returned_at=returned_at,
        return_reason=reason,
        return_notes=notes,
        last_sold_serial=last_sold_serial,
        tickets_sold_on_return=tickets_sold,
        return_sales_amount_cents=tickets_sold * (price_cents or 0),
    )

    pack.status = PackStatus.RETURNED
    pack.returned_at = returned_at
    if last_sold_serial is not None:
        pack.last_sold_serial = last_sold_serial
    pack.bin_id = None
    return record
