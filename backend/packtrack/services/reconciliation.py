# Overview: Pure day/shift-close reconciliation of scanned ending serials against active packs.

"""
Reconciliation Engine

WHY: At shift or day close the operator scans every bin's pack. The scan
says where each pack now stands; the difference from where it stood at the
previous close is the number of tickets sold. Anything that does not line
up (a returned pack, an unknown pack, a typo'd barcode) must be reported
as what it is, not folded into a generic "not found".

LOOKUP ORDER (per scan):
    1. Parse. Malformed barcode -> MALFORMED.
    2. ACTIVE packs by (game_code, pack_number) -> MATCHED / VARIANCE.
    3. ReturnedPackRecords by the same key -> PACK_RETURNED, carrying the
       game name, pack number, reason and return date for display.
    4. Otherwise -> PACK_NOT_FOUND.

A key present in both ACTIVE and RETURNED sets is a data inconsistency.
ACTIVE wins and the conflict is logged and attached to the result.

The engine reads plain snapshots supplied by the caller; it never queries
storage and never mutates packs. Depletion is signalled (depletes_pack) and
left to the lifecycle engine.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Mapping

from ..time_utils import to_utc_z, format_display_date
from .identifier_codec import (
    ScanBarcode,
    InvalidBarcodeLength,
    InvalidBarcodeFormat,
    parse_scan_barcode,
    format_serial,
)
from .pack_lifecycle import PackStatus, ReturnedPackRecord, status_of


logger = logging.getLogger(__name__)


class ScanOutcome(str, Enum):
    MATCHED = "MATCHED"
    VARIANCE = "VARIANCE"
    PACK_NOT_FOUND = "PACK_NOT_FOUND"
    PACK_RETURNED = "PACK_RETURNED"
    MALFORMED = "MALFORMED"
    SERIAL_OUT_OF_RANGE = "SERIAL_OUT_OF_RANGE"


COUNTED_OUTCOMES = frozenset({ScanOutcome.MATCHED, ScanOutcome.VARIANCE})


@dataclass(frozen=True)
class GameInfo:
    code: str
    name: str
    price_cents: int = 0
    tickets_per_pack: int | None = None


@dataclass(frozen=True)
class ClosingScan:
    barcode: str
    confirmed_count: int | None = None
    sold_out: bool = False


@dataclass(frozen=True)
class ReconciliationResult:
    outcome: ScanOutcome
    barcode: str
    bin_id: Any = None
    pack_id: Any = None
    expected_count: int | None = None
    actual_count: int | None = None
    difference: int | None = None
    game_code: str | None = None
    game_name: str | None = None
    pack_number: str | None = None
    serial_position: int | None = None
    starting_serial: int | None = None
    depletes_pack: bool = False
    sales_amount_cents: int = 0
    return_reason: str | None = None
    returned_at: datetime | None = None
    error: str | None = None
    warnings: tuple[str, ...] = ()

    @property
    def counted(self) -> bool:
        return self.outcome in COUNTED_OUTCOMES

    def message(self) -> str:
        """Operator-facing copy for this scan."""
        label = self.game_name or f"Game {self.game_code}"
        if self.outcome == ScanOutcome.MALFORMED:
            return f"Invalid barcode: {self.error}"
        if self.outcome == ScanOutcome.PACK_RETURNED:
            reason = (self.return_reason or "").replace("_", " ").lower()
            return (
                f"Pack {self.pack_number} ({label}) was returned on "
                f"{format_display_date(self.returned_at)} ({reason}) and cannot be closed"
            )
        if self.outcome == ScanOutcome.PACK_NOT_FOUND:
            return f"Pack {self.pack_number} for game {self.game_code} is not active in this store"
        if self.outcome == ScanOutcome.SERIAL_OUT_OF_RANGE:
            return f"{label} pack {self.pack_number}: {self.error}"
        if self.outcome == ScanOutcome.VARIANCE:
            return (
                f"{label} pack {self.pack_number}: expected {self.expected_count} sold, "
                f"counted {self.actual_count} (difference {self.difference:+d})"
            )
        return f"{label} pack {self.pack_number}: {self.expected_count} tickets sold"

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "barcode": self.barcode,
            "bin_id": self.bin_id,
            "pack_id": self.pack_id,
            "expected_count": self.expected_count,
            "actual_count": self.actual_count,
            "difference": self.difference,
            "game_code": self.game_code,
            "game_name": self.game_name,
            "pack_number": self.pack_number,
            "serial_position": format_serial(self.serial_position),
            "starting_serial": format_serial(self.starting_serial),
            "depletes_pack": self.depletes_pack,
            "sales_amount_cents": self.sales_amount_cents,
            "return_reason": self.return_reason,
            "returned_at": to_utc_z(self.returned_at),
            "error": self.error,
            "warnings": list(self.warnings),
            "message": self.message(),
        }


@dataclass
class ClosingReconciliation:
    results: list[ReconciliationResult] = field(default_factory=list)
    unscanned_bin_ids: list[Any] = field(default_factory=list)
    duplicate_barcodes: list[str] = field(default_factory=list)
    conflicting_barcodes: list[str] = field(default_factory=list)

    @property
    def counted(self) -> list[ReconciliationResult]:
        return [r for r in self.results if r.counted]

    @property
    def problems(self) -> list[ReconciliationResult]:
        return [r for r in self.results if not r.counted]

    @property
    def needs_rescan(self) -> bool:
        """True when the scan set cannot be finalized as submitted."""
        return bool(self.problems or self.unscanned_bin_ids or self.conflicting_barcodes)

    @property
    def tickets_sold(self) -> int:
        return sum(r.expected_count for r in self.counted)

    @property
    def sales_amount_cents(self) -> int:
        return sum(r.sales_amount_cents for r in self.counted)

    @property
    def total_difference(self) -> int:
        return sum(r.difference for r in self.counted)

    @property
    def absolute_difference(self) -> int:
        """Sum of |difference| so a +1 and a -1 in two bins cannot cancel out."""
        return sum(abs(r.difference) for r in self.counted)

    @property
    def has_variance(self) -> bool:
        return any(r.outcome == ScanOutcome.VARIANCE for r in self.results)

    def to_dict(self) -> dict:
        return {
            "results": [r.to_dict() for r in self.results],
            "unscanned_bin_ids": list(self.unscanned_bin_ids),
            "duplicate_barcodes": list(self.duplicate_barcodes),
            "conflicting_barcodes": list(self.conflicting_barcodes),
            "tickets_sold": self.tickets_sold,
            "sales_amount_cents": self.sales_amount_cents,
            "total_difference": self.total_difference,
            "has_variance": self.has_variance,
        }


def _reading(result: ReconciliationResult) -> tuple:
    return (result.serial_position, result.actual_count, result.depletes_pack)


class ReconciliationEngine:
    """
    Snapshot-backed scan reconciler.

    Args:
        active_packs_by_bin: bin_id -> pack currently ACTIVE in that bin
        returned_records: ReturnedPackRecord snapshots for the store
        games: game_code -> GameInfo for names and prices
    """

    def __init__(
        self,
        active_packs_by_bin: Mapping[Any, Any],
        returned_records: Iterable[ReturnedPackRecord] = (),
        games: Mapping[str, GameInfo] | None = None,
    ):
        self.games = dict(games or {})
        self._active: dict[tuple[str, str], tuple[Any, Any]] = {}
        self._returned: dict[tuple[str, str], ReturnedPackRecord] = {}
        self._bins = list(active_packs_by_bin.keys())

        for bin_id, pack in active_packs_by_bin.items():
            if pack is None:
                continue
            if status_of(pack) != PackStatus.ACTIVE:
                logger.warning(
                    "Pack %s in bin %s is %s, not ACTIVE; ignored for reconciliation",
                    pack.pack_number, bin_id, status_of(pack).value,
                )
                continue
            key = (pack.game_code, pack.pack_number)
            if key in self._active:
                logger.warning(
                    "Pack %s/%s is active in bins %s and %s; keeping the first",
                    key[0], key[1], self._active[key][0], bin_id,
                )
                continue
            self._active[key] = (bin_id, pack)

        for record in returned_records:
            existing = self._returned.get(record.key)
            if existing is None or record.returned_at > existing.returned_at:
                self._returned[record.key] = record

    def _game_name(self, game_code: str) -> str | None:
        game = self.games.get(game_code)
        return game.name if game else None

    def _price(self, game_code: str) -> int:
        game = self.games.get(game_code)
        return game.price_cents if game else 0

    def reconcile(
        self,
        barcode: str,
        *,
        confirmed_count: int | None = None,
        sold_out: bool = False,
    ) -> ReconciliationResult:
        """
        Reconcile one scanned 24-digit barcode.

        Args:
            barcode: Raw scanned value
            confirmed_count: Tickets-sold count the operator confirms; when
                omitted the computed count is taken as confirmed
            sold_out: Operator marked the pack sold out; counts through
                serial_end inclusive

        Returns:
            ReconciliationResult; never raises for bad input
        """
        try:
            parsed = parse_scan_barcode(barcode)
        except (InvalidBarcodeLength, InvalidBarcodeFormat) as e:
            return ReconciliationResult(
                outcome=ScanOutcome.MALFORMED,
                barcode=str(barcode),
                error=str(e),
            )

        active = self._active.get(parsed.key)
        returned = self._returned.get(parsed.key)

        if active is not None:
            warnings = ()
            if returned is not None:
                warning = (
                    f"Pack {parsed.pack_number} (game {parsed.game_code}) is both ACTIVE "
                    f"and recorded as RETURNED on {to_utc_z(returned.returned_at)}; using the active pack"
                )
                logger.warning(warning)
                warnings = (warning,)
            bin_id, pack = active
            return self._reconcile_active(
                parsed, bin_id, pack,
                confirmed_count=confirmed_count,
                sold_out=sold_out,
                warnings=warnings,
            )

        if returned is not None:
            return ReconciliationResult(
                outcome=ScanOutcome.PACK_RETURNED,
                barcode=parsed.raw,
                pack_id=returned.pack_id,
                game_code=returned.game_code,
                game_name=returned.game_name or self._game_name(returned.game_code),
                pack_number=returned.pack_number,
                serial_position=parsed.serial_position,
                return_reason=returned.return_reason.value,
                returned_at=returned.returned_at,
            )

        return ReconciliationResult(
            outcome=ScanOutcome.PACK_NOT_FOUND,
            barcode=parsed.raw,
            game_code=parsed.game_code,
            game_name=self._game_name(parsed.game_code),
            pack_number=parsed.pack_number,
            serial_position=parsed.serial_position,
        )

    def _reconcile_active(
        self,
        parsed: ScanBarcode,
        bin_id,
        pack,
        *,
        confirmed_count: int | None,
        sold_out: bool,
        warnings: tuple[str, ...],
    ) -> ReconciliationResult:
        baseline = pack.last_sold_serial if pack.last_sold_serial is not None else pack.serial_start
        position = parsed.serial_position
        common = dict(
            barcode=parsed.raw,
            bin_id=bin_id,
            pack_id=pack.id,
            game_code=pack.game_code,
            game_name=self._game_name(pack.game_code),
            pack_number=pack.pack_number,
            serial_position=position,
            starting_serial=baseline,
            warnings=warnings,
        )

        if sold_out:
            expected = pack.serial_end + 1 - baseline
            depletes = True
        else:
            if position < baseline or position > pack.serial_end:
                return ReconciliationResult(
                    outcome=ScanOutcome.SERIAL_OUT_OF_RANGE,
                    error=(
                        f"closing serial {format_serial(position)} is outside "
                        f"{format_serial(baseline)}-{format_serial(pack.serial_end)}"
                    ),
                    **common,
                )
            expected = position - baseline
            depletes = position == pack.serial_end

        actual = expected if confirmed_count is None else confirmed_count
        difference = actual - expected
        return ReconciliationResult(
            outcome=ScanOutcome.MATCHED if difference == 0 else ScanOutcome.VARIANCE,
            expected_count=expected,
            actual_count=actual,
            difference=difference,
            depletes_pack=depletes,
            sales_amount_cents=expected * self._price(pack.game_code),
            **common,
        )

    def reconcile_closing(self, scans: Iterable[ClosingScan | str]) -> ClosingReconciliation:
        """
        Reconcile every scan for one close.

        Each scan is processed independently. A pack scanned twice keeps its
        first result; later copies are listed in duplicate_barcodes, and a copy
        that reads differently from the kept scan is also listed in
        conflicting_barcodes. Active bins left without a counted scan are
        listed in unscanned_bin_ids.
        """
        summary = ClosingReconciliation()
        kept: dict[tuple[str, str], ReconciliationResult] = {}
        counted_bins: set[Any] = set()

        for scan in scans:
            if isinstance(scan, str):
                scan = ClosingScan(barcode=scan)
            result = self.reconcile(
                scan.barcode,
                confirmed_count=scan.confirmed_count,
                sold_out=scan.sold_out,
            )
            if result.outcome != ScanOutcome.MALFORMED:
                key = (result.game_code, result.pack_number)
                first = kept.get(key)
                if first is not None:
                    summary.duplicate_barcodes.append(result.barcode)
                    if _reading(first) != _reading(result):
                        summary.conflicting_barcodes.append(result.barcode)
                    continue
                kept[key] = result
            if result.counted:
                counted_bins.add(result.bin_id)
            summary.results.append(result)

        summary.unscanned_bin_ids = [
            bin_id for bin_id in self._bins
            if bin_id not in counted_bins and self._bin_has_active(bin_id)
        ]
        return summary

    def _bin_has_active(self, bin_id) -> bool:
        return any(b == bin_id for b, _ in self._active.values())
