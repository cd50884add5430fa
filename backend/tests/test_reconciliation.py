"""
Reconciliation engine tests (snapshots only, no database).
"""

import logging
from datetime import datetime

import pytest

from packtrack.services.pack_lifecycle import (
    Pack,
    PackStatus,
    ReturnReason,
    ReturnedPackRecord,
)
from packtrack.services.reconciliation import (
    ClosingScan,
    GameInfo,
    ReconciliationEngine,
    ScanOutcome,
)


GAMES = {
    "0033": GameInfo(code="0033", name="Lucky 7s", price_cents=500, tickets_per_pack=150),
    "0044": GameInfo(code="0044", name="Cash Blast", price_cents=200, tickets_per_pack=50),
}


def barcode(game_code, pack_number, serial):
    return f"{game_code}{pack_number}{serial:03d}" + "0" * 10


def active_pack(pack_id, game_code="0033", pack_number="5633005", start=0, end=149, last_sold=None, bin_id=1):
    return Pack(
        id=pack_id,
        game_code=game_code,
        pack_number=pack_number,
        serial_start=start,
        serial_end=end,
        ticket_count=end - start + 1,
        status=PackStatus.ACTIVE,
        bin_id=bin_id,
        last_sold_serial=last_sold,
    )


def returned_record(pack_number="7777777", game_code="0033", returned_at=datetime(2026, 1, 5, 15, 0), reason=ReturnReason.DAMAGED):
    return ReturnedPackRecord(
        pack_id=99,
        pack_number=pack_number,
        game_code=game_code,
        game_name="Lucky 7s",
        bin_number=2,
        activated_at=datetime(2026, 1, 1, 9, 0),
        returned_at=returned_at,
        return_reason=reason,
        return_notes=None,
        last_sold_serial=None,
        tickets_sold_on_return=0,
        return_sales_amount_cents=0,
    )


@pytest.fixture
def engine():
    packs = {
        1: active_pack(1, pack_number="5633005", bin_id=1),
        2: active_pack(2, game_code="0044", pack_number="1000001", start=0, end=49, last_sold=20, bin_id=2),
    }
    return ReconciliationEngine(packs, [returned_record()], GAMES)


class TestReconcileOne:

    def test_matched(self, engine):
        result = engine.reconcile(barcode("0033", "5633005", 12))
        assert result.outcome == ScanOutcome.MATCHED
        assert result.bin_id == 1
        assert result.pack_id == 1
        assert result.starting_serial == 0
        assert result.expected_count == 12
        assert result.actual_count == 12
        assert result.difference == 0
        assert result.sales_amount_cents == 6_000
        assert result.depletes_pack is False

    def test_baseline_is_last_sold_serial(self, engine):
        result = engine.reconcile(barcode("0044", "1000001", 30))
        assert result.starting_serial == 20
        assert result.expected_count == 10
        assert result.sales_amount_cents == 2_000

    def test_variance_when_confirmed_count_differs(self, engine):
        result = engine.reconcile(barcode("0033", "5633005", 12), confirmed_count=10)
        assert result.outcome == ScanOutcome.VARIANCE
        assert result.difference == -2
        assert "difference -2" in result.message()

    def test_scan_at_serial_end_depletes(self, engine):
        result = engine.reconcile(barcode("0033", "5633005", 149))
        assert result.outcome == ScanOutcome.MATCHED
        assert result.expected_count == 149
        assert result.depletes_pack is True

    def test_sold_out_counts_through_serial_end(self, engine):
        result = engine.reconcile(barcode("0033", "5633005", 0), sold_out=True)
        assert result.expected_count == 150
        assert result.depletes_pack is True

    def test_serial_before_baseline(self, engine):
        result = engine.reconcile(barcode("0044", "1000001", 10))
        assert result.outcome == ScanOutcome.SERIAL_OUT_OF_RANGE
        assert not result.counted
        assert "outside 020-049" in result.error

    def test_serial_after_end(self, engine):
        result = engine.reconcile(barcode("0044", "1000001", 50))
        assert result.outcome == ScanOutcome.SERIAL_OUT_OF_RANGE

    def test_returned_pack_reports_return_details(self, engine):
        result = engine.reconcile(barcode("0033", "7777777", 5))
        assert result.outcome == ScanOutcome.PACK_RETURNED
        assert result.return_reason == "DAMAGED"
        assert result.game_name == "Lucky 7s"
        assert result.pack_number == "7777777"
        message = result.message()
        assert "was returned on Jan 05, 2026" in message
        assert "damaged" in message

    def test_unknown_pack(self, engine):
        result = engine.reconcile(barcode("0033", "1234567", 5))
        assert result.outcome == ScanOutcome.PACK_NOT_FOUND
        assert result.pack_number == "1234567"
        assert result.bin_id is None

    def test_same_pack_number_other_game_not_found(self, engine):
        result = engine.reconcile(barcode("0044", "5633005", 5))
        assert result.outcome == ScanOutcome.PACK_NOT_FOUND

    @pytest.mark.parametrize("value", ["", "123", "0033563300501200000000x0", None])
    def test_malformed(self, engine, value):
        result = engine.reconcile(value)
        assert result.outcome == ScanOutcome.MALFORMED
        assert result.error
        assert result.message().startswith("Invalid barcode")

    def test_latest_return_wins(self):
        older = returned_record(returned_at=datetime(2025, 6, 1), reason=ReturnReason.EXPIRED)
        newer = returned_record(returned_at=datetime(2026, 1, 5), reason=ReturnReason.SUPPLIER_RECALL)
        engine = ReconciliationEngine({}, [newer, older], GAMES)
        result = engine.reconcile(barcode("0033", "7777777", 1))
        assert result.return_reason == "SUPPLIER_RECALL"

    def test_active_wins_over_returned(self, caplog):
        packs = {1: active_pack(1, pack_number="7777777")}
        engine = ReconciliationEngine(packs, [returned_record()], GAMES)
        with caplog.at_level(logging.WARNING, logger="packtrack.services.reconciliation"):
            result = engine.reconcile(barcode("0033", "7777777", 3))
        assert result.outcome == ScanOutcome.MATCHED
        assert len(result.warnings) == 1
        assert "both ACTIVE" in caplog.text

    def test_non_active_snapshot_ignored(self):
        pack = active_pack(1)
        pack.status = PackStatus.RECEIVED
        engine = ReconciliationEngine({1: pack}, [], GAMES)
        assert engine.reconcile(barcode("0033", "5633005", 3)).outcome == ScanOutcome.PACK_NOT_FOUND

    def test_to_dict(self, engine):
        data = engine.reconcile(barcode("0033", "5633005", 7)).to_dict()
        assert data["outcome"] == "MATCHED"
        assert data["serial_position"] == "007"
        assert data["starting_serial"] == "000"
        assert data["message"] == "Lucky 7s pack 5633005: 7 tickets sold"


class TestReconcileClosing:

    def test_totals(self, engine):
        summary = engine.reconcile_closing([
            barcode("0033", "5633005", 12),
            ClosingScan(barcode=barcode("0044", "1000001", 30), confirmed_count=11),
        ])
        assert len(summary.counted) == 2
        assert summary.tickets_sold == 22
        assert summary.sales_amount_cents == 6_000 + 2_000
        assert summary.total_difference == 1
        assert summary.absolute_difference == 1
        assert summary.has_variance
        assert summary.unscanned_bin_ids == []

    def test_offsetting_differences_do_not_cancel(self, engine):
        summary = engine.reconcile_closing([
            ClosingScan(barcode=barcode("0033", "5633005", 12), confirmed_count=13),
            ClosingScan(barcode=barcode("0044", "1000001", 30), confirmed_count=9),
        ])
        assert summary.total_difference == 0
        assert summary.absolute_difference == 2

    def test_unscanned_bins_listed(self, engine):
        summary = engine.reconcile_closing([barcode("0033", "5633005", 12)])
        assert summary.unscanned_bin_ids == [2]

    def test_duplicate_scan_kept_once(self, engine):
        summary = engine.reconcile_closing([
            barcode("0033", "5633005", 12),
            barcode("0033", "5633005", 14),
            barcode("0044", "1000001", 30),
        ])
        assert len(summary.results) == 2
        assert summary.results[0].serial_position == 12
        assert summary.duplicate_barcodes == [barcode("0033", "5633005", 14)]
        assert summary.conflicting_barcodes == [barcode("0033", "5633005", 14)]
        assert summary.needs_rescan

    def test_identical_rescan_is_harmless(self, engine):
        summary = engine.reconcile_closing([
            barcode("0033", "5633005", 12),
            barcode("0033", "5633005", 12),
            barcode("0044", "1000001", 30),
        ])
        assert summary.duplicate_barcodes == [barcode("0033", "5633005", 12)]
        assert summary.conflicting_barcodes == []
        assert not summary.needs_rescan

    def test_problem_scans_do_not_count(self, engine):
        summary = engine.reconcile_closing([
            barcode("0033", "5633005", 12),
            barcode("0033", "7777777", 1),
            "garbage",
        ])
        assert [r.outcome for r in summary.problems] == [ScanOutcome.PACK_RETURNED, ScanOutcome.MALFORMED]
        assert summary.tickets_sold == 12
        assert summary.unscanned_bin_ids == [2]

    def test_each_scan_independent(self, engine):
        first = engine.reconcile_closing([barcode("0033", "5633005", 12)])
        second = engine.reconcile_closing([barcode("0033", "5633005", 12)])
        assert first.to_dict() == second.to_dict()
