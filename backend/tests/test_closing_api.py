"""
Closing API tests: open, begin, scan reconciliation, variance approval.
"""

import pytest

from conftest import make_barcode


@pytest.fixture
def shelf(client, game, second_game, bins):
    """Two ACTIVE packs: Lucky 7s (000-149) in bin 1, Cash Blast (000-049) in bin 2."""
    ids = {}
    for key, game_code, pack_number, end, lottery_bin in (
        ("lucky", "0033", "5633005", 149, bins[0]),
        ("blast", "0044", "1000001", 49, bins[1]),
    ):
        response = client.post("/api/lottery/packs/receive", json={
            "game_code": game_code, "pack_number": pack_number, "serial_start": 0, "serial_end": end,
        })
        pack_id = response.json["pack"]["id"]
        client.post(f"/api/lottery/packs/{pack_id}/activate", json={"bin_id": lottery_bin.id})
        ids[key] = pack_id
    ids["bin1"] = bins[0].id
    ids["bin2"] = bins[1].id
    return ids


def lucky(serial, **extra):
    scan = {"barcode": make_barcode("0033", "5633005", serial)}
    scan.update(extra)
    return scan


def blast(serial, **extra):
    scan = {"barcode": make_barcode("0044", "1000001", serial)}
    scan.update(extra)
    return scan


def start_close(client, kind="DAY", business_date="2026-01-05", **extra):
    body = {"kind": kind, "business_date": business_date}
    body.update(extra)
    response = client.post("/api/closings", json=body)
    assert response.status_code == 201, response.json
    session_id = response.json["closing"]["id"]
    assert client.post(f"/api/closings/{session_id}/begin").status_code == 200
    return session_id


def submit(client, session_id, scans, **extra):
    body = {"scans": scans}
    body.update(extra)
    return client.post(f"/api/closings/{session_id}/scans", json=body)


def pack(client, pack_id):
    return client.get(f"/api/lottery/packs/{pack_id}").json["pack"]


class TestOpenClosing:

    def test_open(self, client, db_session):
        response = client.post("/api/closings", json={"kind": "DAY", "business_date": "2026-01-05"})
        assert response.status_code == 201
        closing = response.json["closing"]
        assert closing["status"] == "OPEN"
        assert closing["kind"] == "DAY"
        assert closing["business_date"] == "2026-01-05"

    def test_one_unfinished_day_close_per_date(self, client, db_session):
        client.post("/api/closings", json={"kind": "DAY", "business_date": "2026-01-05"})
        response = client.post("/api/closings", json={"kind": "DAY", "business_date": "2026-01-05"})
        assert response.status_code == 409

    def test_shifts_may_overlap(self, client, db_session):
        for _ in range(2):
            response = client.post("/api/closings", json={"kind": "SHIFT", "business_date": "2026-01-05"})
            assert response.status_code == 201

    def test_invalid_kind(self, client, db_session):
        response = client.post("/api/closings", json={"kind": "WEEK"})
        assert response.status_code == 400

    @pytest.mark.parametrize("body", [[], [{"kind": "DAY"}]])
    def test_array_body(self, client, db_session, body):
        response = client.post("/api/closings", json=body)
        assert response.status_code == 400

    def test_empty_body_opens_day_close(self, client, db_session):
        response = client.post("/api/closings")
        assert response.status_code == 201
        assert response.json["closing"]["kind"] == "DAY"

    def test_invalid_date(self, client, db_session):
        response = client.post("/api/closings", json={"business_date": "01/05/2026"})
        assert response.status_code == 400

    def test_begin_twice(self, client, db_session):
        session_id = start_close(client)
        response = client.post(f"/api/closings/{session_id}/begin")
        assert response.status_code == 409
        assert response.json["code"] == "INVALID_CLOSE_TRANSITION"

    def test_unknown_session(self, client, db_session):
        assert client.post("/api/closings/999999/begin").status_code == 404
        assert client.get("/api/closings/999999").status_code == 404


class TestReconcile:

    def test_clean_close(self, client, shelf):
        session_id = start_close(client)
        response = submit(client, session_id, [lucky(12), blast(30)])
        assert response.status_code == 200
        body = response.json
        assert body["finalized"] is True
        assert body["session"]["status"] == "CLOSED"
        assert body["session"]["tickets_sold"] == 42
        assert body["session"]["sales_amount_cents"] == 12 * 500 + 30 * 200
        assert body["session"]["difference"] == 0
        assert body["session"]["closed_at"] is not None

        assert pack(client, shelf["lucky"])["last_sold_serial"] == "012"
        assert pack(client, shelf["blast"])["last_sold_serial"] == "030"

        summary = client.get(f"/api/closings/{session_id}").json["closing"]
        assert len(summary["lines"]) == 2
        assert summary["approval"] is None

    def test_bare_barcodes_accepted(self, client, shelf):
        session_id = start_close(client)
        response = submit(client, session_id, [lucky(12)["barcode"] + "\r", blast(30)["barcode"]])
        assert response.json["finalized"] is True

    def test_next_close_counts_from_last_close(self, client, shelf):
        first = start_close(client, business_date="2026-01-05")
        submit(client, first, [lucky(12), blast(30)])

        second = start_close(client, business_date="2026-01-06")
        response = submit(client, second, [lucky(20), blast(30)])
        assert response.json["session"]["status"] == "CLOSED"
        assert response.json["session"]["tickets_sold"] == 8

        results = response.json["reconciliation"]["results"]
        assert [r["starting_serial"] for r in results] == ["012", "030"]
        assert [r["expected_count"] for r in results] == [8, 0]

    def test_scan_at_serial_end_depletes(self, client, shelf):
        session_id = start_close(client)
        response = submit(client, session_id, [lucky(12), blast(49)])
        assert response.json["finalized"] is True

        depleted = pack(client, shelf["blast"])
        assert depleted["status"] == "DEPLETED"
        assert depleted["last_sold_serial"] == "049"

        lines = client.get(f"/api/closings/{session_id}").json["closing"]["lines"]
        blast_line = next(line for line in lines if line["pack_id"] == shelf["blast"])
        assert blast_line["depleted"] is True
        assert blast_line["closing_serial"] == "049"

        bins = client.get("/api/lottery/bins").json["bins"]
        assert bins[1]["active_pack"] is None

    def test_sold_out_flag(self, client, shelf):
        session_id = start_close(client)
        response = submit(client, session_id, [lucky(12), blast(0, sold_out=True)])
        results = response.json["reconciliation"]["results"]
        assert results[1]["expected_count"] == 50
        assert pack(client, shelf["blast"])["status"] == "DEPLETED"

    def test_returned_pack_blocks_close(self, client, shelf):
        returned = client.post("/api/lottery/packs/receive", json={
            "game_code": "0033", "pack_number": "7777777", "serial_start": 0,
        }).json["pack"]["id"]
        client.post(f"/api/lottery/packs/{returned}/return", json={"return_reason": "DAMAGED"})

        session_id = start_close(client)
        response = submit(client, session_id, [
            lucky(12),
            blast(30),
            {"barcode": make_barcode("0033", "7777777", 5)},
        ])
        assert response.status_code == 200
        body = response.json
        assert body["finalized"] is False
        assert body["session"]["status"] == "CLOSING"

        problem = body["reconciliation"]["results"][2]
        assert problem["outcome"] == "PACK_RETURNED"
        assert problem["return_reason"] == "DAMAGED"
        assert "was returned on" in problem["message"]

        # Nothing written
        assert pack(client, shelf["lucky"])["last_sold_serial"] is None
        assert client.get(f"/api/closings/{session_id}").json["closing"]["lines"] == []

    def test_unscanned_bin_blocks_close(self, client, shelf):
        session_id = start_close(client)
        response = submit(client, session_id, [lucky(12)])
        assert response.json["finalized"] is False
        assert response.json["reconciliation"]["unscanned_bin_ids"] == [shelf["bin2"]]

        # Rescan with every bin and the close goes through
        response = submit(client, session_id, [lucky(12), blast(30)])
        assert response.json["finalized"] is True

    def test_conflicting_rescan_blocks_close(self, client, shelf):
        session_id = start_close(client)
        response = submit(client, session_id, [lucky(12), lucky(40), blast(5)])
        body = response.json
        assert body["finalized"] is False
        assert body["session"]["status"] == "CLOSING"
        assert body["reconciliation"]["conflicting_barcodes"] == [lucky(40)["barcode"]]

        assert pack(client, shelf["lucky"])["last_sold_serial"] is None

        response = submit(client, session_id, [lucky(40), blast(5)])
        assert response.json["finalized"] is True
        assert pack(client, shelf["lucky"])["last_sold_serial"] == "040"

    def test_identical_rescan_still_closes(self, client, shelf):
        session_id = start_close(client)
        response = submit(client, session_id, [lucky(12), lucky(12), blast(30)])
        body = response.json
        assert body["finalized"] is True
        assert body["reconciliation"]["duplicate_barcodes"] == [lucky(12)["barcode"]]
        assert body["reconciliation"]["conflicting_barcodes"] == []

    def test_serial_behind_baseline_blocks_close(self, client, shelf):
        first = start_close(client, business_date="2026-01-05")
        submit(client, first, [lucky(12), blast(30)])

        second = start_close(client, business_date="2026-01-06")
        response = submit(client, second, [lucky(10), blast(30)])
        assert response.json["finalized"] is False
        assert response.json["reconciliation"]["results"][0]["outcome"] == "SERIAL_OUT_OF_RANGE"

    def test_scans_before_begin(self, client, shelf):
        response = client.post("/api/closings", json={"business_date": "2026-01-05"})
        session_id = response.json["closing"]["id"]
        response = submit(client, session_id, [lucky(12), blast(30)])
        assert response.status_code == 409
        assert response.json["code"] == "INVALID_CLOSE_TRANSITION"

    def test_scans_must_be_list(self, client, shelf):
        session_id = start_close(client)
        response = client.post(f"/api/closings/{session_id}/scans", json={"scans": "0033"})
        assert response.status_code == 400

    def test_closed_session_rejects_scans(self, client, shelf):
        session_id = start_close(client)
        submit(client, session_id, [lucky(12), blast(30)])
        response = submit(client, session_id, [lucky(13), blast(31)])
        assert response.status_code == 409


class TestVarianceReview:

    @pytest.fixture
    def in_review(self, client, shelf):
        session_id = start_close(client)
        response = submit(client, session_id, [lucky(12, confirmed_count=10), blast(30)])
        assert response.json["session"]["status"] == "VARIANCE_REVIEW"
        return session_id

    def test_variance_needs_review(self, client, in_review):
        closing = client.get(f"/api/closings/{in_review}").json["closing"]
        assert closing["difference"] == 2
        assert closing["closed_at"] is None

    def test_baselines_still_advance(self, client, shelf, in_review):
        assert pack(client, shelf["lucky"])["last_sold_serial"] == "012"

    @pytest.mark.parametrize("reason", ["", "   ", None])
    def test_blank_reason_rejected(self, client, in_review, reason):
        response = client.post(f"/api/closings/{in_review}/approve", json={
            "variance_reason": reason, "approved_by": 7,
        })
        assert response.status_code == 400
        assert response.json["code"] == "VARIANCE_REASON_REQUIRED"
        closing = client.get(f"/api/closings/{in_review}").json["closing"]
        assert closing["status"] == "VARIANCE_REVIEW"

    def test_approver_required(self, client, in_review):
        response = client.post(f"/api/closings/{in_review}/approve", json={"variance_reason": "Torn tickets"})
        assert response.status_code == 400

    def test_approve(self, client, in_review):
        response = client.post(f"/api/closings/{in_review}/approve", json={
            "variance_reason": "X", "approved_by": 7,
        })
        assert response.status_code == 200
        assert response.json["closing"]["status"] == "CLOSED"
        assert response.json["closing"]["variance_reason"] == "X"
        assert response.json["approval"]["reason"] == "X"
        assert response.json["approval"]["approved_by"] == 7

        summary = client.get(f"/api/closings/{in_review}").json["closing"]
        assert summary["approval"]["subject_id"] == in_review

    def test_approve_array_body(self, client, in_review):
        response = client.post(f"/api/closings/{in_review}/approve", json=["X", 7])
        assert response.status_code == 400
        closing = client.get(f"/api/closings/{in_review}").json["closing"]
        assert closing["status"] == "VARIANCE_REVIEW"

    def test_approve_twice(self, client, in_review):
        client.post(f"/api/closings/{in_review}/approve", json={"variance_reason": "X", "approved_by": 7})
        response = client.post(f"/api/closings/{in_review}/approve", json={
            "variance_reason": "Again", "approved_by": 7,
        })
        assert response.status_code == 409

    def test_clean_close_cannot_be_approved(self, client, shelf):
        session_id = start_close(client)
        submit(client, session_id, [lucky(12), blast(30)])
        response = client.post(f"/api/closings/{session_id}/approve", json={
            "variance_reason": "X", "approved_by": 7,
        })
        assert response.status_code == 409

    def test_offsetting_differences_still_reviewed(self, client, shelf):
        session_id = start_close(client)
        response = submit(client, session_id, [lucky(12, confirmed_count=13), blast(30, confirmed_count=29)])
        assert response.json["session"]["status"] == "VARIANCE_REVIEW"
        assert response.json["session"]["difference"] == 2

    def test_ticket_tolerance(self, client, app, shelf, monkeypatch):
        monkeypatch.setitem(app.config, "TICKET_VARIANCE_TOLERANCE", 2)
        session_id = start_close(client)
        response = submit(client, session_id, [lucky(12, confirmed_count=11), blast(30)])
        assert response.json["session"]["status"] == "CLOSED"


class TestCashVariance:

    def test_small_cash_difference_closes(self, client, shelf):
        session_id = start_close(client, kind="SHIFT", expected_cash_cents=100_000)
        response = submit(client, session_id, [lucky(12), blast(30)], actual_cash_cents=99_000)
        body = response.json
        assert body["cash_variance"] is False
        assert body["session"]["status"] == "CLOSED"
        assert body["session"]["cash_difference_cents"] == -1_000

    def test_large_cash_difference_needs_review(self, client, shelf):
        session_id = start_close(client, kind="SHIFT", expected_cash_cents=100_000)
        response = submit(client, session_id, [lucky(12), blast(30)], actual_cash_cents=98_000)
        body = response.json
        assert body["cash_variance"] is True
        assert body["session"]["status"] == "VARIANCE_REVIEW"
        assert body["session"]["difference"] == 0
