"""
Pack lifecycle engine tests (in-memory packs, no database).
"""

from dataclasses import FrozenInstanceError
from datetime import datetime

import pytest

from packtrack.services.identifier_codec import InvalidPackNumber, InvalidTicketCount
from packtrack.services.pack_lifecycle import (
    TRANSITIONS,
    BinOccupied,
    DuplicatePack,
    InvalidReturnReason,
    InvalidSerial,
    InvalidStateTransition,
    Pack,
    PackStatus,
    ReturnReason,
    activate_pack,
    allowed_transitions,
    can_transition,
    is_terminal,
    mark_depleted,
    receive_pack,
    return_pack,
)
from packtrack.validation import ConflictError, ValidationError


T0 = datetime(2026, 1, 5, 9, 0, 0)
T1 = datetime(2026, 1, 5, 10, 0, 0)
T2 = datetime(2026, 1, 6, 18, 30, 0)


def received(pack_number="5633005", start=0, end=149, **kwargs):
    return receive_pack("0033", pack_number, start, end, now=T0, **kwargs)


def active(bin_id=1, **kwargs):
    pack = received(**kwargs)
    pack.id = 10
    return activate_pack(pack, bin_id, now=T1)


class TestTransitionTable:

    def test_every_status_has_an_entry(self):
        assert set(TRANSITIONS) == set(PackStatus)

    @pytest.mark.parametrize("from_status,to_status,allowed", [
        (PackStatus.RECEIVED, PackStatus.ACTIVE, True),
        (PackStatus.RECEIVED, PackStatus.RETURNED, True),
        (PackStatus.RECEIVED, PackStatus.DEPLETED, False),
        (PackStatus.ACTIVE, PackStatus.DEPLETED, True),
        (PackStatus.ACTIVE, PackStatus.RETURNED, True),
        (PackStatus.ACTIVE, PackStatus.RECEIVED, False),
        (PackStatus.DEPLETED, PackStatus.ACTIVE, False),
        (PackStatus.RETURNED, PackStatus.ACTIVE, False),
    ])
    def test_can_transition(self, from_status, to_status, allowed):
        assert can_transition(from_status, to_status) is allowed

    def test_allowed_transitions(self):
        assert allowed_transitions("RECEIVED") == frozenset({PackStatus.ACTIVE, PackStatus.RETURNED})
        assert allowed_transitions(PackStatus.RETURNED) == frozenset()

    def test_terminal_states(self):
        assert is_terminal(PackStatus.DEPLETED)
        assert is_terminal(PackStatus.RETURNED)
        assert not is_terminal("ACTIVE")


class TestReceive:

    def test_received_pack(self):
        pack = received(pack_number="42")
        assert isinstance(pack, Pack)
        assert pack.status == PackStatus.RECEIVED
        assert pack.pack_number == "0000042"
        assert pack.ticket_count == 150
        assert pack.received_at == T0
        assert pack.bin_id is None

    def test_explicit_ticket_count(self):
        assert received(ticket_count=100).ticket_count == 100

    def test_start_after_end(self):
        with pytest.raises(InvalidSerial):
            received(start=50, end=10)

    def test_single_ticket_pack(self):
        assert received(start=5, end=5).ticket_count == 1

    def test_serial_beyond_three_digits(self):
        with pytest.raises(InvalidSerial):
            received(start=0, end=1000)

    def test_bad_pack_number(self):
        with pytest.raises(InvalidPackNumber):
            received(pack_number="12345678")

    def test_bad_ticket_count(self):
        with pytest.raises(InvalidTicketCount):
            received(ticket_count=0)

    def test_duplicate_reported_by_lookup(self):
        seen = {"5633005"}
        with pytest.raises(DuplicatePack) as exc:
            received(pack_exists=lambda padded: padded in seen)
        assert isinstance(exc.value, ConflictError)

    def test_lookup_receives_padded_number(self):
        calls = []
        received(pack_number="7", pack_exists=lambda padded: calls.append(padded) or False)
        assert calls == ["0000007"]

    def test_custom_factory(self):
        made = {}

        def factory(**kwargs):
            made.update(kwargs)
            return kwargs

        receive_pack("0033", "1", 0, 9, factory=factory, now=T0)
        assert made["pack_number"] == "0000001"
        assert made["status"] == PackStatus.RECEIVED


class TestActivate:

    def test_activate_into_empty_bin(self):
        pack = active(bin_id=3)
        assert pack.status == PackStatus.ACTIVE
        assert pack.bin_id == 3
        assert pack.activated_at == T1

    def test_bin_occupied(self):
        occupant = active(bin_id=3)
        newcomer = received(pack_number="1111111")
        with pytest.raises(BinOccupied):
            activate_pack(newcomer, 3, bin_occupant=occupant)
        assert newcomer.status == PackStatus.RECEIVED
        assert newcomer.bin_id is None

    def test_depleted_occupant_does_not_block(self):
        old = mark_depleted(active(bin_id=3), now=T2)
        newcomer = activate_pack(received(pack_number="1111111"), 3, bin_occupant=old)
        assert newcomer.status == PackStatus.ACTIVE

    def test_cannot_activate_twice(self):
        pack = active()
        with pytest.raises(InvalidStateTransition):
            activate_pack(pack, 2)

    def test_bin_required(self):
        with pytest.raises(ValidationError):
            activate_pack(received(), None)


class TestDeplete:

    def test_deplete_active(self):
        pack = mark_depleted(active(bin_id=2), now=T2)
        assert pack.status == PackStatus.DEPLETED
        assert pack.depleted_at == T2
        assert pack.last_sold_serial == 149
        assert pack.bin_id == 2

    def test_cannot_deplete_received(self):
        with pytest.raises(InvalidStateTransition):
            mark_depleted(received())


class TestReturn:

    def test_return_active_pack(self):
        pack = active(bin_id=4)
        record = return_pack(
            pack,
            ReturnReason.DAMAGED,
            last_sold_serial=44,
            game_name="Lucky 7s",
            price_cents=500,
            bin_number=4,
            now=T2,
        )
        assert record.tickets_sold_on_return == 45
        assert record.return_sales_amount_cents == 22_500
        assert record.return_reason == ReturnReason.DAMAGED
        assert record.bin_number == 4
        assert record.activated_at == T1
        assert record.returned_at == T2
        assert pack.status == PackStatus.RETURNED
        assert pack.bin_id is None
        assert pack.last_sold_serial == 44

    def test_return_received_pack_without_sales(self):
        pack = received()
        record = return_pack(pack, "SUPPLIER_RECALL", now=T2)
        assert record.tickets_sold_on_return == 0
        assert record.return_sales_amount_cents == 0
        assert record.activated_at is None

    def test_record_is_frozen(self):
        record = return_pack(received(), "EXPIRED", now=T2)
        with pytest.raises(FrozenInstanceError):
            record.return_reason = ReturnReason.OTHER

    def test_record_survives_pack_changes(self):
        pack = active()
        record = return_pack(pack, "DAMAGED", game_name="Lucky 7s", now=T2)
        pack.pack_number = "9999999"
        pack.game_code = "9999"
        assert record.pack_number == "5633005"
        assert record.key == ("0033", "5633005")

    def test_other_requires_notes(self):
        pack = active()
        with pytest.raises(InvalidReturnReason):
            return_pack(pack, ReturnReason.OTHER, notes="   ")
        assert pack.status == PackStatus.ACTIVE
        record = return_pack(pack, ReturnReason.OTHER, notes=" store remodel ")
        assert record.return_notes == "store remodel"

    def test_unknown_reason(self):
        pack = active()
        with pytest.raises(InvalidReturnReason):
            return_pack(pack, "LOST")
        assert pack.status == PackStatus.ACTIVE

    def test_serial_outside_pack(self):
        pack = active(start=10, end=59)
        with pytest.raises(InvalidSerial):
            return_pack(pack, "DAMAGED", last_sold_serial=9)
        assert pack.status == PackStatus.ACTIVE
        assert pack.bin_id == 1

    @pytest.mark.parametrize("terminal", ["depleted", "returned"])
    def test_terminal_packs_cannot_be_returned(self, terminal):
        pack = active()
        if terminal == "depleted":
            mark_depleted(pack)
        else:
            return_pack(pack, "DAMAGED")
        with pytest.raises(InvalidStateTransition):
            return_pack(pack, "DAMAGED")

    def test_record_to_dict(self):
        record = return_pack(active(), "DAMAGED", last_sold_serial=7, now=T2)
        data = record.to_dict()
        assert data["return_reason"] == "DAMAGED"
        assert data["last_sold_serial"] == "007"
        assert data["returned_at"] == "2026-01-06T18:30:00Z"
