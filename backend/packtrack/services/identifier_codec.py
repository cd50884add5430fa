# Overview: Pure encode/decode of lottery ticket UPCs and 24-digit scan barcodes.

"""
Identifier Codec

WHY: Every other part of pack tracking keys off (game_code, pack_number).
Keeping the formats in one side-effect-free module means reception,
activation and day-close all agree on what a valid identifier is.

FORMATS:
    UPC (12 digits, printed on each ticket):
        [game_code first 2 digits][pack_number padded to 7][ticket index padded to 3]

    Scan barcode (24 digits, scanned from the pack):
        [game_code 4][pack_number 7][serial_position 3][reserved 10]

The reserved tail of a scan barcode is accepted but never interpreted here.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from ..validation import ValidationError


GAME_CODE_RE = re.compile(r"\d{4}", re.ASCII)
PACK_NUMBER_RE = re.compile(r"\d{1,7}", re.ASCII)
UPC_RE = re.compile(r"\d{12}", re.ASCII)
DIGITS_RE = re.compile(r"\d+", re.ASCII)

PACK_NUMBER_WIDTH = 7
SERIAL_WIDTH = 3
UPC_LENGTH = 12
SCAN_BARCODE_LENGTH = 24
MIN_TICKET_COUNT = 1
MAX_TICKET_COUNT = 999


class InvalidGameCode(ValidationError):
    code = "INVALID_GAME_CODE"


class InvalidPackNumber(ValidationError):
    code = "INVALID_PACK_NUMBER"


class InvalidTicketCount(ValidationError):
    code = "INVALID_TICKET_COUNT"


class InvalidBarcodeLength(ValidationError):
    code = "INVALID_BARCODE_LENGTH"


class InvalidBarcodeFormat(ValidationError):
    code = "INVALID_BARCODE_FORMAT"


@dataclass(frozen=True)
class UPCParts:
    game_prefix: str
    pack_number: str
    ticket_index: int


@dataclass(frozen=True)
class ScanBarcode:
    game_code: str
    pack_number: str
    serial_position: int
    reserved: str
    raw: str

    @property
    def key(self) -> tuple[str, str]:
        return (self.game_code, self.pack_number)

    @property
    def serial(self) -> str:
        return format_serial(self.serial_position)


def format_serial(value: int | None) -> str | None:
    """Render a serial position as its 3-digit printed form ("7" -> "007")."""
    if value is None:
        return None
    return str(value).zfill(SERIAL_WIDTH)


def validate_game_code(game_code) -> str:
    """
    Validate a 4-digit game code.

    Raises:
        InvalidGameCode: If missing or not exactly 4 digits
    """
    if not game_code or not isinstance(game_code, str):
        raise InvalidGameCode("game_code is required")
    if not GAME_CODE_RE.fullmatch(game_code):
        raise InvalidGameCode(f"game_code must be exactly 4 digits, got '{game_code}'")
    return game_code


def validate_pack_number(pack_number) -> str:
    """
    Validate a 1-7 digit pack number (it is padded later, not here).

    Raises:
        InvalidPackNumber: If missing or not 1-7 digits
    """
    if not pack_number or not isinstance(pack_number, str):
        raise InvalidPackNumber("pack_number is required")
    if not PACK_NUMBER_RE.fullmatch(pack_number):
        raise InvalidPackNumber(f"pack_number must be 1-7 digits, got '{pack_number}'")
    return pack_number


def normalize_pack_number(pack_number) -> str:
    """Validate and left-zero-pad a pack number to its 7-digit encoded form."""
    return validate_pack_number(pack_number).zfill(PACK_NUMBER_WIDTH)


def validate_ticket_count(ticket_count) -> int:
    # bool is an int subclass; True is not a ticket count
    if isinstance(ticket_count, bool) or not isinstance(ticket_count, int):
        raise InvalidTicketCount("ticket_count must be an integer")
    if ticket_count < MIN_TICKET_COUNT or ticket_count > MAX_TICKET_COUNT:
        raise InvalidTicketCount(
            f"ticket_count must be between {MIN_TICKET_COUNT} and {MAX_TICKET_COUNT}, got {ticket_count}"
        )
    return ticket_count


def generate_upcs(game_code: str, pack_number: str, ticket_count: int) -> list[str]:
    """
    Generate the per-ticket UPCs for one pack.

    Args:
        game_code: 4-digit game code (only the first 2 digits are encoded)
        pack_number: 1-7 digit pack number, zero-padded to 7
        ticket_count: Tickets in the pack, 1..999

    Returns:
        ticket_count strictly increasing 12-digit strings, ticket 0 first

    Raises:
        InvalidGameCode, InvalidPackNumber, InvalidTicketCount
    """
    validate_game_code(game_code)
    padded_pack = normalize_pack_number(pack_number)
    validate_ticket_count(ticket_count)

    prefix = game_code[:2] + padded_pack
    return [prefix + str(i).zfill(SERIAL_WIDTH) for i in range(ticket_count)]


def parse_upc(value) -> UPCParts | None:
    """Decompose a 12-digit UPC. Returns None for anything malformed."""
    if not isinstance(value, str) or not UPC_RE.fullmatch(value):
        return None
    return UPCParts(
        game_prefix=value[:2],
        pack_number=value[2:2 + PACK_NUMBER_WIDTH],
        ticket_index=int(value[2 + PACK_NUMBER_WIDTH:]),
    )


def is_valid_upc(value) -> bool:
    return parse_upc(value) is not None


def parse_scan_barcode(value) -> ScanBarcode:
    """
    Decompose a 24-digit pack scan barcode.

    No trimming happens here: scanner suffix characters (Enter/Tab) are the
    input layer's job, so " 0033..." is rejected like any other non-digit.

    Raises:
        InvalidBarcodeLength: If the value is not exactly 24 characters
        InvalidBarcodeFormat: If the value contains non-digits
    """
    if not isinstance(value, str):
        raise InvalidBarcodeFormat("barcode must be a string of digits")
    raw = value

    if len(raw) != SCAN_BARCODE_LENGTH:
        raise InvalidBarcodeLength(
            f"barcode must be exactly {SCAN_BARCODE_LENGTH} digits, got {len(raw)}"
        )
    if not DIGITS_RE.fullmatch(raw):
        raise InvalidBarcodeFormat("barcode must contain only digits")

    return ScanBarcode(
        game_code=raw[0:4],
        pack_number=raw[4:11],
        serial_position=int(raw[11:14]),
        reserved=raw[14:],
        raw=raw,
    )
