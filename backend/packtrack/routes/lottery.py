# Overview: Flask API routes for lottery games, bins and packs; parses input and returns JSON responses.

# backend/packtrack/routes/lottery.py
"""
Lottery Pack API Routes

DESIGN:
- Games and bins are master data
- Packs move RECEIVED -> ACTIVE -> DEPLETED / RETURNED through dedicated
  endpoints; there is no generic status update
- Barcode submissions pass the scan-only gate first when
  SCAN_ONLY_ENFORCEMENT is on (scan_metrics required)
"""

from functools import partial

from flask import Blueprint, request, jsonify, current_app

from ..services import pack_service
from ..services.scan_detector import ScanPolicy
from ..time_utils import now_ms
from ..validation import (
    ValidationError,
    ConflictError,
    NotFoundError,
    coerce_int,
    optional_int,
    require_fields,
    clean_str,
)
from . import error_response, json_body, strip_scanner_suffix


lottery_bp = Blueprint("lottery", __name__, url_prefix="/api/lottery")


def _store_id(data) -> int:
    value = data.get("store_id") if data else None
    if value in (None, ""):
        return pack_service.DEFAULT_STORE_ID
    return coerce_int(value, "store_id", minimum=1)


def _scan_gate():
    """verify_scan_metrics bound to the current config and clock."""
    config = current_app.config
    return partial(
        pack_service.verify_scan_metrics,
        now_ms=now_ms(),
        policy=ScanPolicy.from_config(config),
        max_age_ms=int(config.get("SCAN_MAX_AGE_MS", 120_000)),
    )


def _digits(value):
    # JSON clients sometimes send pack numbers as numbers
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


# =============================================================================
# GAMES AND BINS
# =============================================================================

@lottery_bp.post("/games")
def create_game_route():
    """
    Register a scratch game.

    Request body:
    {
        "code": "0033",
        "name": "Lucky 7s",
        "price_cents": 500,
        "tickets_per_pack": 150  (optional)
    }

    Returns:
        201: Game created
        400: Invalid input
        409: Code already registered
    """
    try:
        data = require_fields(request.get_json(silent=True), "code", "name")
        game = pack_service.create_game(
            data["code"],
            data["name"],
            price_cents=optional_int(data, "price_cents", minimum=0) or 0,
            tickets_per_pack=optional_int(data, "tickets_per_pack"),
        )
        return jsonify({"game": game.to_dict()}), 201

    except ValidationError as e:
        return error_response(e, 400)
    except ConflictError as e:
        return error_response(e, 409)
    except Exception:
        current_app.logger.exception("Failed to create lottery game")
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


@lottery_bp.get("/games")
def list_games_route():
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    games = pack_service.list_games(include_inactive=include_inactive)
    return jsonify({"games": [g.to_dict() for g in games]}), 200


@lottery_bp.post("/bins")
def create_bin_route():
    """
    Create a display bin.

    Request body:
    {
        "store_id": 1,  (optional, default 1)
        "bin_number": 3,
        "name": "Counter left"  (optional)
    }
    """
    try:
        data = require_fields(request.get_json(silent=True), "bin_number")
        lottery_bin = pack_service.create_bin(
            _store_id(data),
            coerce_int(data["bin_number"], "bin_number", minimum=1),
            name=clean_str(data.get("name"), "name", max_length=64),
        )
        return jsonify({"bin": lottery_bin.to_dict()}), 201

    except ValidationError as e:
        return error_response(e, 400)
    except ConflictError as e:
        return error_response(e, 409)
    except Exception:
        current_app.logger.exception("Failed to create lottery bin")
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


@lottery_bp.get("/bins")
def list_bins_route():
    try:
        store_id = _store_id(request.args)
        occupants = pack_service.active_packs_by_bin(store_id)
        bins = []
        for lottery_bin in pack_service.list_bins(store_id):
            item = lottery_bin.to_dict()
            pack = occupants.get(lottery_bin.id)
            item["active_pack"] = pack.to_dict() if pack else None
            bins.append(item)
        return jsonify({"bins": bins}), 200

    except ValidationError as e:
        return error_response(e, 400)
    except Exception:
        current_app.logger.exception("Failed to list lottery bins")
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


# =============================================================================
# RECEIVE
# =============================================================================

@lottery_bp.post("/packs/receive")
def receive_pack_route():
    """
    Receive one pack (status: RECEIVED).

    Request body, scanned:
    {
        "barcode": "003356330050450000000000",
        "scan_metrics": {
            "keystroke_timestamps": [...],
            "input_method": "SCANNER",
            "avg_inter_key_delay_ms": 8.0
        }
    }

    Request body, typed from the pack slip:
    {
        "game_code": "0033",
        "pack_number": "5633005",
        "serial_start": 0,
        "serial_end": 149,  (optional when the game has tickets_per_pack)
        "ticket_count": 150  (optional)
    }

    Returns:
        201: Pack received
        400: Invalid input or scan rejected
        404: Game not found
        409: Duplicate pack
    """
    try:
        data = json_body()
        store_id = _store_id(data)

        if data.get("barcode") is not None:
            _scan_gate()(data.get("scan_metrics"))
            pack = pack_service.receive_pack_from_barcode(
                store_id, strip_scanner_suffix(data["barcode"])
            )
        else:
            require_fields(data, "game_code", "pack_number", "serial_start")
            pack = pack_service.receive_pack(
                store_id,
                data["game_code"],
                _digits(data["pack_number"]),
                coerce_int(data["serial_start"], "serial_start"),
                optional_int(data, "serial_end"),
                ticket_count=optional_int(data, "ticket_count"),
            )

        return jsonify({"pack": pack.to_dict()}), 201

    except ValidationError as e:
        return error_response(e, 400)
    except NotFoundError as e:
        return error_response(e, 404)
    except ConflictError as e:
        return error_response(e, 409)
    except Exception:
        current_app.logger.exception("Failed to receive lottery pack")
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


@lottery_bp.post("/packs/receive/batch")
def receive_batch_route():
    """
    Receive many packs from scan barcodes.

    Request body:
    {
        "barcodes": ["0033...", "0033..."],
        "scan_metrics": [{...}, {...}]  (parallel to barcodes)
    }

    Returns:
        200: Per-barcode outcomes (CREATED, DUPLICATE, ERROR, GAME_NOT_FOUND)
        400: Empty batch, batch over the limit, or mismatched scan_metrics
    """
    try:
        data = require_fields(request.get_json(silent=True), "barcodes")
        barcodes = data["barcodes"]
        if not isinstance(barcodes, list):
            raise ValidationError("barcodes must be a list")
        scan_metrics = data.get("scan_metrics")
        if scan_metrics is not None and not isinstance(scan_metrics, list):
            raise ValidationError("scan_metrics must be a list")

        result = pack_service.receive_packs_batch(
            _store_id(data),
            [strip_scanner_suffix(b) for b in barcodes],
            limit=int(current_app.config.get("BATCH_RECEIVE_LIMIT", pack_service.DEFAULT_BATCH_LIMIT)),
            scan_metrics=scan_metrics,
            verify=_scan_gate(),
        )
        return jsonify(result.to_dict()), 200

    except ValidationError as e:
        return error_response(e, 400)
    except Exception:
        current_app.logger.exception("Failed to receive lottery pack batch")
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


# =============================================================================
# LIFECYCLE
# =============================================================================

@lottery_bp.post("/packs/<int:pack_id>/activate")
def activate_pack_route(pack_id: int):
    """
    Put a RECEIVED pack on display.

    Request body:
    {
        "bin_id": 3
    }

    Returns:
        200: Pack ACTIVE
        404: Pack or bin not found
        409: Pack not RECEIVED, or bin already holds an active pack
    """
    try:
        data = require_fields(request.get_json(silent=True), "bin_id")
        pack = pack_service.activate_pack(pack_id, coerce_int(data["bin_id"], "bin_id", minimum=1))
        return jsonify({"pack": pack.to_dict()}), 200

    except ValidationError as e:
        return error_response(e, 400)
    except NotFoundError as e:
        return error_response(e, 404)
    except ConflictError as e:
        return error_response(e, 409)
    except Exception:
        current_app.logger.exception("Failed to activate lottery pack")
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


@lottery_bp.post("/packs/<int:pack_id>/deplete")
def deplete_pack_route(pack_id: int):
    try:
        pack = pack_service.mark_pack_depleted(pack_id)
        return jsonify({"pack": pack.to_dict()}), 200

    except NotFoundError as e:
        return error_response(e, 404)
    except ConflictError as e:
        return error_response(e, 409)
    except Exception:
        current_app.logger.exception("Failed to deplete lottery pack")
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


@lottery_bp.post("/packs/<int:pack_id>/return")
def return_pack_route(pack_id: int):
    """
    Return a RECEIVED or ACTIVE pack.

    Request body:
    {
        "return_reason": "DAMAGED",
        "return_notes": "Water damage",  (required for OTHER)
        "last_sold_serial": "045",  (optional)
        "returned_by": 7  (optional)
    }

    Returns:
        201: ReturnedPack snapshot
        400: Invalid reason, missing notes, serial out of range
        404: Pack not found
        409: Pack already DEPLETED or RETURNED
    """
    try:
        data = require_fields(request.get_json(silent=True), "return_reason")
        returned = pack_service.return_pack(
            pack_id,
            data["return_reason"],
            notes=clean_str(data.get("return_notes"), "return_notes", max_length=500),
            last_sold_serial=optional_int(data, "last_sold_serial", minimum=0),
            returned_by=optional_int(data, "returned_by"),
        )
        return jsonify({"returned_pack": returned.to_dict()}), 201

    except ValidationError as e:
        return error_response(e, 400)
    except NotFoundError as e:
        return error_response(e, 404)
    except ConflictError as e:
        return error_response(e, 409)
    except Exception:
        current_app.logger.exception("Failed to return lottery pack")
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


# =============================================================================
# QUERIES
# =============================================================================

@lottery_bp.get("/packs")
def list_packs_route():
    """
    List packs for a store.

    Query params: store_id, status, game_code, limit (max 500), offset
    """
    try:
        args = request.args
        packs = pack_service.list_packs(
            _store_id(args),
            status=args.get("status") or None,
            game_code=args.get("game_code") or None,
            limit=optional_int(args, "limit", minimum=1, maximum=500) or 100,
            offset=optional_int(args, "offset", minimum=0) or 0,
        )
        return jsonify({"packs": [p.to_dict() for p in packs]}), 200

    except ValidationError as e:
        return error_response(e, 400)
    except Exception:
        current_app.logger.exception("Failed to list lottery packs")
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


@lottery_bp.get("/packs/<int:pack_id>")
def get_pack_route(pack_id: int):
    try:
        pack = pack_service.get_pack(pack_id)
        return jsonify({"pack": pack.to_dict()}), 200
    except NotFoundError as e:
        return error_response(e, 404)


@lottery_bp.get("/packs/<int:pack_id>/return")
def get_returned_pack_route(pack_id: int):
    try:
        returned = pack_service.get_returned_pack(pack_id)
        return jsonify({"returned_pack": returned.to_dict()}), 200
    except NotFoundError as e:
        return error_response(e, 404)


@lottery_bp.get("/packs/<int:pack_id>/upcs")
def pack_upcs_route(pack_id: int):
    """Per-ticket 12-digit UPCs for a pack, ticket 000 first."""
    try:
        upcs = pack_service.ticket_upcs_for_pack(pack_id)
        return jsonify({"pack_id": pack_id, "count": len(upcs), "upcs": upcs}), 200

    except ValidationError as e:
        return error_response(e, 400)
    except NotFoundError as e:
        return error_response(e, 404)
    except Exception:
        current_app.logger.exception("Failed to generate UPCs")
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500
