# Overview: Flask API routes for shift/day closes; parses input and returns JSON responses.

# backend/packtrack/routes/closings.py
"""
Closing API Routes

FLOW:
    POST /api/closings              -> OPEN
    POST /api/closings/<id>/begin   -> CLOSING
    POST /api/closings/<id>/scans   -> CLOSED or VARIANCE_REVIEW
    POST /api/closings/<id>/approve -> CLOSED (reason required)
"""

from datetime import date

from flask import Blueprint, request, jsonify, current_app

from ..services import closing_service
from ..services.pack_service import DEFAULT_STORE_ID
from ..services.reconciliation import ClosingScan
from ..validation import (
    ValidationError,
    ConflictError,
    NotFoundError,
    coerce_int,
    optional_int,
    require_fields,
)
from . import error_response, json_body, strip_scanner_suffix


closings_bp = Blueprint("closings", __name__, url_prefix="/api/closings")


def _parse_business_date(value):
    if value in (None, ""):
        return None
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValidationError("business_date must be YYYY-MM-DD")


def _parse_scan(item, index: int) -> ClosingScan:
    if isinstance(item, str):
        return ClosingScan(barcode=strip_scanner_suffix(item))
    if not isinstance(item, dict) or item.get("barcode") is None:
        raise ValidationError(f"scans[{index}] must be a barcode or an object with a barcode")
    sold_out = item.get("sold_out", False)
    if not isinstance(sold_out, bool):
        raise ValidationError(f"scans[{index}].sold_out must be true or false")
    return ClosingScan(
        barcode=strip_scanner_suffix(item["barcode"]),
        confirmed_count=optional_int(item, "confirmed_count", minimum=0),
        sold_out=sold_out,
    )


@closings_bp.post("")
def open_closing_route():
    """
    Open a shift or day close.

    Request body:
    {
        "store_id": 1,  (optional)
        "kind": "DAY" | "SHIFT",
        "business_date": "2026-01-05",  (optional, default today UTC)
        "expected_cash_cents": 125000  (optional, shift closes)
    }
    """
    try:
        data = json_body(optional=True)
        store_id = optional_int(data, "store_id", minimum=1) or DEFAULT_STORE_ID
        session = closing_service.open_closing(
            store_id,
            data.get("kind", "DAY"),
            business_date=_parse_business_date(data.get("business_date")),
            expected_cash_cents=optional_int(data, "expected_cash_cents", minimum=0),
        )
        return jsonify({"closing": session.to_dict()}), 201

    except ValidationError as e:
        return error_response(e, 400)
    except ConflictError as e:
        return error_response(e, 409)
    except Exception:
        current_app.logger.exception("Failed to open closing")
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


@closings_bp.post("/<int:session_id>/begin")
def begin_closing_route(session_id: int):
    try:
        session = closing_service.begin_closing(session_id)
        return jsonify({"closing": session.to_dict()}), 200

    except NotFoundError as e:
        return error_response(e, 404)
    except ConflictError as e:
        return error_response(e, 409)
    except Exception:
        current_app.logger.exception("Failed to begin closing")
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


@closings_bp.post("/<int:session_id>/scans")
def submit_scans_route(session_id: int):
    """
    Submit the closing scan for every bin.

    Request body:
    {
        "scans": [
            {"barcode": "0033...", "confirmed_count": 12, "sold_out": false},
            "0044..."
        ],
        "actual_cash_cents": 124800  (optional)
    }

    Returns:
        200: Reconciliation; "finalized" is false when scans need fixing
        400: Malformed request
        404: Session not found
        409: Session not CLOSING
    """
    try:
        data = require_fields(request.get_json(silent=True), "scans")
        raw_scans = data["scans"]
        if not isinstance(raw_scans, list):
            raise ValidationError("scans must be a list")
        scans = [_parse_scan(item, i) for i, item in enumerate(raw_scans)]

        config = current_app.config
        outcome = closing_service.reconcile_scans(
            session_id,
            scans,
            actual_cash_cents=optional_int(data, "actual_cash_cents", minimum=0),
            ticket_tolerance=int(config.get("TICKET_VARIANCE_TOLERANCE", 0)),
            cash_absolute_cents=int(config.get("CASH_VARIANCE_ABSOLUTE_CENTS", 500)),
            cash_percent=float(config.get("CASH_VARIANCE_PERCENT", 1.0)),
        )
        return jsonify(outcome.to_dict()), 200

    except ValidationError as e:
        return error_response(e, 400)
    except NotFoundError as e:
        return error_response(e, 404)
    except ConflictError as e:
        return error_response(e, 409)
    except Exception:
        current_app.logger.exception("Failed to reconcile closing scans")
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


@closings_bp.post("/<int:session_id>/approve")
def approve_variance_route(session_id: int):
    """
    Approve a variance and close.

    Request body:
    {
        "variance_reason": "Two tickets torn during display swap",
        "approved_by": 7
    }

    Returns:
        200: Session CLOSED, approval recorded
        400: Missing or blank variance_reason (code VARIANCE_REASON_REQUIRED)
        409: Session not in VARIANCE_REVIEW
    """
    try:
        data = json_body(optional=True)
        approved_by = data.get("approved_by")
        record = closing_service.approve_variance(
            session_id,
            data.get("variance_reason"),
            approved_by=coerce_int(approved_by, "approved_by") if approved_by is not None else None,
        )
        return jsonify({
            "closing": record.closing_session.to_dict(),
            "approval": record.to_dict(),
        }), 200

    except ValidationError as e:
        return error_response(e, 400)
    except NotFoundError as e:
        return error_response(e, 404)
    except ConflictError as e:
        return error_response(e, 409)
    except Exception:
        current_app.logger.exception("Failed to approve closing variance")
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


@closings_bp.get("/<int:session_id>")
def get_closing_route(session_id: int):
    try:
        return jsonify({"closing": closing_service.get_closing_summary(session_id)}), 200
    except NotFoundError as e:
        return error_response(e, 404)
