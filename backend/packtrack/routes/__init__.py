from __future__ import annotations

from flask import jsonify, request

from ..validation import require_fields

# Scanners terminate a read with Enter or Tab
SCANNER_SUFFIX_CHARS = "\r\n\t"


def error_response(e: Exception, status: int):
    """JSON error body carrying the exception's machine-readable code."""
    body = {"error": str(e), "code": getattr(e, "code", "ERROR")}
    metrics = getattr(e, "metrics", None)
    if metrics is not None:
        body["scan_metrics"] = metrics.to_dict()
    return jsonify(body), status


def strip_scanner_suffix(value):
    if isinstance(value, str):
        return value.rstrip(SCANNER_SUFFIX_CHARS)
    return value


def json_body(*, optional: bool = False):
    """Request JSON as a dict; a missing body is {} when optional, arrays and scalars are rejected."""
    data = request.get_json(silent=True)
    if data is None and optional:
        return {}
    return require_fields(data)
