# Overview: Flask API routes for the branch ledger; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import ROLE_KPO, require_actor, require_role
from ..errors import RouteCashError
from ..services import ledger_service, reporting_service
from ..time_utils import parse_iso_datetime
from ..validation import parse_money

"""
Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- start_date/end_date filtering is inclusive on both ends.
"""

ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/ledger")


def _date_range():
    return (
        parse_iso_datetime(request.args.get("start_date")),
        parse_iso_datetime(request.args.get("end_date")),
    )


@ledger_bp.get("")
@require_actor
@require_role(ROLE_KPO)
def list_ledger_route():
    branch_id = request.args.get("branch_id", type=int)
    if not branch_id:
        return jsonify({"error": "branch_id is required"}), 400

    try:
        start_dt, end_dt = _date_range()
    except ValueError:
        return jsonify({"error": "start_date and end_date must be ISO-8601 datetimes"}), 400

    entry_type = request.args.get("entry_type")
    if entry_type and entry_type not in ledger_service.ENTRY_TYPES:
        return jsonify({"error": f"entry_type must be one of {list(ledger_service.ENTRY_TYPES)}"}), 400

    entries, total = reporting_service.get_ledger_entries(
        branch_id,
        start_dt,
        end_dt,
        entry_type=entry_type,
        limit=request.args.get("limit", default=500, type=int),
        offset=request.args.get("offset", default=0, type=int),
    )
    return jsonify({"entries": [e.to_dict() for e in entries], "total": total}), 200


@ledger_bp.get("/summary")
@require_actor
@require_role(ROLE_KPO)
def branch_summary_route():
    branch_id = request.args.get("branch_id", type=int)
    if not branch_id:
        return jsonify({"error": "branch_id is required"}), 400

    try:
        start_dt, end_dt = _date_range()
    except ValueError:
        return jsonify({"error": "start_date and end_date must be ISO-8601 datetimes"}), 400

    try:
        return jsonify(reporting_service.get_branch_cash_summary(branch_id, start_dt, end_dt)), 200
    except RouteCashError as e:
        return jsonify(e.to_dict()), e.status_code


@ledger_bp.post("/adjustments")
@require_actor
@require_role(ROLE_KPO)
def create_adjustment_route():
    """
    Post a manual cash correction.

    Request body:
    {"amount": "-150", "notes": "Counterfeit note", "order_id": 9}
    or
    {"amount": "200", "notes": "Found in cash box", "branch_id": 1}
    """
    try:
        data = request.get_json() or {}
        entry = ledger_service.post_manual_adjustment(
            parse_money(data.get("amount"), "amount"),
            data.get("notes"),
            order_id=data.get("order_id"),
            branch_id=data.get("branch_id"),
            actor_user_id=g.current_user.id,
        )
        return jsonify({"entry": entry.to_dict()}), 201

    except RouteCashError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to post ledger adjustment")
        return jsonify({"error": "Internal server error"}), 500
