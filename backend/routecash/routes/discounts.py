# Overview: Flask API routes for booker unauthorized-discount totals; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import ROLE_ADMIN, ROLE_BOOKER, ROLE_KPO, require_actor, require_role
from ..errors import RouteCashError
from ..services import discount_ledger_service

discounts_bp = Blueprint("discounts", __name__, url_prefix="/api/discounts")


@discounts_bp.get("/bookers/<int:booker_id>")
@require_actor
@require_role(ROLE_KPO, ROLE_BOOKER)
def booker_discount_route(booker_id: int):
    """Monthly unauthorized discount for a booker (?month=YYYY-MM optional)."""
    if g.current_user.role == ROLE_BOOKER and g.current_user.id != booker_id:
        return jsonify({"error": "Bookers can only view their own totals"}), 403
    try:
        data = discount_ledger_service.get_booker_monthly_unauthorized_discount(
            booker_id, request.args.get("month")
        )
        return jsonify(data), 200
    except RouteCashError as e:
        return jsonify(e.to_dict()), e.status_code


@discounts_bp.post("/bookers/<int:booker_id>/reset")
@require_actor
@require_role(ROLE_ADMIN)
def reset_booker_discount_route(booker_id: int):
    """
    Zero a booker's month after the salary deduction is settled.

    Request body: {"month": "2024-03"}
    """
    try:
        data = request.get_json() or {}
        audit = discount_ledger_service.reset_unauthorized_discount(
            booker_id, data.get("month"), reset_by=g.current_user.id
        )
        return jsonify({"reset": audit.to_dict()}), 200

    except RouteCashError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to reset booker discount")
        return jsonify({"error": "Internal server error"}), 500
