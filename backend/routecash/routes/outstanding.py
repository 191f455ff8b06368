# Overview: Flask API routes for outstanding balances; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import ROLE_KPO, ROLE_SALESMAN, require_actor, require_role
from ..errors import RouteCashError
from ..services import delivery_service, reporting_service
from ..validation import parse_int

outstanding_bp = Blueprint("outstanding", __name__, url_prefix="/api/outstanding")


@outstanding_bp.post("/orders/<int:order_id>/collect")
@require_actor
@require_role(ROLE_SALESMAN, ROLE_KPO)
def collect_route(order_id: int):
    """
    Collect cash against a delivered order's outstanding balance.

    Request body:
    {"amount": "2500", "notes": "Second visit", "sequence": 2}
    """
    try:
        data = request.get_json() or {}
        if data.get("amount") is None:
            return jsonify({"error": "amount is required"}), 400

        raw_sequence = data.get("sequence")
        outcome = delivery_service.collect_outstanding_payment(
            order_id,
            data["amount"],
            data.get("notes"),
            sequence=parse_int(raw_sequence, "sequence") if raw_sequence is not None else None,
            actor_user_id=g.current_user.id,
        )
        return jsonify(outcome.to_dict()), 200

    except RouteCashError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to collect outstanding payment")
        return jsonify({"error": "Internal server error"}), 500


@outstanding_bp.get("/shops/<int:shop_id>")
@require_actor
def shop_credit_route(shop_id: int):
    try:
        return jsonify(reporting_service.get_shop_credit_summary(shop_id)), 200
    except RouteCashError as e:
        return jsonify(e.to_dict()), e.status_code
