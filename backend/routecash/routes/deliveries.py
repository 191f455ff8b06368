# Overview: Flask API routes for delivery payments; parses input and returns JSON responses.

"""
Delivery Payment API Routes

Every mutating request should carry "sequence" (1, 2, 3... per delivery).
Replaying a request with the same sequence is safe: the stored result comes
back with "replayed": true.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import ROLE_KPO, ROLE_SALESMAN, require_actor, require_role
from ..errors import RouteCashError
from ..services import delivery_service
from ..validation import parse_int

deliveries_bp = Blueprint("deliveries", __name__, url_prefix="/api/deliveries")


def _sequence(data: dict):
    raw = data.get("sequence")
    return parse_int(raw, "sequence") if raw is not None else None


@deliveries_bp.get("/<int:delivery_id>")
@require_actor
def get_delivery_route(delivery_id: int):
    try:
        return jsonify({"delivery": delivery_service.get_payment_summary(delivery_id)}), 200
    except RouteCashError as e:
        return jsonify(e.to_dict()), e.status_code


@deliveries_bp.post("/<int:delivery_id>/payments")
@require_actor
@require_role(ROLE_SALESMAN)
def record_payment_route(delivery_id: int):
    """
    Record cash collected at (or after) delivery.

    Request body:
    {
        "amount": "4000",          (omit to propose the full balance)
        "notes": "Shop short on cash",
        "sequence": 1,
        "confirm_default": false
    }

    Returns:
        200: Payment recorded (or replayed)
        409: Full-balance default needs confirmation (requires_confirmation)
        422: Amount out of range
    """
    try:
        data = request.get_json(silent=True) or {}
        outcome = delivery_service.record_delivery_payment(
            delivery_id,
            amount=data.get("amount"),
            notes=data.get("notes"),
            sequence=_sequence(data),
            confirm_default=data.get("confirm_default") is True,
            actor_user_id=g.current_user.id,
        )
        return jsonify(outcome.to_dict()), 200

    except RouteCashError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record delivery payment")
        return jsonify({"error": "Internal server error"}), 500


@deliveries_bp.post("/<int:delivery_id>/adjust")
@require_actor
@require_role(ROLE_KPO, ROLE_SALESMAN)
def adjust_payment_route(delivery_id: int):
    """
    Lower a delivery wrongly recorded as fully paid.

    Request body:
    {"new_amount": "7000", "notes": "Salesman collected 7000 only", "sequence": 2}
    """
    try:
        data = request.get_json() or {}
        if data.get("new_amount") is None:
            return jsonify({"error": "new_amount is required"}), 400

        outcome = delivery_service.adjust_delivery_payment(
            delivery_id,
            data["new_amount"],
            data.get("notes"),
            sequence=_sequence(data),
            actor_user_id=g.current_user.id,
        )
        return jsonify(outcome.to_dict()), 200

    except RouteCashError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to adjust delivery payment")
        return jsonify({"error": "Internal server error"}), 500
