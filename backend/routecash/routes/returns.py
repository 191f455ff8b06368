# Overview: Flask API routes for stock returns; parses input and returns JSON responses.

"""
Stock Return API Routes

- Bookers and salesmen record returns (status: pending)
- KPO approves (posts the RETURN ledger entry) or rejects
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import ROLE_BOOKER, ROLE_KPO, ROLE_SALESMAN, require_actor, require_role
from ..errors import RouteCashError
from ..services import return_service

returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")


@returns_bp.post("")
@require_actor
@require_role(ROLE_BOOKER, ROLE_SALESMAN, ROLE_KPO)
def create_return_route():
    """
    Request body:
    {
        "shop_id": 12,
        "order_id": 40,   (optional)
        "lines": [{"product_id": 3, "quantity": 2, "reason": "damaged"}],
        "notes": "Packets torn"
    }
    """
    try:
        data = request.get_json() or {}
        if not data.get("shop_id"):
            return jsonify({"error": "shop_id is required"}), 400

        stock_return = return_service.create_return(
            data["shop_id"],
            data.get("lines") or [],
            order_id=data.get("order_id"),
            notes=data.get("notes"),
            actor_user_id=g.current_user.id,
        )
        return jsonify({"return": stock_return.to_dict(include_lines=True)}), 201

    except RouteCashError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create return")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("/<int:return_id>/approve")
@require_actor
@require_role(ROLE_KPO)
def approve_return_route(return_id: int):
    try:
        stock_return = return_service.approve_return(return_id, actor_user_id=g.current_user.id)
        return jsonify({"return": stock_return.to_dict()}), 200
    except RouteCashError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to approve return")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("/<int:return_id>/reject")
@require_actor
@require_role(ROLE_KPO)
def reject_return_route(return_id: int):
    try:
        data = request.get_json() or {}
        stock_return = return_service.reject_return(
            return_id, data.get("reason"), actor_user_id=g.current_user.id
        )
        return jsonify({"return": stock_return.to_dict()}), 200
    except RouteCashError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to reject return")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("/<int:return_id>")
@require_actor
def get_return_route(return_id: int):
    try:
        return jsonify({"return": return_service.get_return(return_id).to_dict(include_lines=True)}), 200
    except RouteCashError as e:
        return jsonify(e.to_dict()), e.status_code
