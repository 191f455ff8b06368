# Overview: Flask API routes for order operations; parses input and returns JSON responses.

"""
Order API Routes

DESIGN:
- Bookers create draft orders and edit their items
- Submit is two-phase when the order carries unauthorized discount: a 409
  with requires_confirmation=True, then a retry with
  acknowledge_unauthorized=true
- KPO/admin move orders through finalized -> billed -> load_form_ready ->
  assigned; delivered only happens through a delivery payment
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import ROLE_BOOKER, ROLE_KPO, require_actor, require_role
from ..errors import RouteCashError
from ..services import order_service
from ..services.order_state import KPO_DECISIONS, OrderStatus, parse_status

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


# =============================================================================
# DRAFTS
# =============================================================================

@orders_bp.post("")
@require_actor
@require_role(ROLE_BOOKER)
def create_order_route():
    """
    Create a draft order.

    Request body:
    {
        "shop_id": 12,
        "items": [{"product_id": 3, "quantity": 10, "discount_percent": 5}],
        "notes": "Deliver before Friday"  (optional)
    }

    The acting user is the booker.
    """
    try:
        data = request.get_json() or {}
        if not data.get("shop_id"):
            return jsonify({"error": "shop_id is required"}), 400

        order = order_service.create_order(
            shop_id=data["shop_id"],
            booker_id=g.current_user.id,
            items=data.get("items") or [],
            notes=data.get("notes"),
        )
        return jsonify({"order": order.to_dict(include_items=True)}), 201

    except RouteCashError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.put("/<int:order_id>/items")
@require_actor
@require_role(ROLE_BOOKER)
def update_items_route(order_id: int):
    try:
        data = request.get_json() or {}
        order = order_service.update_order_items(order_id, data.get("items") or [])
        return jsonify({"order": order.to_dict(include_items=True)}), 200

    except RouteCashError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update order items")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# STATUS CHANGES
# =============================================================================

@orders_bp.post("/<int:order_id>/submit")
@require_actor
@require_role(ROLE_BOOKER)
def submit_order_route(order_id: int):
    """
    Submit a draft order.

    Request body (optional):
    {"acknowledge_unauthorized": true}

    Returns:
        200: Order submitted (or already submitted)
        409: Unauthorized discount needs acknowledgement (requires_confirmation)
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.submit_order(
            order_id,
            acknowledge_unauthorized=data.get("acknowledge_unauthorized") is True,
        )
        return jsonify({"order": order.to_dict()}), 200

    except RouteCashError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to submit order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/transition")
@require_actor
@require_role(ROLE_KPO, ROLE_BOOKER)
def transition_order_route(order_id: int):
    """
    Move an order to another status.

    Request body:
    {
        "status": "finalized",
        "salesman_id": 7,   (required for "assigned")
        "note": "Approved"  (optional)
    }

    KPO decisions and office progression need the kpo role; bookers may only
    cancel.
    """
    try:
        data = request.get_json() or {}
        if not data.get("status"):
            return jsonify({"error": "status is required"}), 400
        target = parse_status(data["status"])

        if g.current_user.role == ROLE_BOOKER and target != OrderStatus.CANCELLED:
            return jsonify({"error": "Permission denied", "required_roles": [ROLE_KPO]}), 403
        if target in KPO_DECISIONS and g.current_user.role not in (ROLE_KPO, "admin"):
            return jsonify({"error": "Permission denied", "required_roles": [ROLE_KPO]}), 403

        order = order_service.transition_order(
            order_id,
            target,
            actor_user_id=g.current_user.id,
            salesman_id=data.get("salesman_id"),
            note=data.get("note"),
        )
        return jsonify({"order": order.to_dict()}), 200

    except RouteCashError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to transition order")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# QUERIES
# =============================================================================

@orders_bp.get("/<int:order_id>")
@require_actor
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
        data = order.to_dict(include_items=True)
        data["delivery"] = order.delivery.to_dict(include_history=True) if order.delivery else None
        return jsonify({"order": data}), 200
    except RouteCashError as e:
        return jsonify(e.to_dict()), e.status_code


@orders_bp.get("")
@require_actor
def list_orders_route():
    try:
        orders, total = order_service.list_orders(
            branch_id=request.args.get("branch_id", type=int),
            status=request.args.get("status"),
            booker_id=request.args.get("booker_id", type=int),
            shop_id=request.args.get("shop_id", type=int),
            limit=request.args.get("limit", default=100, type=int),
            offset=request.args.get("offset", default=0, type=int),
        )
        return jsonify({"orders": [o.to_dict() for o in orders], "total": total}), 200
    except RouteCashError as e:
        return jsonify(e.to_dict()), e.status_code
