# Overview: Flask API routes for customers; every query runs through the session's scope enforcement.

"""
Customer API routes

These handlers contain no tenant filtering of their own. The caller's
scope is bound to the session by require_auth, so:
- list queries only return rows inside the caller's scope
- fetching an out-of-scope id is indistinguishable from a missing one (403)
- writes that would leave the caller's scope are rejected at flush, atomically
"""

from flask import Blueprint, current_app, g, jsonify, request
from sqlalchemy import select

from ..decorators import require_access, require_auth
from ..errors import AuthError
from ..extensions import db
from ..models import Customer
from ..services.scope_service import scoped_get


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")

UPDATABLE_FIELDS = ("name", "email", "phone", "retailer_id", "location_id")


@customers_bp.get("")
@require_auth
@require_access()
def list_customers_route():
    customers = db.session.execute(select(Customer).order_by(Customer.id.asc())).scalars().all()
    return jsonify({"customers": [c.to_dict() for c in customers]}), 200


@customers_bp.post("")
@require_auth
@require_access()
def create_customer_route():
    """
    Create a customer. retailer_id/location_id default to the caller's own scope.
    """
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    if not name:
        return jsonify({"error": "name required"}), 400

    principal = g.current_principal
    retailer_id = data.get("retailer_id", principal.retailer_id)
    if retailer_id is None:
        return jsonify({"error": "retailer_id required"}), 400

    try:
        customer = Customer(
            name=name,
            email=data.get("email"),
            phone=data.get("phone"),
            retailer_id=retailer_id,
            location_id=data.get("location_id", principal.location_id),
        )
        db.session.add(customer)
        db.session.commit()
        return jsonify({"customer": customer.to_dict()}), 201

    except AuthError:
        raise
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to create customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.get("/<int:customer_id>")
@require_auth
@require_access()
def get_customer_route(customer_id: int):
    customer = scoped_get(Customer, customer_id)
    return jsonify({"customer": customer.to_dict()}), 200


@customers_bp.patch("/<int:customer_id>")
@require_auth
@require_access()
def update_customer_route(customer_id: int):
    """
    Update a customer. Reassigning retailer_id/location_id outside the
    caller's scope is rejected and nothing is written.
    """
    data = request.get_json(silent=True) or {}
    customer = scoped_get(Customer, customer_id)

    for field in UPDATABLE_FIELDS:
        if field in data:
            setattr(customer, field, data[field])
    db.session.commit()

    return jsonify({"customer": customer.to_dict()}), 200


@customers_bp.delete("/<int:customer_id>")
@require_auth
@require_access()
def delete_customer_route(customer_id: int):
    customer = scoped_get(Customer, customer_id)
    db.session.delete(customer)
    db.session.commit()
    return jsonify({"deleted": True}), 200
