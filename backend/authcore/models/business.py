from __future__ import annotations

from sqlalchemy.orm import column_property, declared_attr

from ..extensions import db
from ..time_utils import to_utc_z


class ScopedRowMixin:
    """
    Organizational scope columns for business rows.

    MULTI-TENANT: Every row belongs to one retailer and optionally to one of
    its locations (NULL = retailer-wide). Models carrying this mixin are
    filtered and write-checked by authcore.services.scope_service on every
    ORM statement, whatever the entry point.
    """

    # active_history: the old value must be known at flush time even when
    # the attribute was expired before it was reassigned.
    @declared_attr
    def retailer_id(cls):
        return column_property(
            db.Column(db.Integer, db.ForeignKey("retailers.id"), nullable=False, index=True),
            active_history=True,
        )

    @declared_attr
    def location_id(cls):
        return column_property(
            db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True, index=True),
            active_history=True,
        )

    def scope_dict(self) -> dict:
        return {"retailer_id": self.retailer_id, "location_id": self.location_id}


class Customer(ScopedRowMixin, db.Model):
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_retailer_email", "retailer_id", "email"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            **self.scope_dict(),
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Order(ScopedRowMixin, db.Model):
    __tablename__ = "orders"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    reference = db.Column(db.String(64), nullable=False)
    status = db.Column(db.String(32), nullable=False, default="draft")
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            **self.scope_dict(),
            "customer_id": self.customer_id,
            "reference": self.reference,
            "status": self.status,
            "total_cents": self.total_cents,
            "created_at": to_utc_z(self.created_at),
        }


class Claim(ScopedRowMixin, db.Model):
    __tablename__ = "claims"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    status = db.Column(db.String(32), nullable=False, default="submitted")
    description = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            **self.scope_dict(),
            "order_id": self.order_id,
            "status": self.status,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
        }


class Shipment(ScopedRowMixin, db.Model):
    __tablename__ = "shipments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    carrier = db.Column(db.String(64), nullable=True)
    tracking_number = db.Column(db.String(128), nullable=True)
    status = db.Column(db.String(32), nullable=False, default="pending")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            **self.scope_dict(),
            "order_id": self.order_id,
            "carrier": self.carrier,
            "tracking_number": self.tracking_number,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }


SCOPED_MODELS = (Customer, Order, Claim, Shipment)
