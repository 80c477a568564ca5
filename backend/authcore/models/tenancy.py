from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Retailer(db.Model):
    """
    Retailer organization: the outer scope boundary.

    WHY: Every scoped business row carries a retailer_id. A retailer-role
    principal sees exactly the rows of its retailer, across all locations.
    """
    __tablename__ = "retailers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Retailer id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Location(db.Model):
    """
    Physical location under exactly one retailer.

    MULTI-TENANT: Location codes are unique within a retailer, not globally.
    """
    __tablename__ = "locations"
    __table_args__ = (
        db.UniqueConstraint("retailer_id", "code", name="uq_locations_retailer_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    retailer_id = db.Column(db.Integer, db.ForeignKey("retailers.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    retailer = db.relationship("Retailer", backref=db.backref("locations", lazy=True))

    def __repr__(self) -> str:
        return f"<Location id={self.id} retailer_id={self.retailer_id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "retailer_id": self.retailer_id,
            "name": self.name,
            "code": self.code,
            "created_at": to_utc_z(self.created_at),
        }
