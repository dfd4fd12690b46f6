from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Business(db.Model):
    """
    Merchant that lists items and fulfils orders.

    Every catalog row, promotion and order is scoped to exactly one business.
    """
    __tablename__ = "businesses"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class BusinessToken(db.Model):
    """
    Bearer token for merchant integrations (order status updates, catalog sync).

    Only the SHA-256 hash is stored; the plaintext is shown once when issued.
    """
    __tablename__ = "business_tokens"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)
    name = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=True)
    is_revoked = db.Column(db.Boolean, nullable=False, default=False)

    business = db.relationship("Business", backref=db.backref("tokens", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "name": self.name,
            "created_at": to_utc_z(self.created_at),
            "last_used_at": to_utc_z(self.last_used_at),
            "is_revoked": self.is_revoked,
        }
