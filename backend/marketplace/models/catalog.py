from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Item(db.Model):
    """
    Catalog item of a business.

    CODE DESIGN DECISION:
    Item.code is the merchant's own identifier (1C / POS export code) and the
    key every catalog sync payload addresses rows by.
    - Codes are unique within a business: UniqueConstraint("business_id", "code")
    - Sync never inserts a second row for an existing (business, code)

    Pricing reads Item.price live at settlement time; there is no price history
    table, so a sync only affects orders recalculated after it lands.
    """
    __tablename__ = "items"
    __table_args__ = (
        db.UniqueConstraint("business_id", "code", name="uq_items_business_code"),
        db.Index("ix_items_business_visible", "business_id", "visible"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)

    code = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    barcode = db.Column(db.String(64), nullable=True)

    price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    amount = db.Column(db.Numeric(12, 3), nullable=False, default=0)  # stock on hand
    visible = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    business = db.relationship("Business", backref=db.backref("items", lazy=True))

    def __repr__(self) -> str:
        return f"<Item id={self.id} code={self.code!r} business_id={self.business_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "code": self.code,
            "name": self.name,
            "barcode": self.barcode,
            "price": str(self.price) if self.price is not None else None,
            "amount": str(self.amount) if self.amount is not None else None,
            "visible": self.visible,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
