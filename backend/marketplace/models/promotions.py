from __future__ import annotations

from sqlalchemy import and_
from sqlalchemy.ext.hybrid import hybrid_method

from ..extensions import db
from ..time_utils import to_utc_z


PROMO_TYPE_PERCENT = "PERCENT"
PROMO_TYPE_SUBTRACT = "SUBTRACT"

PROMO_TYPES = (PROMO_TYPE_PERCENT, PROMO_TYPE_SUBTRACT)


class Promotion(db.Model):
    """
    Time-windowed marketing campaign of a business.

    Active at instant t iff visible and start_promotion_date <= t <= end_promotion_date.
    public_name is what customers see; name is the merchant's internal label.
    """
    __tablename__ = "promotions"
    __table_args__ = (
        db.Index("ix_promotions_business_window", "business_id", "start_promotion_date", "end_promotion_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    public_name = db.Column(db.String(255), nullable=True)
    cover = db.Column(db.String(512), nullable=True)

    visible = db.Column(db.Boolean, nullable=False, default=True)
    start_promotion_date = db.Column(db.DateTime(timezone=True), nullable=False)
    end_promotion_date = db.Column(db.DateTime(timezone=True), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    details = db.relationship(
        "PromotionDetail",
        backref="promotion",
        lazy=True,
        order_by="PromotionDetail.id",
    )

    @hybrid_method
    def is_active_at(self, moment) -> bool:
        return bool(self.visible) and self.start_promotion_date <= moment <= self.end_promotion_date

    @is_active_at.expression
    def is_active_at(cls, moment):
        return and_(
            cls.visible.is_(True),
            cls.start_promotion_date <= moment,
            cls.end_promotion_date >= moment,
        )

    def to_dict(self, include_details: bool = False) -> dict:
        data = {
            "id": self.id,
            "business_id": self.business_id,
            "name": self.name,
            "public_name": self.public_name,
            "cover": self.cover,
            "visible": self.visible,
            "start_promotion_date": to_utc_z(self.start_promotion_date),
            "end_promotion_date": to_utc_z(self.end_promotion_date),
            "created_at": to_utc_z(self.created_at),
        }
        if include_details:
            data["details"] = [d.to_dict() for d in self.details]
        return data


class PromotionDetail(db.Model):
    """
    Per-item discount mechanism inside a promotion.

    PERCENT: discount in [0, 100]; base_amount/add_amount unset.
    SUBTRACT: quantity break "buy base_amount, get add_amount extra";
              base_amount > 0 and add_amount > 0; discount unset.
    """
    __tablename__ = "promotion_details"
    __table_args__ = (
        db.Index("ix_promotion_details_item", "item_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    promotion_id = db.Column(db.Integer, db.ForeignKey("promotions.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False)

    type = db.Column(db.String(16), nullable=False)  # PERCENT, SUBTRACT
    name = db.Column(db.String(255), nullable=True)

    discount = db.Column(db.Numeric(5, 2), nullable=True)
    base_amount = db.Column(db.Integer, nullable=True)
    add_amount = db.Column(db.Integer, nullable=True)

    item = db.relationship("Item")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "promotion_id": self.promotion_id,
            "item_id": self.item_id,
            "type": self.type,
            "name": self.name,
            "discount": str(self.discount) if self.discount is not None else None,
            "base_amount": self.base_amount,
            "add_amount": self.add_amount,
        }
