# Overview: Service-layer operations for merchant promotions; creation by item code and active listing.

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from ..extensions import db
from ..models import Item, Promotion, PromotionDetail
from ..models.promotions import PROMO_TYPE_PERCENT, PROMO_TYPE_SUBTRACT, PROMO_TYPES
from ..time_utils import after, parse_iso_datetime, utcnow
from ..validation import NotFoundError, ValidationError, parse_int, parse_number, to_text
from .pricing_service import PROMO_TYPE_ALIASES


DEFAULT_DURATION_DAYS = 7


def _parse_date(value: Any, field: str) -> datetime | None:
    try:
        return parse_iso_datetime(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {field} format")


def _promotion_window(data: dict) -> tuple[datetime, datetime]:
    start = _parse_date(data.get("start_promotion_date"), "start_promotion_date") or utcnow()

    end = _parse_date(data.get("end_promotion_date"), "end_promotion_date")
    if end is None:
        if data.get("duration_days") is not None:
            days = parse_int(data.get("duration_days"), "duration_days")
            if days is None or days <= 0:
                raise ValidationError("duration_days must be a number greater than 0")
        else:
            days = DEFAULT_DURATION_DAYS
        end = after(start, days=days)

    if end <= start:
        raise ValidationError("end_promotion_date must be later than start_promotion_date")
    return start, end


def _items_by_code(business_id: int, codes: list[str]) -> dict[str, int]:
    rows = (
        db.session.query(Item.id, Item.code)
        .filter(Item.business_id == business_id, Item.code.in_(codes))
        .all()
    )
    found = {code: item_id for item_id, code in rows}
    missing = [c for c in codes if c not in found]
    if missing:
        raise NotFoundError(f"Items not found by code: {', '.join(missing)}")
    return found


def _clean_codes(values) -> list[str]:
    codes: list[str] = []
    for value in values:
        code = to_text(value)
        if code and code not in codes:
            codes.append(code)
    return codes


def _validate_parameters(promo_type: str, detail: dict) -> dict:
    if promo_type == PROMO_TYPE_PERCENT:
        discount = parse_number(detail.get("discount"), "discount")
        if discount is None or discount < 0 or discount > 100:
            raise ValidationError("PERCENT promotions require a discount between 0 and 100")
        return {"discount": discount, "base_amount": None, "add_amount": None}

    base = parse_int(detail.get("base_amount"), "base_amount")
    add = parse_int(detail.get("add_amount"), "add_amount")
    if base is None or add is None or base <= 0 or add <= 0:
        raise ValidationError("SUBTRACT promotions require base_amount and add_amount greater than 0")
    return {"discount": None, "base_amount": base, "add_amount": add}


def _resolve_details(business_id: int, promo_type: str, data: dict) -> list[dict]:
    details_input = data.get("details") if isinstance(data.get("details"), list) else []
    if any(isinstance(d, dict) and "item_id" in d for d in details_input):
        raise ValidationError("details.item_id is not accepted; use details.item_code")

    if details_input:
        codes = [to_text(d.get("item_code")) if isinstance(d, dict) else None for d in details_input]
        if any(c is None for c in codes) or len(set(codes)) != len(codes):
            raise ValidationError("Each detail must carry a distinct item_code")
        id_by_code = _items_by_code(business_id, codes)
        resolved = []
        for code, detail in zip(codes, details_input):
            params = _validate_parameters(promo_type, detail)
            resolved.append({"item_id": id_by_code[code], "name": to_text(detail.get("name")), **params})
        return resolved

    if data.get("apply_to_all_items"):
        item_ids = [
            row.id for row in
            db.session.query(Item.id)
            .filter(Item.business_id == business_id, Item.visible.is_(True))
            .order_by(Item.id.asc())
            .all()
        ]
    elif isinstance(data.get("item_codes"), list) and _clean_codes(data["item_codes"]):
        codes = _clean_codes(data["item_codes"])
        id_by_code = _items_by_code(business_id, codes)
        item_ids = [id_by_code[c] for c in codes]
    else:
        item_ids = []

    if not item_ids:
        raise ValidationError("Provide details or item_codes, or enable apply_to_all_items")

    params = _validate_parameters(promo_type, data)
    return [{"item_id": item_id, "name": None, **params} for item_id in item_ids]


def _default_name(promo_type: str, first: dict) -> str:
    if promo_type == PROMO_TYPE_PERCENT:
        discount = first["discount"].normalize() if isinstance(first["discount"], Decimal) else first["discount"]
        return f"Discount {discount:f}%"
    return f"Promo {first['base_amount']}+{first['add_amount']}"


def create_promotion(business_id: int, data: dict) -> Promotion:
    """
    Create a promotion with one detail per targeted item.

    Items are addressed by the merchant's item codes (details[].item_code or
    item_codes), or every visible item with apply_to_all_items. Everything is
    validated before the single commit.

    Raises:
        ValidationError: Bad type, dates, parameters or missing targets
        NotFoundError: Unknown item codes
    """
    if "item_ids" in data:
        raise ValidationError("item_ids is not accepted; use item_codes")

    raw_type = to_text(data.get("type"))
    if not raw_type:
        raise ValidationError("type is required")
    promo_type = PROMO_TYPE_ALIASES.get(raw_type, raw_type)
    if promo_type not in PROMO_TYPES:
        raise ValidationError(f"Invalid type. Must be one of: {PROMO_TYPE_SUBTRACT}, {PROMO_TYPE_PERCENT}")

    start, end = _promotion_window(data)
    details = _resolve_details(business_id, promo_type, data)

    name = to_text(data.get("name")) or _default_name(promo_type, details[0])
    promotion = Promotion(
        business_id=business_id,
        name=name,
        public_name=to_text(data.get("public_name")) or name,
        cover=to_text(data.get("cover")) or "",
        visible=bool(data["visible"]) if data.get("visible") is not None else True,
        start_promotion_date=start,
        end_promotion_date=end,
    )
    db.session.add(promotion)
    db.session.flush()

    for detail in details:
        db.session.add(PromotionDetail(
            promotion_id=promotion.id,
            item_id=detail["item_id"],
            type=promo_type,
            name=detail["name"] or name,
            discount=detail["discount"],
            base_amount=detail["base_amount"],
            add_amount=detail["add_amount"],
        ))
    db.session.commit()
    return promotion


def list_active_promotions(business_id: int, now: datetime | None = None) -> list[Promotion]:
    now = now or utcnow()
    return (
        db.session.query(Promotion)
        .filter(
            Promotion.business_id == business_id,
            Promotion.is_active_at(now),
        )
        .order_by(Promotion.start_promotion_date.desc(), Promotion.id.desc())
        .all()
    )
