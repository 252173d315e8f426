# Overview: Service-layer operations for discount codes: CRUD, validation at apply/checkout time, usage counting.

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DiscountCode
from ..models.promotions import (
    DISCOUNT_PERCENTAGE,
    DISCOUNT_FIXED,
    DISCOUNT_FREE_SHIPPING,
    VALID_DISCOUNT_TYPES,
)
from ..validation import DISCOUNT_POLICY, ValidationError, enforce_rules_amount, validate_payload
from sportify.time_utils import to_utc_naive, utcnow
from .concurrency import execute_guarded_update
from .order_totals import AppliedDiscount, compute_discount_amount


class DiscountError(ValueError):
    pass


class DiscountNotFound(DiscountError):
    pass


class DiscountExpiredOrInactive(DiscountError):
    pass


class DiscountNotApplicable(DiscountError):
    pass


def normalize_code(code) -> str:
    if not isinstance(code, str) or not code.strip():
        raise DiscountError("code is required")
    return code.strip().upper()


def to_applied(discount: DiscountCode) -> AppliedDiscount:
    return AppliedDiscount(
        code=discount.code,
        discount_type=discount.discount_type,
        discount_value=discount.discount_value,
        max_discount_cents=discount.max_discount_cents,
    )


def _enforce_rules(fields: dict) -> None:
    discount_type = fields.get("discount_type")
    if discount_type not in VALID_DISCOUNT_TYPES:
        raise DiscountError("discount_type must be percentage, fixed, or free_shipping")

    value = fields.get("discount_value") or 0
    if discount_type == DISCOUNT_PERCENTAGE and not (0 < value <= 10000):
        raise DiscountError("percentage discount_value must be between 1 and 10000 basis points")
    if discount_type == DISCOUNT_FIXED and value <= 0:
        raise DiscountError("fixed discount_value must be > 0")

    try:
        enforce_rules_amount(fields, "min_order_cents")
        enforce_rules_amount(fields, "max_discount_cents")
    except ValidationError as exc:
        raise DiscountError(str(exc))

    if fields.get("usage_limit") is not None and fields["usage_limit"] < 1:
        raise DiscountError("usage_limit must be >= 1")

    start, end = fields.get("start_date"), fields.get("end_date")
    if start is None or end is None:
        raise DiscountError("start_date and end_date are required")
    if to_utc_naive(start) > to_utc_naive(end):
        raise DiscountError("start_date must be on or before end_date")


def _clean(data: dict, *, partial: bool) -> dict:
    try:
        patch = validate_payload(model=DiscountCode, payload=data, policy=DISCOUNT_POLICY, partial=partial)
    except ValidationError as exc:
        raise DiscountError(str(exc))
    if "code" in patch:
        patch["code"] = normalize_code(patch["code"])
    return patch


def get_discount(discount_id: int) -> DiscountCode:
    discount = db.session.get(DiscountCode, discount_id)
    if discount is None:
        raise DiscountNotFound("Discount code not found")
    return discount


def create_discount(data: dict, *, created_by_user_id: int | None) -> DiscountCode:
    patch = _clean(data, partial=False)
    patch.setdefault("discount_value", 0)
    if patch["discount_type"] == DISCOUNT_FREE_SHIPPING:
        patch["discount_value"] = 0
    _enforce_rules(patch)

    discount = DiscountCode(created_by_user_id=created_by_user_id, **patch)
    db.session.add(discount)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise DiscountError(f"Discount code {patch['code']} already exists")
    return discount


def update_discount(discount_id: int, data: dict) -> DiscountCode:
    discount = get_discount(discount_id)
    patch = _clean(data, partial=True)

    merged = {
        "discount_type": discount.discount_type,
        "discount_value": discount.discount_value,
        "min_order_cents": discount.min_order_cents,
        "max_discount_cents": discount.max_discount_cents,
        "usage_limit": discount.usage_limit,
        "start_date": discount.start_date,
        "end_date": discount.end_date,
    }
    merged.update({k: v for k, v in patch.items() if k in merged})
    _enforce_rules(merged)

    for key, value in patch.items():
        setattr(discount, key, value)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise DiscountError("Discount code already exists")
    return discount


def deactivate_discount(discount_id: int) -> DiscountCode:
    discount = get_discount(discount_id)
    discount.is_active = False
    db.session.commit()
    return discount


def list_discounts(
    *,
    page: int = 1,
    per_page: int = 20,
    active_only: bool = False,
    search: str | None = None,
) -> tuple[list[DiscountCode], int]:
    q = db.session.query(DiscountCode)
    if active_only:
        q = q.filter(DiscountCode.is_active.is_(True))
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(DiscountCode.code.ilike(like), DiscountCode.name.ilike(like)))

    total = q.count()
    page = max(1, page)
    per_page = min(max(1, per_page), 100)
    rows = (
        q.order_by(DiscountCode.created_at.desc(), DiscountCode.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return rows, total


def resolve_discount(code: str, subtotal_cents: int, *, now: datetime | None = None):
    """
    Look up a code and check it against the given subtotal.

    Returns (AppliedDiscount, discount_amount Decimal). Used both when a
    code is applied to a cart and again when the order is placed.
    """
    normalized = normalize_code(code)
    discount = db.session.query(DiscountCode).filter_by(code=normalized).first()
    if discount is None:
        raise DiscountNotFound("Invalid discount code")

    if not discount.is_valid(now or utcnow()):
        raise DiscountExpiredOrInactive("Discount code is expired or inactive")

    if subtotal_cents < (discount.min_order_cents or 0):
        raise DiscountNotApplicable(
            f"Minimum order amount of {discount.min_order_cents} cents is required for this code"
        )

    applied = to_applied(discount)
    return applied, compute_discount_amount(applied, Decimal(subtotal_cents))


def increment_usage(code: str) -> None:
    """
    used_count + 1 without a read-modify-write, refusing once the limit is hit.

    Does not commit; called inside order placement.
    """
    normalized = normalize_code(code)
    stmt = (
        update(DiscountCode)
        .where(
            DiscountCode.code == normalized,
            or_(DiscountCode.usage_limit.is_(None), DiscountCode.used_count < DiscountCode.usage_limit),
        )
        .values(
            used_count=DiscountCode.used_count + 1,
            version_id=DiscountCode.version_id + 1,
        )
    )
    if not execute_guarded_update(stmt):
        raise DiscountExpiredOrInactive("Discount code usage limit reached")
