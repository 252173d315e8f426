from __future__ import annotations

from datetime import datetime

from ..extensions import db
from sportify.time_utils import to_utc_naive, to_utc_z, utcnow


DISCOUNT_PERCENTAGE = "percentage"
DISCOUNT_FIXED = "fixed"
DISCOUNT_FREE_SHIPPING = "free_shipping"
VALID_DISCOUNT_TYPES = {DISCOUNT_PERCENTAGE, DISCOUNT_FIXED, DISCOUNT_FREE_SHIPPING}


class DiscountCode(db.Model):
    """
    Operator-defined discount code.

    discount_value is basis points for percentage codes (1000 = 10%) and
    cents for fixed codes. free_shipping codes ignore it.
    """
    __tablename__ = "discount_codes"
    __table_args__ = (
        db.Index("ix_discount_codes_code_active", "code", "is_active"),
        db.Index("ix_discount_codes_window", "start_date", "end_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Stored uppercase, whitespace stripped (see discount_service.normalize_code)
    code = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    discount_type = db.Column(db.String(16), nullable=False)
    discount_value = db.Column(db.Integer, nullable=False, default=0)

    min_order_cents = db.Column(db.Integer, nullable=False, default=0)
    max_discount_cents = db.Column(db.Integer, nullable=True)

    start_date = db.Column(db.DateTime(timezone=True), nullable=False)
    end_date = db.Column(db.DateTime(timezone=True), nullable=False)

    usage_limit = db.Column(db.Integer, nullable=True)
    used_count = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def is_valid(self, now: datetime | None = None) -> bool:
        now = to_utc_naive(now or utcnow())
        if not self.is_active:
            return False
        if to_utc_naive(self.start_date) > now or to_utc_naive(self.end_date) < now:
            return False
        if self.usage_limit is not None and self.used_count >= self.usage_limit:
            return False
        return True

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "min_order_cents": self.min_order_cents,
            "max_discount_cents": self.max_discount_cents,
            "start_date": to_utc_z(self.start_date),
            "end_date": to_utc_z(self.end_date),
            "usage_limit": self.usage_limit,
            "used_count": self.used_count,
            "is_active": self.is_active,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
