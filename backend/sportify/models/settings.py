from __future__ import annotations

from ..extensions import db
from sportify.time_utils import to_utc_z


GLOBAL_SETTINGS_KEY = "GLOBAL_SETTINGS"


class GlobalSettings(db.Model):
    """
    Single-row store of platform-wide settings.

    Totals never cache these values: cart and order services read the row
    for every recomputation and pass the numbers into order_totals.
    """
    __tablename__ = "global_settings"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    singleton_key = db.Column(db.String(32), nullable=False, unique=True, default=GLOBAL_SETTINGS_KEY)

    site_name = db.Column(db.String(120), nullable=False, default="Sportify")
    site_description = db.Column(db.String(255), nullable=True, default="Your one-stop shop for sports equipment")
    currency = db.Column(db.String(3), nullable=False, default="LKR")

    # 800 bps = 8%
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=800)

    shipping_standard_cents = db.Column(db.Integer, nullable=False, default=50000)
    shipping_express_cents = db.Column(db.Integer, nullable=False, default=120000)
    shipping_overnight_cents = db.Column(db.Integer, nullable=False, default=250000)

    low_stock_threshold = db.Column(db.Integer, nullable=False, default=5)

    # Platform cut of delivered sales before supplier payouts; 1000 bps = 10%
    site_commission_bps = db.Column(db.Integer, nullable=False, default=1000)

    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def shipping_rates(self) -> dict[str, int]:
        return {
            "standard": self.shipping_standard_cents,
            "express": self.shipping_express_cents,
            "overnight": self.shipping_overnight_cents,
        }

    def to_dict(self) -> dict:
        return {
            "site_name": self.site_name,
            "site_description": self.site_description,
            "currency": self.currency,
            "tax_rate_bps": self.tax_rate_bps,
            "shipping_rates": self.shipping_rates(),
            "low_stock_threshold": self.low_stock_threshold,
            "site_commission_bps": self.site_commission_bps,
            "updated_by_user_id": self.updated_by_user_id,
            "updated_at": to_utc_z(self.updated_at),
        }
