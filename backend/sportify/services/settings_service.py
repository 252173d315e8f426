from __future__ import annotations

import re

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import GlobalSettings
from ..models.settings import GLOBAL_SETTINGS_KEY
from ..validation import SETTINGS_POLICY, ValidationError, enforce_rules_amount, validate_payload


CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


class SettingsError(ValueError):
    pass


def get_global_settings() -> GlobalSettings:
    """
    Return the settings row, creating it with defaults on first read.

    Not cached anywhere: every totals computation goes through here so a tax
    rate change applies to the very next cart or order.
    """
    row = db.session.query(GlobalSettings).filter_by(singleton_key=GLOBAL_SETTINGS_KEY).first()
    if row is not None:
        return row

    row = GlobalSettings(singleton_key=GLOBAL_SETTINGS_KEY)
    try:
        with db.session.begin_nested():
            db.session.add(row)
    except IntegrityError:
        row = db.session.query(GlobalSettings).filter_by(singleton_key=GLOBAL_SETTINGS_KEY).one()
    return row


def _validate(patch: dict) -> None:
    if "currency" in patch:
        patch["currency"] = patch["currency"].upper()
        if not CURRENCY_RE.match(patch["currency"]):
            raise SettingsError("currency must be a 3-letter code")

    if "tax_rate_bps" in patch:
        rate = patch["tax_rate_bps"]
        if rate < 0 or rate > 10000:
            raise SettingsError("tax_rate_bps must be between 0 and 10000")

    if "site_commission_bps" in patch:
        rate = patch["site_commission_bps"]
        if rate < 0 or rate > 10000:
            raise SettingsError("site_commission_bps must be between 0 and 10000")

    try:
        for key in ("shipping_standard_cents", "shipping_express_cents", "shipping_overnight_cents"):
            enforce_rules_amount(patch, key)
    except ValidationError as exc:
        raise SettingsError(str(exc))

    if "low_stock_threshold" in patch and patch["low_stock_threshold"] < 0:
        raise SettingsError("low_stock_threshold must be >= 0")


def update_global_settings(data: dict, *, updated_by_user_id: int | None = None) -> GlobalSettings:
    try:
        patch = validate_payload(model=GlobalSettings, payload=data, policy=SETTINGS_POLICY, partial=True)
    except ValidationError as exc:
        raise SettingsError(str(exc))
    _validate(patch)

    row = get_global_settings()
    for key, value in patch.items():
        setattr(row, key, value)
    row.updated_by_user_id = updated_by_user_id
    db.session.commit()
    return row
