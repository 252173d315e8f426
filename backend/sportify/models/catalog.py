from __future__ import annotations

from ..extensions import db
from sportify.time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data.

    Stock is NOT stored here: StockEntry is the authoritative count and is
    created lazily on the first stock operation for the product.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_supplier_active", "supplier_user_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Authoritative storage in cents (frontend may only format for display)
    price_cents = db.Column(db.Integer, nullable=False)

    supplier_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    # Seed for StockEntry.min_stock_level when the entry is first created;
    # None falls back to the store-wide low_stock_threshold setting
    min_stock_level = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    supplier = db.relationship("User", foreign_keys=[supplier_user_id])
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "price_cents": self.price_cents,
            "supplier_user_id": self.supplier_user_id,
            "min_stock_level": self.min_stock_level,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
