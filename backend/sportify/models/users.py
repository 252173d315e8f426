from __future__ import annotations

from ..extensions import db
from sportify.time_utils import to_utc_z


ROLE_CUSTOMER = "customer"
ROLE_SUPPLIER = "supplier"
ROLE_STAFF = "staff"
ROLE_ADMIN = "admin"


class User(db.Model):
    """
    Platform account.

    Credentials live with the upstream identity provider; this row only
    carries what the commerce core needs: a role for authorization checks and
    an email for supplier notifications.
    """
    __tablename__ = "users"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    first_name = db.Column(db.String(120), nullable=True)
    last_name = db.Column(db.String(120), nullable=True)

    # customer, supplier, staff, admin
    role = db.Column(db.String(16), nullable=False, default=ROLE_CUSTOMER, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} role={self.role}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
