from __future__ import annotations

from ..extensions import db
from posengine.time_utils import to_utc_z


class Outlet(db.Model):
    """
    A selling location. Every stock, sale, purchase and loyalty row is
    scoped to exactly one outlet.

    Which callers may act on which outlet is decided outside this service
    (see posengine.access); the engine trusts the outlet id it is handed.
    """
    __tablename__ = "outlets"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Outlet id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
