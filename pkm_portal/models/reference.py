"""
PKM Submission Portal
Reference data consumed (read-only) by the submission workflow.

Models:
    - Category:            grant category with the short code used in submission codes
    - RegistrationWindow:  the period during which students may create submissions

Both tables are maintained by the reference-data administration screens;
the workflow engine only reads them.
"""

from datetime import datetime, timezone

from pkm_portal.models import db
from pkm_portal.models.soft_delete import SoftDeleteMixin


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class Category(SoftDeleteMixin, db.Model):
    """Grant category (e.g. PKM-K, PKM-RE). ``short_code`` feeds the submission code."""

    __tablename__ = "categories"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    short_code = db.Column(db.String(10), nullable=False, unique=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "short_code": self.short_code,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<Category {self.short_code}: {self.name}>"


class RegistrationWindow(SoftDeleteMixin, db.Model):
    """A registration period. Several may exist; any open active one admits submissions."""

    __tablename__ = "registration_windows"

    id = db.Column(db.Integer, primary_key=True)
    opens_at = db.Column(db.DateTime, nullable=False)
    closes_at = db.Column(db.DateTime, nullable=False)
    note = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def is_open(self, now: datetime | None = None) -> bool:
        """True if the window is active, not deleted and ``now`` lies inside it."""
        now = _naive_utc(now or datetime.now(timezone.utc))
        if not self.is_active or self.is_deleted:
            return False
        return _naive_utc(self.opens_at) <= now < _naive_utc(self.closes_at)

    def __repr__(self):
        return f"<RegistrationWindow {self.opens_at:%Y-%m-%d}..{self.closes_at:%Y-%m-%d}>"
