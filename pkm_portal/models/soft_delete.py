"""
Soft Delete Mixin

Adds a `deleted_at` timestamp column and a filtered-view helper for soft
delete. Models that include this mixin are marked as deleted rather than
physically removed, and every read path goes through `select_active()` so
deleted rows never leak into a result set.

Usage:
    class MyModel(SoftDeleteMixin, db.Model):
        ...

    obj.soft_delete()
    session.execute(MyModel.select_active().where(...)).scalars()
"""

from datetime import datetime, timezone

from sqlalchemy import select

from pkm_portal.models import db


class SoftDeleteMixin:
    """Mixin that adds soft delete support to any SQLAlchemy model."""

    deleted_at = db.Column(db.DateTime, nullable=True, default=None, index=True)

    def soft_delete(self):
        """Mark this record as deleted."""
        self.deleted_at = datetime.now(timezone.utc)

    @property
    def is_deleted(self):
        return self.deleted_at is not None

    @classmethod
    def select_active(cls):
        """Return a SELECT that excludes soft-deleted records."""
        return select(cls).where(cls.deleted_at.is_(None))
