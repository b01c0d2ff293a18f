# models.py - Flask-SQLAlchemy tables backing the local cache
from extensions import db


# ===========================================================
# BASE MIXIN FOR COMMON FIELDS
# ===========================================================

class BaseMixin:
    """Provides created_at and updated_at timestamps to inheriting models."""
    created_at = db.Column(db.DateTime(timezone=True), default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=db.func.now(),
                           onupdate=db.func.now())


# ===========================================================
# LOCAL CACHE
# ===========================================================

class CacheEntry(db.Model, BaseMixin):
    """
    One durable key -> JSON snapshot. Each write replaces the whole snapshot
    (member set, current session member), never patches part of it.
    """
    __tablename__ = 'cache_entries'

    key = db.Column(db.String(64), primary_key=True)
    payload = db.Column(db.Text, nullable=False)

    def __repr__(self):
        return f"<CacheEntry {self.key} ({len(self.payload or '')} chars)>"
