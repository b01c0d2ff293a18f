# matrix/cache_store.py
import json
import logging
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import CacheEntry
from matrix.entities import ROOT_MEMBER_ID, Member
from matrix.normalization import normalize_member, normalize_members

logger = logging.getLogger(__name__)

MEMBERS_KEY = "matrix_users_v1"
CURRENT_MEMBER_KEY = "matrix_current_user"
OVERRIDES_KEY = "matrix_member_overrides_v1"

DEFAULT_ATTACHMENT_LIMIT = 50000  # characters of base64 text
TOO_LARGE_MARKER = "File too large, not stored"


class LocalCacheStore:
    """
    Durable key/value cache in the local database.

    Every write replaces the whole snapshot stored under a key inside one
    transaction. Attachment payloads above `attachment_limit` are stripped
    from what is written; callers keep the full in-memory copy.
    """

    def __init__(self, attachment_limit: int = DEFAULT_ATTACHMENT_LIMIT, root_id: str = ROOT_MEMBER_ID):
        self.attachment_limit = attachment_limit
        self.root_id = root_id

    # -------------------------
    # Raw key/value access
    # -------------------------
    def get(self, key: str) -> Optional[Any]:
        entry = db.session.get(CacheEntry, key)
        if entry is None:
            return None
        try:
            return json.loads(entry.payload)
        except ValueError:
            logger.warning(f"Discarding unreadable cache entry {key}")
            return None

    def put(self, key: str, value: Any) -> None:
        payload = json.dumps(value)
        try:
            entry = db.session.get(CacheEntry, key)
            if entry is None:
                db.session.add(CacheEntry(key=key, payload=payload))
            else:
                entry.payload = payload
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception(f"Cache write failed for {key}")
            raise

    def delete(self, key: str) -> None:
        try:
            CacheEntry.query.filter_by(key=key).delete()
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception(f"Cache delete failed for {key}")
            raise

    # -------------------------
    # Size bounding
    # -------------------------
    def is_oversized(self, data: Optional[str]) -> bool:
        return bool(data) and len(data) > self.attachment_limit

    def compact_member(self, member: Member, marked_utility_ids: Iterable[str] = ()) -> Member:
        """
        Return the copy of `member` that is safe to write to durable storage.
        Utilities in `marked_utility_ids` whose payload is dropped were never
        confirmed remotely, so their name is replaced with TOO_LARGE_MARKER.
        """
        marked = set(marked_utility_ids)
        utilities = []
        changed = False
        for utility in member.utilities:
            if not self.is_oversized(utility.attachment_data):
                utilities.append(utility)
                continue
            changed = True
            if utility.id in marked:
                utilities.append(replace(
                    utility,
                    attachment_data=None,
                    attachment_name=TOO_LARGE_MARKER,
                    has_attachment=False,
                ))
            else:
                utilities.append(replace(utility, attachment_data=None, has_attachment=True))
        if not changed:
            return member
        return replace(member, utilities=tuple(utilities))

    # -------------------------
    # Member set snapshot
    # -------------------------
    def load_members(self) -> List[Member]:
        raw = self.get(MEMBERS_KEY)
        if raw is None:
            return []
        if not isinstance(raw, list):
            logger.warning("Cached member snapshot has an unexpected shape, ignoring it")
            return []
        return normalize_members(raw, self.root_id)

    def save_members(self, members: Sequence[Member], marked_utility_ids: Iterable[str] = ()) -> None:
        marked = set(marked_utility_ids)
        snapshot = [self.compact_member(m, marked).to_dict() for m in members]
        self.put(MEMBERS_KEY, snapshot)
        logger.debug(f"Cached {len(snapshot)} member(s)")

    # -------------------------
    # Session snapshot
    # -------------------------
    def load_current_member(self) -> Optional[Member]:
        raw = self.get(CURRENT_MEMBER_KEY)
        if not isinstance(raw, dict):
            return None
        return normalize_member(raw, self.root_id)

    def save_current_member(self, member: Member) -> None:
        self.put(CURRENT_MEMBER_KEY, self.compact_member(member).to_dict())

    def clear_current_member(self) -> None:
        self.delete(CURRENT_MEMBER_KEY)

    # -------------------------
    # Local field overrides
    # -------------------------
    def load_overrides(self) -> Dict[str, Dict[str, str]]:
        """Per-member field values the remote store does not persist, keyed by member id."""
        raw = self.get(OVERRIDES_KEY)
        if not isinstance(raw, dict):
            return {}
        return {str(member_id): dict(fields) for member_id, fields in raw.items() if isinstance(fields, dict)}

    def save_overrides(self, overrides: Dict[str, Dict[str, str]]) -> None:
        self.put(OVERRIDES_KEY, overrides)
