"""
Local Cache Store Tests

Whole-snapshot writes and the size-bounding transform applied before them.
"""
import json

import pytest
from sqlalchemy.exc import SQLAlchemyError

from conftest import make_member, make_root, make_utility
from extensions import db
from matrix.cache_store import CURRENT_MEMBER_KEY, MEMBERS_KEY, OVERRIDES_KEY, TOO_LARGE_MARKER
from models import CacheEntry

BIG = "A" * 500
SMALL = "QUJD"


class TestKeyValue:

    def test_missing_key(self, cache):
        assert cache.get("nothing") is None

    def test_put_replaces_snapshot(self, cache):
        cache.put("k", [1, 2, 3])
        cache.put("k", {"only": "this"})
        assert cache.get("k") == {"only": "this"}
        assert CacheEntry.query.count() == 1

    def test_delete(self, cache):
        cache.put("k", 1)
        cache.delete("k")
        assert cache.get("k") is None

    def test_unreadable_entry_is_ignored(self, cache):
        db.session.add(CacheEntry(key="broken", payload="{oops"))
        db.session.commit()
        assert cache.get("broken") is None

    def test_failed_write_rolls_back(self, cache, monkeypatch):
        def boom():
            raise SQLAlchemyError("disk full")

        monkeypatch.setattr(db.session, "commit", boom)
        with pytest.raises(SQLAlchemyError):
            cache.put("k", 1)


class TestSizeBounding:

    def test_small_payload_is_kept(self, cache):
        member = make_member("m", utilities=[make_utility("u", data=SMALL)])
        assert cache.compact_member(member) is member

    def test_oversized_payload_is_stripped_but_flagged(self, cache):
        member = make_member("m", utilities=[make_utility("u", data=BIG)])
        compact = cache.compact_member(member).utilities[0]
        assert compact.attachment_data is None
        assert compact.has_attachment is True
        assert compact.attachment_name == "bill.pdf"
        # The caller's copy is untouched
        assert member.utilities[0].attachment_data == BIG

    def test_unsynced_oversized_payload_gets_marker(self, cache):
        member = make_member("m", utilities=[make_utility("u", data=BIG)])
        compact = cache.compact_member(member, {"u"}).utilities[0]
        assert compact.attachment_data is None
        assert compact.attachment_name == TOO_LARGE_MARKER
        assert compact.has_attachment is False

    def test_is_oversized(self, cache):
        assert cache.is_oversized(BIG)
        assert not cache.is_oversized(SMALL)
        assert not cache.is_oversized(None)


class TestMemberSnapshot:

    def test_empty_cache(self, cache):
        assert cache.load_members() == []

    def test_round_trip_strips_large_attachments(self, cache):
        root = make_root(utilities=[make_utility("big", data=BIG), make_utility("small", data=SMALL)])
        cache.save_members([root, make_member("m", parent_id=root.id, level=1)])

        stored = json.loads(db.session.get(CacheEntry, MEMBERS_KEY).payload)
        assert stored[0]["utilities"][0]["attachmentData"] is None
        assert stored[0]["utilities"][1]["attachmentData"] == SMALL

        loaded = cache.load_members()
        assert [m.id for m in loaded] == ["root-001", "m"]
        assert loaded[0].utilities[0].has_attachment is True
        assert loaded[1].level == 1

    def test_unexpected_shape_is_ignored(self, cache):
        cache.put(MEMBERS_KEY, {"not": "a list"})
        assert cache.load_members() == []


class TestCurrentMemberSnapshot:

    def test_round_trip(self, cache):
        cache.save_current_member(make_member("m", utilities=[make_utility("u", data=BIG)]))
        current = cache.load_current_member()
        assert current.id == "m"
        assert current.utilities[0].attachment_data is None

    def test_clear(self, cache):
        cache.save_current_member(make_member("m"))
        cache.clear_current_member()
        assert cache.load_current_member() is None
        assert cache.get(CURRENT_MEMBER_KEY) is None


class TestOverrides:

    def test_empty(self, cache):
        assert cache.load_overrides() == {}

    def test_round_trip(self, cache):
        cache.save_overrides({"m": {"role": "admin"}})
        assert cache.load_overrides() == {"m": {"role": "admin"}}

    def test_malformed_entries_are_ignored(self, cache):
        cache.put(OVERRIDES_KEY, {"m": {"role": "admin"}, "x": "admin"})
        assert cache.load_overrides() == {"m": {"role": "admin"}}
        cache.put(OVERRIDES_KEY, ["m"])
        assert cache.load_overrides() == {}
