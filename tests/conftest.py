"""
Shared fixtures: Flask app on an in-memory database, a fake remote store
that behaves like the spreadsheet script, and a clock the tests can move.
"""
import os
import tempfile
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

# Config refuses to import without a secret; keep logs out of the repo
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("FLASK_ENV", "production")
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="matrix-logs-"))

from app import create_app  # noqa: E402
from config import TestConfig  # noqa: E402
from matrix.cache_store import LocalCacheStore  # noqa: E402
from matrix.entities import AvatarConfig, Member, MemberRole, Utility, UtilityType  # noqa: E402
from matrix.errors import RemoteUnavailable  # noqa: E402
from matrix.normalization import normalize_avatar  # noqa: E402
from matrix.outbox import Outbox  # noqa: E402
from matrix.reconciliation import ReconciliationEngine  # noqa: E402
from matrix.remote_store import RemoteResult  # noqa: E402
from matrix.session import SessionManager  # noqa: E402

FIXED_NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# BUILDERS
# =============================================================================

def make_member(member_id, username=None, parent_id=None, sponsor_id=None, level=0,
                joined_at=None, utilities=(), role=MemberRole.MEMBER, password="secret"):
    username = username or member_id
    return Member(
        id=member_id,
        username=username,
        password=password,
        email=f"{username}@example.com",
        phone="+391234567890",
        sponsor_id=sponsor_id,
        parent_id=parent_id,
        joined_at=joined_at or (FIXED_NOW - timedelta(days=30)).isoformat(),
        level=level,
        utilities=tuple(utilities),
        avatar_config=AvatarConfig.default_for(username),
        role=role,
    )


def make_utility(utility_id, provider="Enel", utility_type=UtilityType.ELECTRICITY,
                 date_added=None, data=None):
    return Utility(
        id=utility_id,
        type=utility_type,
        provider=provider,
        date_added=date_added or (FIXED_NOW - timedelta(days=1)).isoformat(),
        attachment_name="bill.pdf" if data else None,
        attachment_type="application/pdf" if data else None,
        attachment_data=data,
        has_attachment=bool(data),
    )


def make_root(**kwargs):
    kwargs.setdefault("username", "admin")
    kwargs.setdefault("role", MemberRole.ADMIN)
    return make_member("root-001", **kwargs)


def full_level(parent, count=10, prefix=None):
    """`count` children directly under `parent`, in insertion order."""
    prefix = prefix or f"{parent.id}-c"
    return [
        make_member(f"{prefix}{i}", parent_id=parent.id, sponsor_id=parent.id, level=parent.level + 1)
        for i in range(count)
    ]


# =============================================================================
# FAKES
# =============================================================================

class FakeClock:

    def __init__(self, now=FIXED_NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, minutes):
        self.now = self.now + timedelta(minutes=minutes)


class FakeRemoteStore:
    """
    In-memory stand-in for the spreadsheet script. Accepted writes are
    applied to `members`; listings omit attachment payloads like the real one.
    """

    def __init__(self, members=None):
        self.members = list(members or [])
        self.attachments = {}
        self.available = True
        self.reject_writes = False
        self.calls = []

    def calls_named(self, name):
        return [call for call in self.calls if call[0] == name]

    def _outcome(self):
        if not self.available:
            return RemoteResult(False, "Remote store timeout")
        if self.reject_writes:
            return RemoteResult(False, "Sheet is locked")
        return RemoteResult(True, "ok")

    def _index(self, member_id):
        for index, member in enumerate(self.members):
            if member.id == member_id:
                return index
        return None

    def fetch_all(self):
        self.calls.append(("fetch_all",))
        if not self.available:
            raise RemoteUnavailable("Remote store timeout after 20 seconds")
        return list(self.members)

    def register(self, member):
        self.calls.append(("register", member))
        result = self._outcome()
        if result.success:
            self.members.append(member)
        return result

    def add_utility(self, utility, member_id):
        self.calls.append(("add_utility", utility, member_id))
        result = self._outcome()
        index = self._index(member_id)
        if result.success and index is not None:
            if utility.attachment_data:
                self.attachments[utility.id] = utility.attachment_data
            lite = replace(utility, attachment_data=None, has_attachment=bool(utility.attachment_data))
            self.members[index] = self.members[index].with_utility(lite)
        return result

    def update_member_fields(self, member_id, fields):
        self.calls.append(("update_member_fields", member_id, fields))
        result = self._outcome()
        index = self._index(member_id)
        if result.success and index is not None:
            # updateUser only writes these columns; role and password are dropped
            changes = {key: fields[key] for key in ("email", "phone") if key in fields}
            if "avatarConfig" in fields:
                changes["avatar_config"] = normalize_avatar(fields["avatarConfig"], self.members[index].username)
            self.members[index] = replace(self.members[index], **changes)
        return result

    def update_utility_status(self, member_id, utility_id, status):
        self.calls.append(("update_utility_status", member_id, utility_id, status))
        result = self._outcome()
        index = self._index(member_id)
        if result.success and index is not None:
            utility = self.members[index].find_utility(utility_id)
            if utility is not None:
                self.members[index] = self.members[index].with_replaced_utility(replace(utility, status=status))
        return result

    def fetch_attachment(self, utility_id):
        self.calls.append(("fetch_attachment", utility_id))
        if not self.available:
            raise RemoteUnavailable("Remote store timeout after 20 seconds")
        return self.attachments.get(utility_id)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def remote():
    return FakeRemoteStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def app(remote):
    return create_app(TestConfig, remote_store=remote)


@pytest.fixture
def app_context(app):
    with app.app_context():
        yield app


@pytest.fixture
def cache(app_context):
    return LocalCacheStore(attachment_limit=100)


@pytest.fixture
def engine(cache, remote, clock):
    """Engine with a small attachment limit so tests can use short payloads."""
    return ReconciliationEngine(
        cache=cache,
        session=SessionManager(cache),
        remote=remote,
        outbox=Outbox(synchronous=True),
        clock=clock,
        admin_defaults={"username": "admin", "password": "password",
                        "email": "admin@example.com", "phone": "+390000000000"},
    )


@pytest.fixture
def client(app):
    return app.test_client()
