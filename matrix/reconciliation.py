# matrix/reconciliation.py
"""
Reconciliation engine: the only component that writes to the remote store
or the local cache.

Reads merge the authoritative remote listing with the local cache. Remote
wins, except for local records younger than the grace window, which are
presumed to be writes the remote has not reflected yet. When the remote is
unreachable everything falls back to the local cache and the engine reports
a degraded status until the next successful remote call.

Mutations validate locally, apply optimistically to the cache (and to the
session when they touch the current member), then go to the remote store.
Registration waits for the remote answer; the other writes go through the
outbox.

The engine lock guards the in-memory member set and cache writes only.
Remote calls run outside it, so reads keep being served from the last
committed state while a remote write is in flight.
"""
import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from matrix.entities import (
    ROOT_MEMBER_ID,
    AvatarConfig,
    MatrixNode,
    Member,
    MemberRole,
    SyncStatus,
    Utility,
    UtilityStatus,
    UtilityType,
)
from matrix.errors import RemoteUnavailable, ValidationError
from matrix.normalization import coerce_text, normalize_avatar, normalize_role, parse_status, parse_utility_type
from matrix.outbox import Outbox
from matrix.placement import MatrixPlacementHelper, find_root
from matrix.tree import build_tree, network_stats
from utils import clean_phone, new_id, parse_timestamp, utc_now_iso, validate_email, validate_phone

logger = logging.getLogger(__name__)

DEFAULT_GRACE_MINUTES = 15

PROFILE_FIELDS = ("email", "phone", "password", "avatarConfig")

# The sheet's updateUser action does not write these columns back
OVERRIDE_FIELDS = ("role", "password")


@dataclass(frozen=True)
class RegistrationResult:
    member: Member
    synced: bool
    message: str
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "synced": self.synced,
            "message": self.message,
            "error": self.error,
            "user": self.member.to_dict(include_password=False),
        }


def _password_text(value: Any) -> str:
    # Passwords are compared verbatim, so no stripping here
    if value is None:
        return ""
    return value if isinstance(value, str) else coerce_text(value)


class ReconciliationEngine:

    def __init__(self, cache, session, remote=None, outbox: Optional[Outbox] = None,
                 grace_minutes: int = DEFAULT_GRACE_MINUTES, root_id: str = ROOT_MEMBER_ID,
                 admin_defaults: Optional[Dict[str, str]] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.cache = cache
        self.session = session
        self.remote = remote
        self.outbox = outbox or Outbox()
        self.grace_window = timedelta(minutes=grace_minutes)
        self.root_id = root_id
        self.admin_defaults = admin_defaults or {}
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        self.status = SyncStatus.DEGRADED
        self._lock = threading.RLock()
        self._members: Optional[List[Member]] = None
        self._unsynced_utility_ids = set()
        self._seed_in_flight = False

    # =========================================================
    # STATUS
    # =========================================================
    @property
    def is_connected(self) -> bool:
        return self.status is SyncStatus.CONNECTED

    def _mark(self, reachable: bool) -> None:
        status = SyncStatus.CONNECTED if reachable else SyncStatus.DEGRADED
        if status is not self.status:
            logger.info(f"Sync status changed: {self.status.value} -> {status.value}")
        self.status = status

    # =========================================================
    # ROOT / LOCAL STATE
    # =========================================================
    def _build_root(self) -> Member:
        username = self.admin_defaults.get("username", "admin")
        return Member(
            id=self.root_id,
            username=username,
            password=self.admin_defaults.get("password", "password"),
            email=self.admin_defaults.get("email", "admin@matrixflow.com"),
            phone=self.admin_defaults.get("phone", "+390000000000"),
            sponsor_id=None,
            parent_id=None,
            joined_at=utc_now_iso(self.clock()),
            level=0,
            avatar_config=AvatarConfig.default_for(username),
            role=MemberRole.ADMIN,
        )

    def _local_members(self) -> List[Member]:
        """Cached member set; an empty cache is initialized with the root."""
        members = self.cache.load_members()
        if members:
            return members
        root = self._build_root()
        logger.info(f"Local cache empty, initializing root member {root.id}")
        self.cache.save_members([root])
        return [root]

    def local_root(self) -> Member:
        return find_root(self._local_members(), self.root_id)

    def _commit(self, members: List[Member]) -> None:
        self._members = members
        self.cache.save_members(members, self._unsynced_utility_ids)

    def _ensure_loaded(self) -> None:
        if self._members is None:
            self.fetch_members()

    def _resolve_members(self) -> List[Member]:
        self._ensure_loaded()
        with self._lock:
            return list(self._members)

    # =========================================================
    # LOCAL OVERRIDES
    # =========================================================
    def _remember_override(self, member_id: str, field: str, value: str) -> None:
        # Read fresh: make_admin.py writes the same table from another process
        overrides = self.cache.load_overrides()
        overrides.setdefault(member_id, {})[field] = value
        self.cache.save_overrides(overrides)

    @staticmethod
    def _field_value(member: Member, field: str) -> str:
        return member.role.value if field == "role" else getattr(member, field)

    def _apply_overrides(self, members: Sequence[Member]) -> List[Member]:
        """
        Reapply role and password changes the remote listing does not carry.
        An override is dropped once the remote reports the same value.
        """
        overrides = self.cache.load_overrides()
        if not overrides:
            return list(members)

        result = []
        settled = False
        for member in members:
            fields = overrides.get(member.id)
            if not fields:
                result.append(member)
                continue

            changes = {}
            for field, value in list(fields.items()):
                if field not in OVERRIDE_FIELDS or self._field_value(member, field) == value:
                    del fields[field]
                    settled = True
                elif field == "role":
                    changes["role"] = normalize_role(value, member.id, self.root_id)
                else:
                    changes[field] = value
            if not fields:
                del overrides[member.id]
            result.append(replace(member, **changes) if changes else member)

        if settled:
            self.cache.save_overrides(overrides)
        return result

    # =========================================================
    # FETCH PATH
    # =========================================================
    def fetch_members(self) -> List[Member]:
        """Resolve the member set: remote merged with pending local writes, or local only."""
        if self.remote is None:
            with self._lock:
                return self._fall_back("remote store not configured")

        try:
            remote_members = self.remote.fetch_all()
        except RemoteUnavailable as e:
            with self._lock:
                return self._fall_back(e.message)

        with self._lock:
            self._mark(True)
            if not remote_members:
                return self._seed_remote()

            local_members = self.cache.load_members()
            merged = self._apply_overrides(self._merge(remote_members, local_members))
            merged = self._carry_attachments(merged, [local_members, self._members or []])
            self._commit(merged)
            return list(merged)

    def _fall_back(self, reason: str) -> List[Member]:
        logger.warning(f"Remote store unavailable ({reason}), using local cache")
        self._mark(False)
        members = self._carry_attachments(self._local_members(), [self._members or []])
        self._members = members
        return list(members)

    def _seed_remote(self) -> List[Member]:
        """An empty remote store has never been seeded: push the local root to it."""
        root = self.local_root()
        if not self._seed_in_flight:
            self._seed_in_flight = True
            logger.info(f"Remote store is empty, seeding root member {root.id}")

            def seeded(result):
                self._seed_in_flight = False
                self._mark(result.success)

            self.outbox.submit(f"seed-root:{root.id}", lambda: self.remote.register(root),
                               on_success=seeded, on_failure=seeded)
        self._members = [root]
        return [root]

    def _within_grace(self, timestamp: str, now: datetime) -> bool:
        written_at = parse_timestamp(timestamp)
        if written_at is None:
            return False
        return now - written_at <= self.grace_window

    def _merge(self, remote_members: Sequence[Member], local_members: Sequence[Member]) -> List[Member]:
        now = self.clock()
        remote_ids = {m.id for m in remote_members}
        local_by_id = {m.id: m for m in local_members}

        merged = []
        for member in remote_members:
            local = local_by_id.get(member.id)
            if local is not None:
                member = self._keep_recent_utilities(member, local, now)
            merged.append(member)

        for local in local_members:
            if local.id in remote_ids:
                continue
            if self._within_grace(local.joined_at, now):
                logger.info(f"Keeping unsynced local member {local.id} ({local.username})")
                merged.append(local)
            else:
                logger.debug(f"Dropping stale local member {local.id} ({local.username})")
        return merged

    def _keep_recent_utilities(self, remote_member: Member, local_member: Member, now: datetime) -> Member:
        remote_ids = {u.id for u in remote_member.utilities}
        recent = tuple(
            u for u in local_member.utilities
            if u.id not in remote_ids and self._within_grace(u.date_added, now)
        )
        if not recent:
            return remote_member
        return replace(remote_member, utilities=remote_member.utilities + recent)

    @staticmethod
    def _carry_attachments(members: Sequence[Member], sources: Iterable[Sequence[Member]]) -> List[Member]:
        """Lite remote listings omit payloads; reuse the ones already held."""
        known = {}
        for source in sources:
            for member in source:
                for utility in member.utilities:
                    if utility.attachment_data:
                        known[utility.id] = utility.attachment_data

        result = []
        for member in members:
            if not any(u.attachment_data is None and u.id in known for u in member.utilities):
                result.append(member)
                continue
            utilities = tuple(
                replace(u, attachment_data=known[u.id], has_attachment=True)
                if u.attachment_data is None and u.id in known else u
                for u in member.utilities
            )
            result.append(replace(member, utilities=utilities))
        return result

    # =========================================================
    # OUTBOX
    # =========================================================
    def _submit(self, label: str, call, on_success=None, on_failure=None) -> None:
        if self.remote is None:
            logger.info(f"{label}: remote store not configured, kept locally only")
            self._mark(False)
            if on_failure is not None:
                on_failure(None)
            return

        def delivered(result):
            self._mark(True)
            if on_success is not None:
                on_success(result)

        def failed(result):
            self._mark(False)
            if on_failure is not None:
                on_failure(result)

        self.outbox.submit(label, call, on_success=delivered, on_failure=failed)

    # =========================================================
    # SESSION
    # =========================================================
    def login(self, username: str, password: str) -> Optional[Member]:
        wanted = coerce_text(username).lower()
        password = _password_text(password)
        for member in self.fetch_members():
            if member.username.lower() == wanted and member.password == password:
                self.session.set_current(member)
                logger.info(f"Member {member.id} signed in")
                return member
        return None

    def logout(self) -> None:
        self.session.clear()

    def current_member(self) -> Optional[Member]:
        return self.session.current()

    # =========================================================
    # MUTATIONS
    # =========================================================
    @staticmethod
    def _validate_contact(username: str, password: str, email: str, phone: str) -> None:
        if not username or not password or not email or not phone:
            raise ValidationError("Username, password, email and phone are required", code="missing_fields")
        if not validate_email(email):
            raise ValidationError("Invalid email address", code="invalid_email")
        if not validate_phone(phone):
            raise ValidationError("Invalid phone number", code="invalid_phone")

    def register_member(self, username: str, password: str, email: str, phone: str,
                        sponsor_username: Optional[str] = None, sign_in: bool = False) -> RegistrationResult:
        """
        Place a new member under the sponsor's matrix and store it.

        The local write always stands; when the remote store rejects or
        misses the write the result reports synced=False with the error.
        """
        username = coerce_text(username)
        password = _password_text(password)
        email = coerce_text(email).lower()
        phone = clean_phone(coerce_text(phone))
        sponsor_username = coerce_text(sponsor_username) or None
        self._validate_contact(username, password, email, phone)

        self.fetch_members()
        with self._lock:
            # Place against the latest committed set, not the fetch result
            members = list(self._members)
            if any(m.username.lower() == username.lower() for m in members):
                raise ValidationError("Username already taken", code="duplicate_username")

            sponsor = MatrixPlacementHelper.find_sponsor(members, sponsor_username)
            if sponsor_username and sponsor is None:
                logger.info(f"Sponsor {sponsor_username!r} not found, placing under the root")
            effective_sponsor, parent_id, level = MatrixPlacementHelper.resolve_placement(
                members, sponsor, self.root_id
            )

            member = Member(
                id=new_id("user"),
                username=username,
                password=password,
                email=email,
                phone=phone,
                sponsor_id=effective_sponsor.id,
                parent_id=parent_id,
                joined_at=utc_now_iso(self.clock()),
                level=level,
                avatar_config=AvatarConfig.default_for(username),
            )
            self._commit(members + [member])
            if sign_in:
                self.session.set_current(member)
            logger.info(f"Registered {member.id} ({username}) under {parent_id} at level {level}")

        if self.remote is None:
            self._mark(False)
            return RegistrationResult(member, False, "Registered locally (offline mode)",
                                      error="Remote store not configured")

        result = self.remote.register(member)
        self._mark(result.success)
        if not result.success:
            logger.warning(f"Remote registration failed for {member.id}: {result.message}")
            return RegistrationResult(member, False, "Registered locally (offline mode)",
                                      error=result.message)
        return RegistrationResult(member, True, "Registration complete")

    def _find(self, members: List[Member], member_id: str) -> Optional[int]:
        for index, member in enumerate(members):
            if member.id == member_id:
                return index
        return None

    def add_utility(self, member_id: str, utility_type, provider: str,
                    attachment_name: Optional[str] = None, attachment_type: Optional[str] = None,
                    attachment_data: Optional[str] = None) -> Optional[Member]:
        """Attach a Pending utility to a member. Returns None if the member does not exist."""
        parsed_type = utility_type if isinstance(utility_type, UtilityType) else parse_utility_type(utility_type)
        if parsed_type is None:
            raise ValidationError(f"Unknown utility type: {utility_type}", code="invalid_type")
        provider = coerce_text(provider)
        if not provider:
            raise ValidationError("Provider is required", code="missing_provider")
        if attachment_data is not None and not isinstance(attachment_data, str):
            raise ValidationError("Attachment data must be base64 text", code="invalid_attachment")

        self._ensure_loaded()
        with self._lock:
            members = list(self._members)
            index = self._find(members, member_id)
            if index is None:
                return None

            utility = Utility(
                id=new_id("util"),
                type=parsed_type,
                provider=provider,
                date_added=utc_now_iso(self.clock()),
                status=UtilityStatus.PENDING,
                attachment_name=coerce_text(attachment_name) or None,
                attachment_type=coerce_text(attachment_type) or None,
                attachment_data=attachment_data or None,
                has_attachment=bool(attachment_data),
            )
            updated = members[index].with_utility(utility)
            members[index] = updated

            # Nothing else holds this payload while the remote is unreachable
            oversized = self.cache.is_oversized(utility.attachment_data)
            if oversized and not self.is_connected:
                self._unsynced_utility_ids.add(utility.id)
            self._commit(members)
            self.session.refresh(updated)

        self._submit(
            f"add-utility:{utility.id}",
            lambda: self.remote.add_utility(utility, member_id),
            on_success=lambda result: self._forget_unsynced(utility.id),
            on_failure=(lambda result: self._hold_unsynced(utility.id)) if oversized else None,
        )
        return updated

    def _forget_unsynced(self, utility_id: str) -> None:
        with self._lock:
            self._unsynced_utility_ids.discard(utility_id)

    def _hold_unsynced(self, utility_id: str) -> None:
        # Marked in the cache on the next commit
        with self._lock:
            if utility_id not in self._unsynced_utility_ids:
                logger.warning(f"Utility {utility_id} did not reach the remote store, its payload stays in memory only")
            self._unsynced_utility_ids.add(utility_id)

    def _can_change_status(self, actor: Optional[Member], owner: Member, members: List[Member]) -> bool:
        if actor is None:
            return False
        index = self._find(members, actor.id)
        actor = members[index] if index is not None else actor
        if actor.is_admin:
            return True
        return actor.id == owner.id and not self.is_connected

    def update_utility_status(self, member_id: str, utility_id: str, status,
                              actor: Optional[Member] = None) -> Optional[Member]:
        """
        Move a Pending utility to Active or Rejected.

        Only the administrator may do this, or the owner while the remote
        store is unreachable. Active and Rejected are terminal.
        """
        new_status = status if isinstance(status, UtilityStatus) else parse_status(status)
        if new_status is None:
            raise ValidationError(f"Unknown utility status: {status}", code="invalid_status")
        if new_status is UtilityStatus.PENDING:
            raise ValidationError("A utility cannot be moved back to Pending", code="invalid_transition")

        self._ensure_loaded()
        with self._lock:
            members = list(self._members)
            index = self._find(members, member_id)
            if index is None:
                return None
            owner = members[index]
            utility = owner.find_utility(utility_id)
            if utility is None:
                return None

            if not self._can_change_status(actor or self.session.current(), owner, members):
                raise ValidationError("Only the administrator can change utility status", code="not_permitted")
            if utility.status.is_terminal:
                raise ValidationError(f"Utility is already {utility.status.value}", code="invalid_transition")

            updated = owner.with_replaced_utility(replace(utility, status=new_status))
            members[index] = updated
            self._commit(members)
            self.session.refresh(updated)

        self._submit(
            f"utility-status:{utility_id}",
            lambda: self.remote.update_utility_status(member_id, utility_id, new_status),
        )
        return updated

    def update_member_profile(self, member_id: str, fields: Dict[str, Any]) -> Optional[Member]:
        unknown = sorted(set(fields) - set(PROFILE_FIELDS))
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(unknown)}", code="unknown_field")

        changes = {}
        if "email" in fields:
            email = coerce_text(fields["email"]).lower()
            if not validate_email(email):
                raise ValidationError("Invalid email address", code="invalid_email")
            changes["email"] = email
        if "phone" in fields:
            phone = clean_phone(coerce_text(fields["phone"]))
            if not validate_phone(phone):
                raise ValidationError("Invalid phone number", code="invalid_phone")
            changes["phone"] = phone
        if "password" in fields:
            password = _password_text(fields["password"])
            if not password:
                raise ValidationError("Password cannot be empty", code="missing_fields")
            changes["password"] = password

        self._ensure_loaded()
        with self._lock:
            members = list(self._members)
            index = self._find(members, member_id)
            if index is None:
                return None
            if "avatarConfig" in fields:
                changes["avatar_config"] = normalize_avatar(fields["avatarConfig"], members[index].username)

            updated = replace(members[index], **changes)
            members[index] = updated
            if "password" in changes:
                self._remember_override(member_id, "password", changes["password"])
            self._commit(members)
            self.session.refresh(updated)

        wire = {key: changes[key] for key in ("email", "phone", "password") if key in changes}
        if "avatar_config" in changes:
            wire["avatarConfig"] = changes["avatar_config"].to_dict()
        self._submit(f"update-member:{member_id}", lambda: self.remote.update_member_fields(member_id, wire))
        return updated

    def assign_role(self, member_id: str, role: MemberRole) -> Optional[Member]:
        """
        Set a member's role. The assignment is kept in the local cache and
        reapplied on every fetch, since the remote listing has no role column.
        """
        self._ensure_loaded()
        with self._lock:
            members = list(self._members)
            index = self._find(members, member_id)
            if index is None:
                return None
            updated = replace(members[index], role=role)
            members[index] = updated
            self._remember_override(member_id, "role", role.value)
            self._commit(members)
            self.session.refresh(updated)

        self._submit(f"assign-role:{member_id}",
                     lambda: self.remote.update_member_fields(member_id, {"role": role.value}))
        return updated

    # =========================================================
    # QUERIES
    # =========================================================
    def find_member(self, member_id: str) -> Optional[Member]:
        members = self._resolve_members()
        index = self._find(members, member_id)
        return members[index] if index is not None else None

    def find_by_username(self, username: str) -> Optional[Member]:
        return MatrixPlacementHelper.find_sponsor(self._resolve_members(), username)

    def build_tree(self, root_id: Optional[str] = None) -> Optional[MatrixNode]:
        members = self.fetch_members()
        if root_id is None:
            root = find_root(members, self.root_id)
            if root is None:
                return None
            root_id = root.id
        return build_tree(members, root_id)

    def network_stats(self) -> Dict[str, Any]:
        stats = network_stats(self.fetch_members(), self.root_id)
        stats["status"] = self.status.value
        return stats

    def load_attachment(self, utility_id: str) -> Optional[str]:
        """Attachment payload from memory, else lazily from the remote store."""
        utility = None
        for member in self._resolve_members():
            utility = member.find_utility(utility_id)
            if utility is not None:
                break
        if utility is None:
            return None
        if utility.attachment_data:
            return utility.attachment_data
        if self.remote is None or not utility.has_attachment:
            return None

        try:
            data = self.remote.fetch_attachment(utility_id)
        except RemoteUnavailable as e:
            logger.warning(f"Could not load attachment {utility_id}: {e.message}")
            return None
        if data:
            self._hold_payload(utility_id, data)
        return data

    def _hold_payload(self, utility_id: str, data: str) -> None:
        # In-memory only; the cache write path would strip it anyway
        with self._lock:
            members = list(self._members)
            for index, member in enumerate(members):
                utility = member.find_utility(utility_id)
                if utility is None:
                    continue
                if not utility.attachment_data:
                    members[index] = member.with_replaced_utility(replace(utility, attachment_data=data))
                    self._members = members
                return
