# matrix/normalization.py
"""
Coerce loosely-typed member records (spreadsheet rows, old cache snapshots)
into strict Member/Utility records before they reach placement or tree code.

The spreadsheet backend hands back numbers for numeric-looking cells, drops
empty columns and stores avatar config as a JSON string, so every field is
treated as untrusted here.
"""
import json
import logging
from typing import Any, Dict, List, Optional

from matrix.entities import (
    ROOT_MEMBER_ID,
    DEFAULT_AVATAR_BACKGROUND,
    DEFAULT_AVATAR_STYLE,
    AvatarConfig,
    Member,
    MemberRole,
    Utility,
    UtilityStatus,
    UtilityType,
)
from matrix.errors import RemoteUnavailable

logger = logging.getLogger(__name__)

# Values written by older releases of the sheet script
LEGACY_STATUS_MAP = {
    "in lavorazione": UtilityStatus.PENDING,
    "attiva": UtilityStatus.ACTIVE,
    "rifiutata": UtilityStatus.REJECTED,
}

LEGACY_TYPE_MAP = {
    "luce": UtilityType.ELECTRICITY,
}


def coerce_text(value: Any) -> str:
    """Render ids, passwords and phone numbers as text, never as 123.0."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def coerce_reference(value: Any) -> Optional[str]:
    text = coerce_text(value)
    if not text or text.lower() in ("null", "none", "undefined"):
        return None
    return text


def coerce_level(value: Any) -> int:
    try:
        level = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(level, 0)


def coerce_status(value: Any) -> UtilityStatus:
    text = coerce_text(value)
    for status in UtilityStatus:
        if text.lower() == status.value.lower():
            return status
    return LEGACY_STATUS_MAP.get(text.lower(), UtilityStatus.PENDING)


def coerce_utility_type(value: Any) -> UtilityType:
    text = coerce_text(value)
    for utility_type in UtilityType:
        if text.lower() == utility_type.value.lower():
            return utility_type
    return LEGACY_TYPE_MAP.get(text.lower(), UtilityType.ELECTRICITY)


def parse_utility_type(value: Any) -> Optional[UtilityType]:
    """Strict variant for user input: None when the value is not a known type."""
    text = coerce_text(value).lower()
    for utility_type in UtilityType:
        if text == utility_type.value.lower():
            return utility_type
    return LEGACY_TYPE_MAP.get(text)


def parse_status(value: Any) -> Optional[UtilityStatus]:
    text = coerce_text(value).lower()
    for status in UtilityStatus:
        if text == status.value.lower():
            return status
    return LEGACY_STATUS_MAP.get(text)


def normalize_avatar(raw: Any, username: str) -> AvatarConfig:
    if isinstance(raw, str) and raw.strip():
        try:
            raw = json.loads(raw)
        except ValueError:
            raw = None
    if not isinstance(raw, dict) or not raw:
        return AvatarConfig.default_for(username)
    return AvatarConfig(
        style=coerce_text(raw.get("style")) or DEFAULT_AVATAR_STYLE,
        seed=coerce_text(raw.get("seed")) or username,
        background_color=coerce_text(raw.get("backgroundColor")) or DEFAULT_AVATAR_BACKGROUND,
    )


def normalize_utility(raw: Dict[str, Any]) -> Optional[Utility]:
    utility_id = coerce_text(raw.get("id"))
    if not utility_id:
        return None
    data = raw.get("attachmentData") or None
    return Utility(
        id=utility_id,
        type=coerce_utility_type(raw.get("type")),
        provider=coerce_text(raw.get("provider")),
        date_added=coerce_text(raw.get("dateAdded")),
        status=coerce_status(raw.get("status")),
        attachment_name=coerce_text(raw.get("attachmentName")) or None,
        attachment_type=coerce_text(raw.get("attachmentType")) or None,
        attachment_data=coerce_text(data) if data is not None else None,
        has_attachment=coerce_text(raw.get("hasAttachment")).lower() in ("true", "1") or data is not None,
    )


def normalize_role(raw: Any, member_id: str, root_id: str) -> MemberRole:
    text = coerce_text(raw).lower()
    for role in MemberRole:
        if text == role.value:
            return role
    return MemberRole.ADMIN if member_id == root_id else MemberRole.MEMBER


def normalize_member(raw: Dict[str, Any], root_id: str = ROOT_MEMBER_ID) -> Optional[Member]:
    """Build a strict Member from one raw record. Returns None when it has no id."""
    member_id = coerce_text(raw.get("id"))
    if not member_id:
        return None

    username = coerce_text(raw.get("username"))
    raw_utilities = raw.get("utilities")
    utilities = []
    if isinstance(raw_utilities, list):
        for item in raw_utilities:
            if not isinstance(item, dict):
                continue
            utility = normalize_utility(item)
            if utility is not None:
                utilities.append(utility)

    return Member(
        id=member_id,
        username=username,
        password=coerce_text(raw.get("password")),
        email=coerce_text(raw.get("email")),
        phone=coerce_text(raw.get("phone")),
        sponsor_id=coerce_reference(raw.get("sponsorId")),
        parent_id=coerce_reference(raw.get("parentId")),
        joined_at=coerce_text(raw.get("joinedAt")),
        level=coerce_level(raw.get("level")),
        utilities=tuple(utilities),
        avatar_config=normalize_avatar(raw.get("avatarConfig"), username),
        role=normalize_role(raw.get("role"), member_id, root_id),
    )


def normalize_members(payload: Any, root_id: str = ROOT_MEMBER_ID) -> List[Member]:
    """
    Normalize a full member listing.
    Raises RemoteUnavailable when the payload is not a list at all.
    """
    if not isinstance(payload, list):
        raise RemoteUnavailable(f"Unrecognized payload shape: {type(payload).__name__}")

    members = []
    skipped = 0
    for raw in payload:
        if not isinstance(raw, dict):
            skipped += 1
            continue
        member = normalize_member(raw, root_id)
        if member is None:
            skipped += 1
            continue
        members.append(member)

    if skipped:
        logger.warning(f"Skipped {skipped} member record(s) without a usable id")
    return members
