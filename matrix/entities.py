# matrix/entities.py - Records shared by every layer of the matrix engine
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

# ===========================================================
# CONSTANTS
# ===========================================================

ROOT_MEMBER_ID = "root-001"
DEFAULT_AVATAR_STYLE = "bottts-neutral"
DEFAULT_AVATAR_BACKGROUND = "transparent"


# ===========================================================
# ENUM DEFINITIONS
# ===========================================================

class MemberRole(Enum):
    ADMIN = "admin"
    MEMBER = "member"


class UtilityType(Enum):
    ELECTRICITY = "Electricity"
    GAS = "Gas"


class UtilityStatus(Enum):
    PENDING = "Pending"
    ACTIVE = "Active"
    REJECTED = "Rejected"

    @property
    def is_terminal(self) -> bool:
        return self is not UtilityStatus.PENDING


class SyncStatus(Enum):
    CONNECTED = "connected"
    DEGRADED = "degraded"


# ===========================================================
# RECORDS
# ===========================================================

@dataclass(frozen=True)
class AvatarConfig:
    style: str = DEFAULT_AVATAR_STYLE
    seed: str = ""
    background_color: str = DEFAULT_AVATAR_BACKGROUND

    @classmethod
    def default_for(cls, username: str) -> "AvatarConfig":
        return cls(seed=username)

    def to_dict(self) -> Dict[str, str]:
        return {
            "style": self.style,
            "seed": self.seed,
            "backgroundColor": self.background_color,
        }


@dataclass(frozen=True)
class Utility:
    """One contract attached to a member's personal portfolio."""
    id: str
    type: UtilityType
    provider: str
    date_added: str
    status: UtilityStatus = UtilityStatus.PENDING
    attachment_name: Optional[str] = None
    attachment_type: Optional[str] = None
    attachment_data: Optional[str] = None
    has_attachment: bool = False

    def to_dict(self, include_data: bool = True) -> Dict[str, Any]:
        result = {
            "id": self.id,
            "type": self.type.value,
            "provider": self.provider,
            "dateAdded": self.date_added,
            "status": self.status.value,
            "attachmentName": self.attachment_name,
            "attachmentType": self.attachment_type,
            "hasAttachment": self.has_attachment or bool(self.attachment_data),
        }
        if include_data:
            result["attachmentData"] = self.attachment_data
        return result


@dataclass(frozen=True)
class Member:
    """A node of the forced matrix plus the personal utility portfolio."""
    id: str
    username: str
    password: str
    email: str
    phone: str
    sponsor_id: Optional[str]
    parent_id: Optional[str]
    joined_at: str
    level: int = 0
    utilities: Tuple[Utility, ...] = ()
    avatar_config: AvatarConfig = field(default_factory=AvatarConfig)
    role: MemberRole = MemberRole.MEMBER

    @property
    def is_admin(self) -> bool:
        return self.role is MemberRole.ADMIN

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    def find_utility(self, utility_id: str) -> Optional[Utility]:
        for utility in self.utilities:
            if utility.id == utility_id:
                return utility
        return None

    def with_utility(self, utility: Utility) -> "Member":
        return replace(self, utilities=self.utilities + (utility,))

    def with_replaced_utility(self, utility: Utility) -> "Member":
        utilities = tuple(utility if u.id == utility.id else u for u in self.utilities)
        return replace(self, utilities=utilities)

    def to_dict(self, include_password: bool = True, include_attachments: bool = True) -> Dict[str, Any]:
        """Serialize using the camelCase field names of the remote sheet."""
        result = {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "phone": self.phone,
            "sponsorId": self.sponsor_id,
            "parentId": self.parent_id,
            "joinedAt": self.joined_at,
            "level": self.level,
            "role": self.role.value,
            "utilities": [u.to_dict(include_data=include_attachments) for u in self.utilities],
            "avatarConfig": self.avatar_config.to_dict(),
        }
        if include_password:
            result["password"] = self.password
        return result


@dataclass
class MatrixNode:
    """Derived view of a member with its constructed subtree. Never persisted."""
    member: Member
    children: List["MatrixNode"]
    total_downline: int
    total_utilities: int
    sponsor_username: str

    def __getattr__(self, name):
        # Delegate member fields (id, username, level, utilities, ...)
        if name == "member":
            raise AttributeError(name)
        return getattr(self.member, name)

    def to_dict(self) -> Dict[str, Any]:
        result = self.member.to_dict(include_password=False, include_attachments=False)
        result.update({
            "children": [child.to_dict() for child in self.children],
            "totalDownline": self.total_downline,
            "totalUtilities": self.total_utilities,
            "sponsorUsername": self.sponsor_username,
        })
        return result
