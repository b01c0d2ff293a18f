# matrix/placement.py
from collections import deque
from typing import Dict, List, Optional, Sequence, Tuple

from matrix.entities import ROOT_MEMBER_ID, Member
from matrix.errors import ValidationError

MAX_CHILDREN = 10  # 10x10 forced matrix
MAX_DEPTH = 10


def children_index(members: Sequence[Member]) -> Dict[str, List[Member]]:
    """Map parent id -> direct children, preserving member list order."""
    index: Dict[str, List[Member]] = {}
    for member in members:
        if member.parent_id:
            index.setdefault(member.parent_id, []).append(member)
    return index


def find_root(members: Sequence[Member], root_id: str = ROOT_MEMBER_ID) -> Optional[Member]:
    """The canonical root, else the first member without a parent, else the first member."""
    fallback = None
    for member in members:
        if member.id == root_id:
            return member
        if fallback is None and member.parent_id is None:
            fallback = member
    if fallback is not None:
        return fallback
    return members[0] if members else None


class MatrixPlacementHelper:
    """
    Forced matrix placement: every member holds at most MAX_CHILDREN direct
    placements, overflow cascades breadth-first, left to right.
    """

    @staticmethod
    def find_placement_parent(members: Sequence[Member], sponsor_id: str) -> str:
        """
        Return the id of the member whose slot the new registrant occupies.
        BFS from the sponsor; the first candidate with a free slot wins.
        """
        index = children_index(members)
        queue = deque([sponsor_id])
        while queue:
            candidate_id = queue.popleft()
            children = index.get(candidate_id, [])
            if len(children) < MAX_CHILDREN:
                return candidate_id
            queue.extend(child.id for child in children)
        # Unreachable on an acyclic set; keep the sponsor as last resort
        return sponsor_id

    @staticmethod
    def find_sponsor(members: Sequence[Member], sponsor_username: Optional[str]) -> Optional[Member]:
        if not sponsor_username:
            return None
        wanted = sponsor_username.strip().lower()
        for member in members:
            if member.username.lower() == wanted:
                return member
        return None

    @staticmethod
    def resolve_placement(
        members: Sequence[Member],
        sponsor: Optional[Member],
        root_id: str = ROOT_MEMBER_ID,
    ) -> Tuple[Member, str, int]:
        """
        Apply the caller-side placement rules around the BFS.

        Returns (effective_sponsor, parent_id, new_level). A missing sponsor is
        replaced by the root; a parent already at MAX_DEPTH rejects the
        registration with a depth_limit ValidationError.
        """
        effective_sponsor = sponsor or find_root(members, root_id)
        if effective_sponsor is None:
            raise ValidationError("The network has no root member", code="no_root")

        parent_id = MatrixPlacementHelper.find_placement_parent(members, effective_sponsor.id)
        parent = next((m for m in members if m.id == parent_id), None)

        # Corrupt set (parent record missing): place as if under level 0
        parent_level = parent.level if parent else 0
        if parent_level >= MAX_DEPTH:
            raise ValidationError(
                f"Depth limit of {MAX_DEPTH} levels reached", code="depth_limit"
            )
        return effective_sponsor, parent_id, parent_level + 1
