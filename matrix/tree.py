# matrix/tree.py
from typing import Any, Dict, Optional, Sequence

from matrix.entities import ROOT_MEMBER_ID, MatrixNode, Member
from matrix.placement import MatrixPlacementHelper, children_index, find_root

UNKNOWN_SPONSOR = "unknown"
NO_SPONSOR = "none"


def build_tree(members: Sequence[Member], root_id: str) -> Optional[MatrixNode]:
    """
    Build the MatrixNode view rooted at root_id with rolled-up downline counts.

    totalDownline counts every descendant; totalUtilities counts descendant
    utilities only (the node's own portfolio is excluded). Returns None when
    root_id is not in the set.
    """
    by_id = {member.id: member for member in members}
    root = by_id.get(root_id)
    if root is None:
        return None

    index = children_index(members)
    usernames = {member.id: member.username for member in members}
    visited = set()

    def sponsor_name(member: Member) -> str:
        if member.sponsor_id is None:
            return NO_SPONSOR
        return usernames.get(member.sponsor_id, UNKNOWN_SPONSOR)

    def build_node(member: Member) -> MatrixNode:
        visited.add(member.id)
        children = [build_node(child) for child in index.get(member.id, []) if child.id not in visited]
        return MatrixNode(
            member=member,
            children=children,
            total_downline=sum(1 + child.total_downline for child in children),
            total_utilities=sum(len(child.utilities) + child.total_utilities for child in children),
            sponsor_username=sponsor_name(member),
        )

    return build_node(root)


def network_stats(members: Sequence[Member], root_id: str = ROOT_MEMBER_ID) -> Dict[str, Any]:
    """Headline numbers for the dashboard."""
    next_spot = None
    root = find_root(members, root_id)
    if root is not None:
        parent_id = MatrixPlacementHelper.find_placement_parent(members, root.id)
        parent = next((m for m in members if m.id == parent_id), None)
        next_spot = parent.username if parent else None

    return {
        "totalUsers": len(members),
        "matrixDepth": max((m.level for m in members), default=0),
        "totalUtilities": sum(len(m.utilities) for m in members),
        "nextEmptySpot": next_spot,
    }
