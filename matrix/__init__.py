# matrix/__init__.py
"""
Forced 10x10 matrix network: placement, tree aggregation and the
remote/local reconciliation engine.
"""
from matrix.entities import (
    AvatarConfig,
    MatrixNode,
    Member,
    MemberRole,
    SyncStatus,
    Utility,
    UtilityStatus,
    UtilityType,
)
from matrix.errors import MatrixError, RemoteUnavailable, ValidationError
from matrix.reconciliation import ReconciliationEngine

__all__ = [
    "AvatarConfig",
    "MatrixNode",
    "Member",
    "MemberRole",
    "SyncStatus",
    "Utility",
    "UtilityStatus",
    "UtilityType",
    "MatrixError",
    "RemoteUnavailable",
    "ValidationError",
    "ReconciliationEngine",
]
