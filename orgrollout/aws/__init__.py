"""AWS integration library for the organization deployment orchestrator."""

from .organization import build_snapshot, detect_organization, detect_organization_for_role
from .sessions import assume_role, can_assume_role

__all__ = [
    "build_snapshot",
    "detect_organization",
    "detect_organization_for_role",
    "assume_role",
    "can_assume_role",
]
