"""Group registry: named groups with their own members, admins and settings."""
from .schemas import Group, GroupDetail, GroupOptions, GroupSummary
from .service import GroupRegistry

__all__ = [
    "Group",
    "GroupDetail",
    "GroupOptions",
    "GroupSummary",
    "GroupRegistry",
]
