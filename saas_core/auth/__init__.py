"""
Access resolution and authorization helpers.
"""

from .access_resolver import AccessResolver, AccessibleWorkspace
from .permissions import WorkspacePermission, ROLE_PERMISSIONS

__all__ = [
    "AccessResolver",
    "AccessibleWorkspace",
    "WorkspacePermission",
    "ROLE_PERMISSIONS",
]
