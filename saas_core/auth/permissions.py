"""
Fixed workspace capability table (role -> permissions).
"""

from enum import Enum
from typing import Dict, FrozenSet

from ..models.enums import WorkspaceRole


class WorkspacePermission(str, Enum):
    """Workspace-scoped permissions"""
    VIEW = "workspace.view"
    UPDATE = "workspace.update"
    MANAGE_SETTINGS = "workspace.manage_settings"
    INVITE_USERS = "workspace.invite_users"
    REMOVE_USERS = "workspace.remove_users"
    CHANGE_USER_ROLES = "workspace.change_user_roles"
    DELETE = "workspace.delete"
    VIEW_AUDIT_LOGS = "workspace.view_audit_logs"


ROLE_PERMISSIONS: Dict[WorkspaceRole, FrozenSet[WorkspacePermission]] = {
    WorkspaceRole.MANAGER: frozenset([
        WorkspacePermission.VIEW,
        WorkspacePermission.UPDATE,
        WorkspacePermission.MANAGE_SETTINGS,
        WorkspacePermission.INVITE_USERS,
        WorkspacePermission.REMOVE_USERS,
        WorkspacePermission.CHANGE_USER_ROLES,
        WorkspacePermission.DELETE,
        WorkspacePermission.VIEW_AUDIT_LOGS,
    ]),
    WorkspaceRole.EDITOR: frozenset([
        WorkspacePermission.VIEW,
    ]),
    WorkspaceRole.VIEWER: frozenset([
        WorkspacePermission.VIEW,
    ]),
}


def permissions_for(role: WorkspaceRole) -> FrozenSet[WorkspacePermission]:
    return ROLE_PERMISSIONS.get(role, frozenset())


def role_has_permission(role: WorkspaceRole, permission: str) -> bool:
    try:
        wanted = WorkspacePermission(permission)
    except ValueError:
        return False
    return wanted in permissions_for(role)
