"""
FastAPI Dependencies for Authorization

Routes live in the host application; these factories only resolve the tenant
from the path and enforce the caller's resolved role. Authentication is the
host's concern and is passed in as ``current_user_dependency``.
"""

from typing import Callable

from fastapi import Depends, HTTPException, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.enums import OrganizationRole
from ..models.organization import Organization
from ..models.user import User
from ..models.workspace import Workspace
from .access_resolver import AccessResolver
from .permissions import WorkspacePermission


def require_organization_role(
    minimum_role: OrganizationRole,
    current_user_dependency: Callable[..., User],
):
    """Create a dependency that requires at least ``minimum_role`` in the path organization"""

    def organization_role_checker(
        organization_uuid: str,
        db: Session = Depends(get_db),
        current_user: User = Depends(current_user_dependency),
    ) -> Organization:
        organization = (
            db.query(Organization)
            .filter(Organization.uuid == organization_uuid, Organization.deleted_at.is_(None))
            .first()
        )
        if organization is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Organization not found"
            )

        role = AccessResolver(db).resolve_organization_role(current_user, organization)
        if role is None or not role.is_at_least(minimum_role):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires organization role {minimum_role.value} or higher"
            )
        return organization

    return organization_role_checker


def require_workspace_permission(
    permission: WorkspacePermission,
    current_user_dependency: Callable[..., User],
):
    """Create a dependency that requires ``permission`` in the path workspace"""

    def workspace_permission_checker(
        workspace_uuid: str,
        db: Session = Depends(get_db),
        current_user: User = Depends(current_user_dependency),
    ) -> Workspace:
        workspace = (
            db.query(Workspace)
            .filter(Workspace.uuid == workspace_uuid, Workspace.deleted_at.is_(None))
            .first()
        )
        if workspace is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Workspace not found"
            )

        if not AccessResolver(db).has_workspace_permission(current_user, workspace, permission):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permission {WorkspacePermission(permission).value}"
            )
        return workspace

    return workspace_permission_checker


def can_view_workspace(current_user_dependency: Callable[..., User]):
    """Dependency for workspace read access"""
    return require_workspace_permission(WorkspacePermission.VIEW, current_user_dependency)


def can_update_workspace(current_user_dependency: Callable[..., User]):
    """Dependency for workspace update access"""
    return require_workspace_permission(WorkspacePermission.UPDATE, current_user_dependency)


def can_manage_organization(current_user_dependency: Callable[..., User]):
    """Dependency for organization admin access"""
    return require_organization_role(OrganizationRole.ADMIN, current_user_dependency)
