"""
Workspace Service - workspace lifecycle and direct membership management.
"""

import logging
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..auth.access_resolver import AccessResolver
from ..auth.permissions import WorkspacePermission
from ..clock import Clock, utc_now
from ..exceptions import OrganizationError, WorkspaceError
from ..models.enums import WorkspaceRole
from ..models.membership import WorkspaceUser
from ..models.organization import Organization
from ..models.user import User
from ..models.workspace import Workspace
from ..utils import unique_slug
from .caching_service import CacheStore, get_cache_store
from .entitlement_service import EntitlementService

logger = logging.getLogger(__name__)


class WorkspaceService:
    """Write operations over workspaces and their direct members"""

    def __init__(
        self,
        db: Session,
        cache_store: Optional[CacheStore] = None,
        clock: Clock = utc_now,
        entitlements: Optional[EntitlementService] = None,
    ):
        self.db = db
        self.cache_store = cache_store or get_cache_store()
        self.clock = clock
        self.entitlements = entitlements or EntitlementService(db, self.cache_store, clock)
        self.access = AccessResolver(db)

    def count_active_workspaces(self, organization_id: int) -> int:
        return (
            self.db.query(func.count(Workspace.id))
            .filter(Workspace.organization_id == organization_id, Workspace.deleted_at.is_(None))
            .scalar()
        ) or 0

    def can_be_deleted(self, workspace: Workspace) -> bool:
        """An organization must keep one live workspace; counted fresh on every call."""
        organization = workspace.organization
        if organization is None:
            return False
        return self.count_active_workspaces(organization.id) > 1

    def create_workspace(self, organization: Organization, name: str, creator: User) -> Workspace:
        if self.entitlements.has_reached_workspace_limit(organization):
            raise OrganizationError.workspace_limit_reached()

        duplicate = (
            self.db.query(Workspace.id)
            .filter(
                Workspace.organization_id == organization.id,
                func.lower(Workspace.name) == name.lower(),
                Workspace.deleted_at.is_(None),
            )
            .first()
        )
        if duplicate is not None:
            raise WorkspaceError.duplicate_name()

        workspace = Workspace(
            organization_id=organization.id,
            name=name,
            slug=unique_slug(name, lambda s: self._slug_taken(organization.id, s)),
        )
        self.db.add(workspace)
        self.db.flush()

        org_role = self.access.resolve_organization_role(creator, organization)
        if org_role is None or not org_role.has_implicit_workspace_access():
            self.db.add(WorkspaceUser(
                workspace_id=workspace.id,
                user_id=creator.id,
                role=WorkspaceRole.MANAGER,
                joined_at=self.clock(),
            ))
        self.db.commit()
        logger.info(f"Workspace created: id={workspace.id} organization={organization.id} by={creator.id}")
        return workspace

    def _slug_taken(self, organization_id: int, slug: str) -> bool:
        return (
            self.db.query(Workspace.id)
            .filter(Workspace.organization_id == organization_id, Workspace.slug == slug)
            .first()
            is not None
        )

    def delete_workspace(self, workspace: Workspace, actor: User) -> Workspace:
        """
        Soft-delete a workspace.

        Raises:
            WorkspaceError: actor cannot manage the workspace, or it is the
                organization's last live workspace
        """
        if not self.access.has_workspace_permission(actor, workspace, WorkspacePermission.DELETE):
            raise WorkspaceError.cannot_delete()
        if not self.can_be_deleted(workspace):
            raise WorkspaceError.last_workspace()

        workspace.deleted_at = self.clock()
        self.db.flush()

        affected = self.db.query(User).filter(User.current_workspace_id == workspace.id).all()
        for user in affected:
            self._reassign_current_workspace(user, workspace)

        self.db.query(WorkspaceUser).filter(WorkspaceUser.workspace_id == workspace.id).delete(
            synchronize_session=False
        )
        self.db.commit()
        logger.info(f"Workspace deleted: id={workspace.id} by={actor.id} reassigned_users={len(affected)}")
        return workspace

    def _reassign_current_workspace(self, user: User, deleted: Workspace) -> Optional[Workspace]:
        """Move the user's context to their strongest remaining workspace in the organization."""
        candidates = [
            entry for entry in self.access.accessible_workspaces(user)
            if entry.workspace.organization_id == deleted.organization_id
            and entry.workspace.id != deleted.id
        ]
        if not candidates:
            user.current_workspace_id = None
            return None
        best = max(candidates, key=lambda entry: entry.role.level())
        user.current_workspace_id = best.workspace.id
        return best.workspace

    def get_member(self, workspace: Workspace, user: User) -> Optional[WorkspaceUser]:
        return (
            self.db.query(WorkspaceUser)
            .filter(WorkspaceUser.workspace_id == workspace.id, WorkspaceUser.user_id == user.id)
            .first()
        )

    def add_member(
        self,
        workspace: Workspace,
        user: User,
        role: WorkspaceRole,
        invited_by: Optional[User] = None,
    ) -> WorkspaceUser:
        role = WorkspaceRole(role)
        if invited_by is not None and not self.access.can_assign_workspace_role(invited_by, workspace, role):
            raise WorkspaceError.permission_denied()

        membership = self.get_member(workspace, user)
        if membership is None:
            membership = WorkspaceUser(
                workspace_id=workspace.id,
                user_id=user.id,
                joined_at=self.clock(),
                invited_by=invited_by.id if invited_by else None,
            )
            self.db.add(membership)
        membership.role = role
        self.db.commit()
        return membership

    def remove_member(self, workspace: Workspace, user: User, actor: User) -> None:
        if actor.id == user.id:
            raise WorkspaceError.cannot_remove_self()
        if not self.access.has_workspace_permission(actor, workspace, WorkspacePermission.REMOVE_USERS):
            raise WorkspaceError.permission_denied()

        membership = self.get_member(workspace, user)
        if membership is None:
            raise WorkspaceError.member_not_found()
        self.db.delete(membership)
        if user.current_workspace_id == workspace.id:
            self._reassign_current_workspace(user, workspace)
        self.db.commit()

    def change_member_role(self, workspace: Workspace, user: User, role: WorkspaceRole, actor: User) -> WorkspaceUser:
        role = WorkspaceRole(role)
        if actor.id == user.id:
            raise WorkspaceError.permission_denied()
        if not self.access.has_workspace_permission(actor, workspace, WorkspacePermission.CHANGE_USER_ROLES):
            raise WorkspaceError.permission_denied()
        if not self.access.can_assign_workspace_role(actor, workspace, role):
            raise WorkspaceError.permission_denied()

        membership = self.get_member(workspace, user)
        if membership is None:
            raise WorkspaceError.member_not_found()
        membership.role = role
        self.db.commit()
        return membership
