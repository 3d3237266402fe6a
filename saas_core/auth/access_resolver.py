"""
Access Resolver - effective organization and workspace roles for a user.

Workspace access is resolved with an explicit precedence: an organization
owner/admin is a workspace manager everywhere in the organization, and that
implicit access is checked before (and is never downgraded by) a direct
workspace membership. Missing or soft-deleted tenants fail closed.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from ..models.enums import OrganizationRole, WorkspaceRole
from ..models.membership import OrganizationUser, WorkspaceUser
from ..models.organization import Organization
from ..models.user import User
from ..models.workspace import Workspace
from .permissions import role_has_permission

logger = logging.getLogger(__name__)

IMPLICIT_ACCESS_ROLES = (OrganizationRole.OWNER, OrganizationRole.ADMIN)


@dataclass
class AccessibleWorkspace:
    workspace: Workspace
    role: WorkspaceRole
    is_implicit: bool = False


class AccessResolver:
    """Read-only role resolution over the tenancy graph"""

    def __init__(self, db: Session):
        self.db = db

    def resolve_organization_role(
        self, user: Optional[User], organization: Optional[Organization]
    ) -> Optional[OrganizationRole]:
        if user is None or organization is None or organization.is_deleted():
            return None
        membership = (
            self.db.query(OrganizationUser)
            .filter(
                OrganizationUser.organization_id == organization.id,
                OrganizationUser.user_id == user.id,
            )
            .first()
        )
        return OrganizationRole(membership.role) if membership else None

    def resolve_workspace_role(
        self, user: Optional[User], workspace: Optional[Workspace]
    ) -> Optional[WorkspaceRole]:
        if user is None or workspace is None or workspace.is_deleted():
            return None

        organization = workspace.organization
        if organization is None:
            logger.warning(
                f"Workspace {workspace.id} references missing organization "
                f"{workspace.organization_id}; denying access"
            )
            return None
        if organization.is_deleted():
            return None

        org_role = self.resolve_organization_role(user, organization)
        if org_role is not None and org_role.has_implicit_workspace_access():
            return WorkspaceRole.MANAGER

        membership = (
            self.db.query(WorkspaceUser)
            .filter(
                WorkspaceUser.workspace_id == workspace.id,
                WorkspaceUser.user_id == user.id,
            )
            .first()
        )
        return WorkspaceRole(membership.role) if membership else None

    def has_access(self, user: Optional[User], workspace: Optional[Workspace]) -> bool:
        return self.resolve_workspace_role(user, workspace) is not None

    def has_organization_access(self, user: Optional[User], organization: Optional[Organization]) -> bool:
        return self.resolve_organization_role(user, organization) is not None

    # Workspace predicates

    def can_view_workspace(self, user: User, workspace: Workspace) -> bool:
        role = self.resolve_workspace_role(user, workspace)
        return role is not None and role.can_view()

    def can_edit_content(self, user: User, workspace: Workspace) -> bool:
        role = self.resolve_workspace_role(user, workspace)
        return role is not None and role.can_edit_content()

    def can_manage_workspace(self, user: User, workspace: Workspace) -> bool:
        role = self.resolve_workspace_role(user, workspace)
        return role is not None and role.can_manage_workspace()

    def can_invite_users(self, user: User, workspace: Workspace) -> bool:
        role = self.resolve_workspace_role(user, workspace)
        return role is not None and role.can_invite_users()

    def has_workspace_permission(self, user: User, workspace: Workspace, permission: str) -> bool:
        role = self.resolve_workspace_role(user, workspace)
        return role is not None and role_has_permission(role, permission)

    # Organization predicates

    def can_manage_organization(self, user: User, organization: Organization) -> bool:
        role = self.resolve_organization_role(user, organization)
        return role is not None and role.can_manage_organization()

    def can_invite_to_organization(self, user: User, organization: Organization) -> bool:
        role = self.resolve_organization_role(user, organization)
        return role is not None and role.can_invite_users()

    def can_manage_billing(self, user: User, organization: Organization) -> bool:
        role = self.resolve_organization_role(user, organization)
        return role is not None and role.can_manage_billing()

    def can_transfer_ownership(self, user: User, organization: Organization) -> bool:
        role = self.resolve_organization_role(user, organization)
        return role is not None and role.can_transfer_ownership()

    def can_change_user_role(self, actor: User, organization: Organization, target: User) -> bool:
        """Only the owner changes roles, never their own and never another owner's."""
        if actor.id == target.id:
            return False
        if self.resolve_organization_role(actor, organization) is not OrganizationRole.OWNER:
            return False
        target_role = self.resolve_organization_role(target, organization)
        return target_role is not None and target_role is not OrganizationRole.OWNER

    def can_remove_user(self, actor: User, organization: Organization, target: User) -> bool:
        if actor.id == target.id:
            return False
        actor_role = self.resolve_organization_role(actor, organization)
        target_role = self.resolve_organization_role(target, organization)
        if actor_role is None or target_role is None:
            return False
        if actor_role is OrganizationRole.OWNER:
            return target_role is not OrganizationRole.OWNER
        if actor_role is OrganizationRole.ADMIN:
            return target_role is OrganizationRole.MEMBER
        return False

    def can_assign_workspace_role(self, actor: User, workspace: Workspace, role: WorkspaceRole) -> bool:
        org_role = self.resolve_organization_role(actor, workspace.organization)
        if org_role is not None and org_role.has_implicit_workspace_access():
            return True
        actor_role = self.resolve_workspace_role(actor, workspace)
        return actor_role is not None and role in actor_role.assignable_roles()

    def accessible_workspaces(self, user: User) -> List[AccessibleWorkspace]:
        """
        Every workspace the user can reach, with the effective role.

        Three queries regardless of membership count: direct memberships,
        organizations where the user has implicit access, and the workspaces
        of those organizations. Direct memberships are listed first and win
        the de-duplication by workspace id.
        """
        direct_rows = (
            self.db.query(WorkspaceUser, Workspace)
            .join(Workspace, Workspace.id == WorkspaceUser.workspace_id)
            .join(Organization, Organization.id == Workspace.organization_id)
            .filter(
                WorkspaceUser.user_id == user.id,
                Workspace.deleted_at.is_(None),
                Organization.deleted_at.is_(None),
            )
            .order_by(Workspace.id)
            .all()
        )
        entries: List[AccessibleWorkspace] = [
            AccessibleWorkspace(workspace=ws, role=WorkspaceRole(membership.role))
            for membership, ws in direct_rows
        ]

        implicit_org_ids = [
            org_id
            for (org_id,) in self.db.query(OrganizationUser.organization_id)
            .join(Organization, Organization.id == OrganizationUser.organization_id)
            .filter(
                OrganizationUser.user_id == user.id,
                OrganizationUser.role.in_(IMPLICIT_ACCESS_ROLES),
                Organization.deleted_at.is_(None),
            )
            .all()
        ]
        if implicit_org_ids:
            implicit_workspaces = (
                self.db.query(Workspace)
                .filter(
                    Workspace.organization_id.in_(implicit_org_ids),
                    Workspace.deleted_at.is_(None),
                )
                .order_by(Workspace.id)
                .all()
            )
            entries.extend(
                AccessibleWorkspace(workspace=ws, role=WorkspaceRole.MANAGER, is_implicit=True)
                for ws in implicit_workspaces
            )

        unique: Dict[int, AccessibleWorkspace] = {}
        for entry in entries:
            unique.setdefault(entry.workspace.id, entry)
        return list(unique.values())

    def first_accessible_workspace(self, user: User, organization: Organization) -> Optional[Workspace]:
        for entry in self.accessible_workspaces(user):
            if entry.workspace.organization_id == organization.id:
                return entry.workspace
        return None
