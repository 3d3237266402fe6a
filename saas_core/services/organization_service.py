"""
Organization Service - onboarding, membership management and ownership transfer.

Management operations raise OrganizationError for rule violations; callers
map those to their own user-facing responses.
"""

import logging
from datetime import timedelta
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from ..auth.access_resolver import AccessResolver
from ..clock import Clock, utc_now
from ..config import settings
from ..exceptions import OrganizationError
from ..models.enums import OrganizationRole, WorkspaceRole
from ..models.membership import OrganizationUser, WorkspaceUser
from ..models.organization import Organization
from ..models.plan import Plan
from ..models.user import User
from ..models.workspace import Workspace
from ..utils import unique_slug
from .caching_service import CacheStore, get_cache_store
from .entitlement_service import EntitlementService

logger = logging.getLogger(__name__)


class OrganizationService:
    """Write operations over the organization side of the tenancy graph"""

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

    def get_membership(self, organization: Organization, user: User) -> Optional[OrganizationUser]:
        return (
            self.db.query(OrganizationUser)
            .filter(
                OrganizationUser.organization_id == organization.id,
                OrganizationUser.user_id == user.id,
            )
            .first()
        )

    def create_organization(
        self,
        owner: User,
        name: str,
        slug: Optional[str] = None,
        plan: Optional[Plan] = None,
        workspace_name: str = "General",
    ) -> Organization:
        """
        Create an organization with its owner membership and first workspace.

        The requested plan is attached when given; otherwise (or when that
        attachment is skipped) the free plan is attached with a trial window.
        """
        organization = Organization(
            name=name,
            slug=unique_slug(slug or name, self._organization_slug_taken),
            owner_id=owner.id,
        )
        self.db.add(organization)
        self.db.flush()

        self.db.add(OrganizationUser(
            organization_id=organization.id,
            user_id=owner.id,
            role=OrganizationRole.OWNER,
            joined_at=self.clock(),
        ))
        workspace = Workspace(
            organization_id=organization.id,
            name=workspace_name,
            slug=unique_slug(workspace_name, lambda s: False),
        )
        self.db.add(workspace)
        self.db.flush()

        owner.current_organization_id = organization.id
        owner.current_workspace_id = workspace.id
        self.db.commit()

        now = self.clock()
        trial = {
            "trial_start": now,
            "trial_end": now + timedelta(days=settings.FREE_PLAN_TRIAL_DAYS),
        }
        attached = None
        if plan is not None:
            attached = self.entitlements.attach_plan(
                organization, plan, **(trial if plan.is_free() else {})
            )
        if attached is None and not self.entitlements.get_active_associations(organization):
            self.entitlements.attach_plan(organization, settings.FREE_PLAN_SLUG, **trial)

        logger.info(f"Organization created: id={organization.id} slug={organization.slug} owner={owner.id}")
        return organization

    def _organization_slug_taken(self, slug: str) -> bool:
        return self.db.query(Organization.id).filter(Organization.slug == slug).first() is not None

    def add_member(
        self,
        organization: Organization,
        user: User,
        role: OrganizationRole = OrganizationRole.MEMBER,
        invited_by: Optional[User] = None,
    ) -> OrganizationUser:
        """Add a member; an existing membership keeps its row and gets the new role."""
        role = OrganizationRole(role)
        if role is OrganizationRole.OWNER:
            raise OrganizationError.cannot_promote_to_owner()
        membership = self.get_membership(organization, user)
        if membership is None:
            membership = OrganizationUser(
                organization_id=organization.id,
                user_id=user.id,
                joined_at=self.clock(),
                invited_by=invited_by.id if invited_by else None,
            )
            self.db.add(membership)
        elif membership.is_owner():
            raise OrganizationError.cannot_change_owner_role()
        membership.role = role
        self.db.commit()
        return membership

    def remove_member(self, organization: Organization, user: User, actor: User) -> None:
        if organization.is_owned_by(user):
            raise OrganizationError.cannot_remove_owner()
        if actor.id == user.id:
            raise OrganizationError.cannot_remove_yourself()

        membership = self.get_membership(organization, user)
        if membership is None:
            raise OrganizationError.user_not_member()
        if not self.access.can_remove_user(actor, organization, user):
            raise OrganizationError.permission_denied()

        workspace_ids = [w.id for w in organization.workspaces]
        if workspace_ids:
            self.db.query(WorkspaceUser).filter(
                WorkspaceUser.user_id == user.id,
                WorkspaceUser.workspace_id.in_(workspace_ids),
            ).delete(synchronize_session=False)
        self.db.delete(membership)

        if user.current_organization_id == organization.id:
            user.current_organization_id = None
            user.current_workspace_id = None
        self.db.commit()
        logger.info(f"Member removed: organization={organization.id} user={user.id} by={actor.id}")

    def change_member_role(
        self,
        organization: Organization,
        user: User,
        new_role: OrganizationRole,
        actor: User,
        workspace_ids: Optional[Iterable[int]] = None,
    ) -> OrganizationUser:
        """
        Change a member's organization role.

        Args:
            organization: Organization the member belongs to
            user: Member whose role changes
            new_role: Admin or member; ownership moves only via transfer_ownership
            actor: User performing the change
            workspace_ids: For a member, the workspaces to hold direct access to
        """
        new_role = OrganizationRole(new_role)
        if organization.is_owned_by(user):
            raise OrganizationError.cannot_change_owner_role()
        if actor.id == user.id:
            raise OrganizationError.cannot_change_own_role()
        if new_role is OrganizationRole.OWNER:
            raise OrganizationError.cannot_promote_to_owner()

        membership = self.get_membership(organization, user)
        if membership is None:
            raise OrganizationError.user_not_member()
        if not self.access.can_change_user_role(actor, organization, user):
            raise OrganizationError.permission_denied()

        membership.role = new_role
        self.db.flush()

        if new_role is OrganizationRole.MEMBER and workspace_ids is not None:
            self._replace_workspace_memberships(organization, user, list(workspace_ids), actor)

        self.db.commit()
        logger.info(
            f"Member role changed: organization={organization.id} user={user.id} "
            f"role={new_role.value} by={actor.id}"
        )
        return membership

    def _replace_workspace_memberships(
        self, organization: Organization, user: User, workspace_ids: List[int], actor: User
    ) -> None:
        org_workspace_ids = [w.id for w in organization.workspaces if not w.is_deleted()]
        self.db.query(WorkspaceUser).filter(
            WorkspaceUser.user_id == user.id,
            WorkspaceUser.workspace_id.in_(org_workspace_ids),
        ).delete(synchronize_session=False)
        for workspace_id in workspace_ids:
            if workspace_id in org_workspace_ids:
                self.db.add(WorkspaceUser(
                    workspace_id=workspace_id,
                    user_id=user.id,
                    role=WorkspaceRole.VIEWER,
                    joined_at=self.clock(),
                    invited_by=actor.id,
                ))

    def update_role(self, organization: Organization, user: User, role: OrganizationRole) -> OrganizationUser:
        """Set a role directly; refuses to leave the organization without an owner."""
        role = OrganizationRole(role)
        if role is OrganizationRole.OWNER:
            raise OrganizationError.cannot_promote_to_owner()
        membership = self.get_membership(organization, user)
        if membership is None:
            raise OrganizationError.user_not_member()

        if membership.is_owner():
            owners = (
                self.db.query(OrganizationUser)
                .filter(
                    OrganizationUser.organization_id == organization.id,
                    OrganizationUser.role == OrganizationRole.OWNER,
                )
                .count()
            )
            if owners <= 1:
                raise OrganizationError.last_owner()

        membership.role = role
        self.db.commit()
        return membership

    def transfer_ownership(self, organization: Organization, new_owner: User, current_owner: User) -> Organization:
        if not organization.is_owned_by(current_owner):
            raise OrganizationError.not_owner()
        if new_owner.id == current_owner.id:
            raise OrganizationError.cannot_transfer_to_self()

        new_membership = self.get_membership(organization, new_owner)
        if new_membership is None:
            raise OrganizationError.transfer_requires_access()

        current_membership = self.get_membership(organization, current_owner)
        new_membership.role = OrganizationRole.OWNER
        if current_membership is not None:
            current_membership.role = OrganizationRole.ADMIN
        organization.owner_id = new_owner.id
        self.db.commit()
        logger.info(
            f"Ownership transferred: organization={organization.id} "
            f"from={current_owner.id} to={new_owner.id}"
        )
        return organization

    def assign_to_workspaces(
        self,
        organization: Organization,
        user: User,
        workspace_ids: Iterable[int],
        role: WorkspaceRole = WorkspaceRole.VIEWER,
        invited_by: Optional[User] = None,
    ) -> List[WorkspaceUser]:
        """Give a member direct access to workspaces. No-op for owners and admins."""
        org_role = self.access.resolve_organization_role(user, organization)
        if org_role is None:
            raise OrganizationError.user_not_member()
        if org_role.has_implicit_workspace_access():
            return []

        valid_ids = {w.id for w in organization.workspaces if not w.is_deleted()}
        assigned: List[WorkspaceUser] = []
        for workspace_id in workspace_ids:
            if workspace_id not in valid_ids:
                continue
            membership = (
                self.db.query(WorkspaceUser)
                .filter(WorkspaceUser.workspace_id == workspace_id, WorkspaceUser.user_id == user.id)
                .first()
            )
            if membership is None:
                membership = WorkspaceUser(
                    workspace_id=workspace_id,
                    user_id=user.id,
                    joined_at=self.clock(),
                    invited_by=invited_by.id if invited_by else None,
                )
                self.db.add(membership)
            membership.role = role
            assigned.append(membership)
        self.db.commit()
        return assigned

    def grant_capability(self, organization: Organization, user: User, capability: str) -> OrganizationUser:
        membership = self.get_membership(organization, user)
        if membership is None:
            raise OrganizationError.user_not_member()
        membership.add_capability(capability)
        self.db.commit()
        return membership

    def revoke_capability(self, organization: Organization, user: User, capability: str) -> OrganizationUser:
        membership = self.get_membership(organization, user)
        if membership is None:
            raise OrganizationError.user_not_member()
        membership.remove_capability(capability)
        self.db.commit()
        return membership

    def switch_organization(self, user: User, organization: Organization) -> bool:
        """Point the user's session context at ``organization`` if they can reach it."""
        if not self.access.has_organization_access(user, organization):
            return False
        user.current_organization_id = organization.id
        workspace = self.access.first_accessible_workspace(user, organization)
        user.current_workspace_id = workspace.id if workspace else None
        self.db.commit()
        return True
