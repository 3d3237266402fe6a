"""
Model Enums - roles, plan statuses and feature metadata constants.
"""

from enum import Enum
from typing import List


class OrganizationRole(str, Enum):
    """Organization-level role. Owner > Admin > Member."""
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"

    def level(self) -> int:
        return {
            OrganizationRole.OWNER: 100,
            OrganizationRole.ADMIN: 50,
            OrganizationRole.MEMBER: 10,
        }[self]

    def label(self) -> str:
        return self.value.title()

    def is_higher_than(self, other: "OrganizationRole") -> bool:
        return self.level() > other.level()

    def is_at_least(self, other: "OrganizationRole") -> bool:
        return self.level() >= other.level()

    def can_manage_organization(self) -> bool:
        return self in (OrganizationRole.OWNER, OrganizationRole.ADMIN)

    def can_invite_users(self) -> bool:
        return self in (OrganizationRole.OWNER, OrganizationRole.ADMIN)

    def can_manage_billing(self) -> bool:
        return self is OrganizationRole.OWNER

    def can_transfer_ownership(self) -> bool:
        return self is OrganizationRole.OWNER

    def has_implicit_workspace_access(self) -> bool:
        """Owners and admins act as workspace managers everywhere in the organization."""
        return self in (OrganizationRole.OWNER, OrganizationRole.ADMIN)

    def assignable_roles(self) -> List["OrganizationRole"]:
        if self is OrganizationRole.OWNER:
            return [OrganizationRole.ADMIN, OrganizationRole.MEMBER]
        if self is OrganizationRole.ADMIN:
            return [OrganizationRole.MEMBER]
        return []


class WorkspaceRole(str, Enum):
    """Workspace-level role. Manager > Editor > Viewer."""
    MANAGER = "manager"
    EDITOR = "editor"
    VIEWER = "viewer"

    def level(self) -> int:
        return {
            WorkspaceRole.MANAGER: 30,
            WorkspaceRole.EDITOR: 20,
            WorkspaceRole.VIEWER: 10,
        }[self]

    def label(self) -> str:
        return self.value.title()

    def is_higher_than(self, other: "WorkspaceRole") -> bool:
        return self.level() > other.level()

    def is_at_least(self, other: "WorkspaceRole") -> bool:
        return self.level() >= other.level()

    def can_manage_workspace(self) -> bool:
        return self is WorkspaceRole.MANAGER

    def can_invite_users(self) -> bool:
        return self is WorkspaceRole.MANAGER

    def can_edit_content(self) -> bool:
        return self in (WorkspaceRole.MANAGER, WorkspaceRole.EDITOR)

    def can_view(self) -> bool:
        return True

    def assignable_roles(self) -> List["WorkspaceRole"]:
        if self is WorkspaceRole.MANAGER:
            return [WorkspaceRole.EDITOR, WorkspaceRole.VIEWER]
        return []


class OrganizationPlanStatus(str, Enum):
    """Plan association status"""
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    PENDING = "pending"


class BillingCycle(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"
    LIFETIME = "lifetime"


class LimitType(str, Enum):
    """How a PlanLimit value is interpreted"""
    LIMIT = "limit"
    BOOLEAN = "boolean"


class TrackingScope(str, Enum):
    ORGANIZATION = "organization"
    WORKSPACE = "workspace"


class UsagePeriod(str, Enum):
    """Usage counter period; lifetime counters never roll over"""
    LIFETIME = "lifetime"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


def enum_values(enum_cls) -> List[str]:
    """Persist enum values (not member names) in SQLAlchemy Enum columns."""
    return [member.value for member in enum_cls]
