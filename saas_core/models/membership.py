"""
Membership edges: OrganizationUser (Organization x User) and WorkspaceUser (Workspace x User).
"""

from typing import List

from sqlalchemy import Column, Integer, DateTime, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from sqlalchemy.types import Enum as SQLEnum

from ..database import Base
from .enums import OrganizationRole, WorkspaceRole, enum_values


class CapabilityMixin:
    """Free-form capability flags stored as a JSON list beside the role."""

    def has_capability(self, capability: str) -> bool:
        return capability in (self.capabilities or [])

    def add_capability(self, capability: str) -> None:
        current: List[str] = list(self.capabilities or [])
        if capability not in current:
            current.append(capability)
        # Reassign so SQLAlchemy sees the JSON column as dirty
        self.capabilities = current

    def remove_capability(self, capability: str) -> None:
        self.capabilities = [c for c in (self.capabilities or []) if c != capability]


class OrganizationUser(CapabilityMixin, Base):
    __tablename__ = "organization_users"
    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="uq_organization_users_org_user"),
    )

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    role = Column(
        SQLEnum(OrganizationRole, values_callable=enum_values, native_enum=False, length=20),
        nullable=False,
        default=OrganizationRole.MEMBER,
    )
    capabilities = Column(JSON, nullable=True, default=list)
    joined_at = Column(DateTime, server_default=func.now())
    invited_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    organization = relationship("Organization", back_populates="members")
    user = relationship("User", back_populates="organization_memberships", foreign_keys=[user_id])
    inviter = relationship("User", foreign_keys=[invited_by])

    def is_owner(self) -> bool:
        return self.role == OrganizationRole.OWNER

    def is_admin(self) -> bool:
        return self.role == OrganizationRole.ADMIN

    def __repr__(self):
        return f"<OrganizationUser(organization_id={self.organization_id}, user_id={self.user_id}, role={self.role})>"


class WorkspaceUser(CapabilityMixin, Base):
    __tablename__ = "workspace_users"
    __table_args__ = (
        UniqueConstraint("workspace_id", "user_id", name="uq_workspace_users_workspace_user"),
    )

    id = Column(Integer, primary_key=True, index=True)
    workspace_id = Column(Integer, ForeignKey("workspaces.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    role = Column(
        SQLEnum(WorkspaceRole, values_callable=enum_values, native_enum=False, length=20),
        nullable=False,
        default=WorkspaceRole.VIEWER,
    )
    capabilities = Column(JSON, nullable=True, default=list)
    joined_at = Column(DateTime, server_default=func.now())
    invited_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    workspace = relationship("Workspace", back_populates="members")
    user = relationship("User", back_populates="workspace_memberships", foreign_keys=[user_id])
    inviter = relationship("User", foreign_keys=[invited_by])

    def __repr__(self):
        return f"<WorkspaceUser(workspace_id={self.workspace_id}, user_id={self.user_id}, role={self.role})>"
