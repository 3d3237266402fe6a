import uuid

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..database import Base


class Workspace(Base):
    """Sub-tenant inside an organization; soft-deleted, never hard-deleted while referenced."""
    __tablename__ = "workspaces"
    __table_args__ = (
        UniqueConstraint("organization_id", "slug", name="uq_workspaces_organization_slug"),
    )

    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(String(36), unique=True, nullable=False, default=lambda: str(uuid.uuid4()))
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False)

    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    organization = relationship("Organization", back_populates="workspaces")
    members = relationship(
        "WorkspaceUser",
        back_populates="workspace",
        cascade="all, delete-orphan",
    )
    feature_limits = relationship(
        "WorkspaceFeatureLimit",
        back_populates="workspace",
        cascade="all, delete-orphan",
    )

    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def __repr__(self):
        return f"<Workspace(id={self.id}, slug='{self.slug}', organization_id={self.organization_id})>"
