import uuid

from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    uuid = Column(String(36), unique=True, nullable=False, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)

    # Session-like pointers; advisory, so no FK constraints
    current_organization_id = Column(Integer, nullable=True)
    current_workspace_id = Column(Integer, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    organization_memberships = relationship(
        "OrganizationUser",
        back_populates="user",
        foreign_keys="OrganizationUser.user_id",
    )
    workspace_memberships = relationship(
        "WorkspaceUser",
        back_populates="user",
        foreign_keys="WorkspaceUser.user_id",
    )

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}')>"
