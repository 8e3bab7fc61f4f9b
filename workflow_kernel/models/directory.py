"""
Module: workflow_kernel.models.directory
Responsibility: ORM persistence for users, roles and role membership.

Architecture position: Kernel > Models.  May import from db/base.py only.

The workflow core only reads these tables.  Provisioning users and roles is
owned by an outer system; tests seed them directly.

Invariants enforced:
    - A user holds a given role at most once: UNIQUE(user_id, role_id).
    - Role names are unique.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from workflow_kernel.db.base import Base, UUIDString


class UserModel(Base):
    __tablename__ = "users"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<User {self.id} {self.name!r}>"

    def to_ref(self):
        from workflow_kernel.domain.workflow import UserRef

        return UserRef(id=self.id, name=self.name)


class RoleModel(Base):
    __tablename__ = "roles"

    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<Role {self.id} {self.name!r}>"


class UserRoleModel(Base):
    """Role membership.  ``is_primary`` marks the user's main role holder slot."""

    __tablename__ = "user_roles"

    __table_args__ = (
        UniqueConstraint("user_id", "role_id", name="uq_user_roles_user_role"),
        Index("ix_user_roles_role_id", "role_id"),
    )

    user_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=False,
    )
    role_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("roles.id"), nullable=False,
    )
    is_primary: Mapped[bool] = mapped_column(default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<UserRole user={self.user_id} role={self.role_id} primary={self.is_primary}>"
