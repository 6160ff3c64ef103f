from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from zonecrm.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(Base):
    __tablename__ = "authz_role"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    capabilities: Mapped[list[RoleCapability]] = relationship(
        "RoleCapability",
        back_populates="role",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Capability(Base):
    __tablename__ = "authz_capability"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(100), nullable=False, unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    module: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    roles: Mapped[list[RoleCapability]] = relationship(
        "RoleCapability",
        back_populates="capability",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class RoleCapability(Base):
    __tablename__ = "authz_role_capability"

    role_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("authz_role.id", ondelete="CASCADE"),
        primary_key=True,
    )
    capability_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("authz_capability.id", ondelete="CASCADE"),
        primary_key=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    role: Mapped[Role] = relationship("Role", back_populates="capabilities")
    capability: Mapped[Capability] = relationship("Capability", back_populates="roles")

    __table_args__ = (UniqueConstraint("role_id", "capability_id", name="uq_authz_role_capability"),)
