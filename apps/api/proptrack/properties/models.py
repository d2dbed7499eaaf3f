from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from proptrack.core.database import Base, new_id, utcnow


class Property(Base):
    __tablename__ = "properties"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    address: Mapped[str | None] = mapped_column(String(512), nullable=True)
    manager_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    owners: Mapped[list[PropertyOwner]] = relationship(
        "PropertyOwner",
        back_populates="property",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    units: Mapped[list[Unit]] = relationship(
        "Unit",
        back_populates="property",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class PropertyOwner(Base):
    __tablename__ = "property_owners"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    property_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("properties.id", ondelete="CASCADE"),
        nullable=False,
    )
    owner_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id"), nullable=False)

    property: Mapped[Property] = relationship("Property", back_populates="owners")

    __table_args__ = (
        UniqueConstraint("property_id", "owner_id", name="uq_property_owner"),
        Index("ix_property_owners_owner", "owner_id"),
    )


class Unit(Base):
    __tablename__ = "units"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    property_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("properties.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    unit_number: Mapped[str] = mapped_column(String(32), nullable=False)

    property: Mapped[Property] = relationship("Property", back_populates="units")
    tenancies: Mapped[list[UnitTenant]] = relationship(
        "UnitTenant",
        back_populates="unit",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class UnitTenant(Base):
    __tablename__ = "unit_tenants"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    unit_id: Mapped[str] = mapped_column(String(64), ForeignKey("units.id", ondelete="CASCADE"), nullable=False)
    tenant_id: Mapped[str] = mapped_column(String(64), ForeignKey("users.id"), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")

    unit: Mapped[Unit] = relationship("Unit", back_populates="tenancies")

    __table_args__ = (Index("ix_unit_tenants_lookup", "unit_id", "tenant_id", "is_active"),)
