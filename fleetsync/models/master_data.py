"""
Master-data models: Customers, Aircraft, Aircraft type mappings.

Customers and aircraft are the two importable kinds. Each row carries a
natural key (customer name, aircraft registration) that is unique among
active rows, and a provenance `source` that only ever strengthens:

    inferred < seed < imported < confirmed

Type mappings are the ordered rule table the TypeNormalizer evaluates.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from fleetsync.core.database import Base


class Customer(Base):
    """An airline or other operator of aircraft."""

    __tablename__ = "customers"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.uuid_generate_v4(),
    )
    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Natural key.",
    )
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    color: Mapped[str] = mapped_column(
        String(7),
        nullable=False,
        default="#6B7280",
        comment="Badge colour, #RRGGBB.",
    )
    color_text: Mapped[str] = mapped_column(String(7), nullable=False, default="#ffffff")
    country: Mapped[str | None] = mapped_column(String(100), nullable=True)
    established: Mapped[str | None] = mapped_column(String(50), nullable=True)
    group_parent: Mapped[str | None] = mapped_column(String(255), nullable=True)
    base_airport: Mapped[str | None] = mapped_column(String(10), nullable=True)
    website: Mapped[str | None] = mapped_column(String(500), nullable=True)
    moc_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    iata_code: Mapped[str | None] = mapped_column(String(2), nullable=True)
    icao_code: Mapped[str | None] = mapped_column(String(3), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    source: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="inferred",
        comment="Provenance: inferred, seed, imported, confirmed.",
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id"),
        nullable=True,
    )
    updated_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return f"<Customer {self.name}>"


class Aircraft(Base):
    """
    One airframe, identified by registration.

    raw_type keeps the free-text type as supplied; aircraft_type is its
    canonical form at the time of the last write. operator_raw keeps the
    supplied operator text; operator_id is set only when it resolved to a
    customer.
    """

    __tablename__ = "aircraft"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.uuid_generate_v4(),
    )
    registration: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="Natural key, e.g. N12345.",
    )
    raw_type: Mapped[str] = mapped_column(String(100), nullable=False)
    aircraft_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="Unknown",
        comment="Canonical type code, e.g. B737.",
    )
    operator_raw: Mapped[str | None] = mapped_column(String(255), nullable=True)
    operator_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("customers.id", ondelete="SET NULL"),
        nullable=True,
    )
    operator_match_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    manufacturer: Mapped[str | None] = mapped_column(String(100), nullable=True)
    engine_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    serial_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    lessor: Mapped[str | None] = mapped_column(String(255), nullable=True)
    category: Mapped[str | None] = mapped_column(String(50), nullable=True)
    source: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="inferred",
        comment="Provenance: inferred, seed, imported, confirmed.",
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id"),
        nullable=True,
    )
    updated_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        Index("idx_aircraft_operator", "operator_id"),
        Index("idx_aircraft_type", "aircraft_type"),
    )

    def __repr__(self) -> str:
        return f"<Aircraft {self.registration} ({self.aircraft_type})>"


class AircraftTypeMapping(Base):
    """
    One rule of the type normalization table.

    Rules are evaluated by (priority, id): lower priority first, insertion
    order breaking ties. Patterns are globs: `*` matches any run, `?` one
    character, matching is case-insensitive over the whole string.
    """

    __tablename__ = "aircraft_type_mappings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pattern: Mapped[str] = mapped_column(String(100), nullable=False)
    canonical_type: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        Index("idx_type_mappings_order", "is_active", "priority", "id"),
    )

    def __repr__(self) -> str:
        return f"<AircraftTypeMapping {self.pattern} → {self.canonical_type} @{self.priority}>"


# Natural keys are unique among active rows only; deactivated rows keep
# their key so history survives a re-registration.
Index(
    "uq_customers_name_active",
    func.lower(Customer.name),
    unique=True,
    postgresql_where=text("is_active"),
    sqlite_where=text("is_active = 1"),
)
Index(
    "uq_aircraft_registration_active",
    func.lower(Aircraft.registration),
    unique=True,
    postgresql_where=text("is_active"),
    sqlite_where=text("is_active = 1"),
)
