"""
Seed data script — reference data for a fresh database.

Creates:
  - 1 admin user
  - 8 customers (airlines and freight operators) with badge colours
  - the default aircraft type mapping table
  - 12 aircraft spread across those customers

Seeded records carry source="seed": any later import outranks them, and
a confirm action outranks the import.

Usage:
  python -m scripts.seed_data

  Or import and call seed_reference_data() with a database session.
"""

import asyncio
import uuid

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Ensure models are imported so Base.metadata is populated
from fleetsync.models import Aircraft, Customer, User
from fleetsync.core.config import settings
from fleetsync.core.database import Base
from fleetsync.services.type_normalizer import MappingRule, MappingSnapshot, install_default_mappings

SEED_SOURCE = "seed"

# (name, display name, colour, country, IATA, ICAO)
CUSTOMERS = [
    ("Atlas Air", "Atlas", "#3B82F6", "United States", "5Y", "GTI"),
    ("Kalitta Air", "Kalitta", "#EF4444", "United States", "K4", "CKS"),
    ("Western Global Airlines", "Western Global", "#22C55E", "United States", "KD", "WGN"),
    ("Cargolux Airlines International", "Cargolux", "#8B5CF6", "Luxembourg", "CV", "CLX"),
    ("AeroLogic", "AeroLogic", "#EABC42", "Germany", "3S", "BOX"),
    ("Amerijet International", "Amerijet", "#F97316", "United States", "M6", "AJT"),
    ("National Airlines", "National", "#14B8A6", "United States", "N8", "NCR"),
    ("Sky Lease Cargo", "Sky Lease", "#EC4899", "United States", "GG", "KYE"),
]

# (registration, raw type, operator name, manufacturer, engine, serial)
AIRCRAFT = [
    ("N408MC", "B747-47UF", "Atlas Air", "Boeing", "PW4056", "29261"),
    ("N859GT", "B747-87UF", "Atlas Air", "Boeing", "GEnx-2B67", "37570"),
    ("N322AS", "B767-300ER(BCF)", "Atlas Air", "Boeing", "CF6-80C2B6", "24007"),
    ("N774CK", "B747-4B5F", "Kalitta Air", "Boeing", "CF6-80C2B1F", "26408"),
    ("N774CK2", "B777-F", "Kalitta Air", "Boeing", "GE90-110B1L", "66197"),
    ("N344KD", "MD-11F", "Western Global Airlines", "McDonnell Douglas", "CF6-80C2D1F", "48434"),
    ("LX-VCF", "B747-8R7F", "Cargolux Airlines International", "Boeing", "GEnx-2B67", "35811"),
    ("D-AALA", "B777-FZN", "AeroLogic", "Boeing", "GE90-110B1L", "36001"),
    ("N739AX", "B767-323ER(BDSF)", "Amerijet International", "Boeing", "CF6-80C2B6", "25199"),
    ("N952CA", "B747-428(BCF)", "National Airlines", "Boeing", "CF6-80C2B1F", "25238"),
    ("N567CA", "B757-2Y0(PCF)", "National Airlines", "Boeing", "RB211-535E4", "26153"),
    ("N907AR", "B737-4B7(SF)", "Sky Lease Cargo", "Boeing", "CFM56-3C1", "24933"),
]


async def seed_reference_data(db: AsyncSession) -> dict[str, uuid.UUID]:
    """Populate an empty database. Returns ids keyed by name/registration."""
    ids: dict[str, uuid.UUID] = {}

    admin = User(email="admin@fleetsync.local", name="System Administrator")
    db.add(admin)
    await db.flush()
    ids["admin"] = admin.id

    for sort_order, (name, display, color, country, iata, icao) in enumerate(CUSTOMERS):
        customer = Customer(
            name=name,
            display_name=display,
            color=color,
            color_text="#ffffff",
            country=country,
            iata_code=iata,
            icao_code=icao,
            sort_order=sort_order,
            source=SEED_SOURCE,
            is_active=True,
            created_by=admin.id,
            updated_by=admin.id,
        )
        db.add(customer)
        await db.flush()
        ids[name] = customer.id

    mappings = await install_default_mappings(db)
    snapshot = MappingSnapshot([MappingRule.from_row(m) for m in mappings])

    for registration, raw_type, operator, manufacturer, engine, serial in AIRCRAFT:
        aircraft = Aircraft(
            registration=registration,
            raw_type=raw_type,
            aircraft_type=snapshot.normalize(raw_type).canonical,
            operator_raw=operator,
            operator_id=ids[operator],
            operator_match_confidence=1.0,
            manufacturer=manufacturer,
            engine_type=engine,
            serial_number=serial,
            source=SEED_SOURCE,
            is_active=True,
            created_by=admin.id,
            updated_by=admin.id,
        )
        db.add(aircraft)
        await db.flush()
        ids[registration] = aircraft.id

    print("Seeded reference data:")
    print(f"  Admin user:    {ids['admin']}")
    print(f"  Customers:     {len(CUSTOMERS)}")
    print(f"  Type mappings: {len(mappings)}")
    print(f"  Aircraft:      {len(AIRCRAFT)}")

    return ids


async def main():
    engine = create_async_engine(settings.DATABASE_URL, echo=False)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with session_factory() as session:
        async with session.begin():
            await seed_reference_data(session)

    await engine.dispose()
    print("\nSeed complete.")


if __name__ == "__main__":
    asyncio.run(main())
