"""
Importable entity configuration.

Each master-data kind (aircraft, customers) is described here: its natural
key, the logical fields accepted on import, the header aliases that map
foreign column names onto those fields, and the per-field rules the
FieldValidator enforces. Adding a column is a config change, not a code
change in the parser.

Logical field names are the camelCase names used on the wire and in CSV
headers; `column` is the ORM attribute the value is written to.
"""

from dataclasses import dataclass, field

SOURCE_VALUES = ["inferred", "seed", "imported", "confirmed"]


@dataclass(frozen=True)
class FieldDef:
    """Definition of one importable field."""
    name: str
    label: str
    column: str | None = None
    aliases: tuple[str, ...] = ()
    data_type: str = "string"  # string, boolean, enum
    required: bool = False
    enum_values: list[str] | None = None
    pattern: str | None = None
    max_length: int | None = None
    # False for columns that are accepted and validated but never written
    # from an import (source, isActive, derived values)
    applied: bool = True
    description: str = ""


@dataclass(frozen=True)
class EntityConfig:
    """Configuration for an importable master-data kind."""
    name: str
    label: str
    plural_label: str
    slug: str
    natural_key: str
    fields: list[FieldDef] = field(default_factory=list)
    # Comparable form used for fuzzy scoring, see normalization.COMPARABLE_FORMS
    comparable: str = "alphanumeric"

    @property
    def required_fields(self) -> list[FieldDef]:
        return [f for f in self.fields if f.required]

    @property
    def applied_fields(self) -> list[FieldDef]:
        return [f for f in self.fields if f.applied and f.column]

    @property
    def export_columns(self) -> list[str]:
        return [f.name for f in self.fields]

    def get_field(self, name: str) -> FieldDef | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def header_lookup(self) -> dict[str, str]:
        """Lowercased header name or alias → logical field name."""
        lookup: dict[str, str] = {}
        for f in self.fields:
            for alias in f.aliases:
                lookup.setdefault(alias.lower(), f.name)
        # Field names win over another field's alias
        for f in self.fields:
            lookup[f.name.lower()] = f.name
        return lookup


# ─── Entity Registry ───────────────────────────────────────────

ENTITIES: dict[str, EntityConfig] = {}


def register_entity(config: EntityConfig) -> EntityConfig:
    """Register an entity configuration."""
    ENTITIES[config.name] = config
    return config


def get_entity_config(name: str) -> EntityConfig | None:
    """Look up an entity by name or URL slug."""
    if name in ENTITIES:
        return ENTITIES[name]
    for cfg in ENTITIES.values():
        if cfg.slug == name:
            return cfg
    return None


_SOURCE_FIELD = FieldDef(
    "source", "Source",
    data_type="enum",
    enum_values=SOURCE_VALUES,
    applied=False,
    description="Informational on import; imports never set provenance.",
)
_ACTIVE_FIELD = FieldDef(
    "isActive", "Active",
    aliases=("is_active", "active"),
    data_type="boolean",
    applied=False,
    description="Informational on import; deactivation is not an import operation.",
)


# ─── Customers ─────────────────────────────────────────────────

register_entity(EntityConfig(
    name="customer",
    label="Customer",
    plural_label="Customers",
    slug="customers",
    natural_key="name",
    comparable="organization",
    fields=[
        FieldDef("name", "Name", "name", aliases=("title", "customer", "customer_name"),
                 required=True, max_length=255),
        FieldDef("displayName", "Display Name", "display_name",
                 aliases=("display_name", "display"), max_length=255),
        FieldDef("color", "Color", "color", aliases=("colour",),
                 pattern=r"^#[0-9A-Fa-f]{6}$"),
        FieldDef("colorText", "Text Color", "color_text",
                 aliases=("color_text", "textcolor", "text_color"),
                 pattern=r"^#[0-9A-Fa-f]{6}$"),
        FieldDef("country", "Country", "country", max_length=100),
        FieldDef("established", "Established", "established", max_length=50),
        FieldDef("groupParent", "Group / Parent", "group_parent",
                 aliases=("group", "group_parent", "parent"), max_length=255),
        FieldDef("baseAirport", "Base Airport", "base_airport",
                 aliases=("base", "base_airport", "hub"), max_length=10),
        FieldDef("website", "Website", "website", max_length=500),
        FieldDef("mocPhone", "MOC Phone", "moc_phone",
                 aliases=("mocphone", "moc_phone", "moc"), max_length=50),
        FieldDef("iataCode", "IATA", "iata_code", aliases=("iata", "iata_code"),
                 pattern=r"^[A-Za-z0-9]{2}$"),
        FieldDef("icaoCode", "ICAO", "icao_code", aliases=("icao", "icao_code"),
                 pattern=r"^[A-Za-z]{3}$"),
        _SOURCE_FIELD,
        _ACTIVE_FIELD,
    ],
))


# ─── Aircraft ──────────────────────────────────────────────────

register_entity(EntityConfig(
    name="aircraft",
    label="Aircraft",
    plural_label="Aircraft",
    slug="aircraft",
    natural_key="registration",
    comparable="alphanumeric",
    fields=[
        FieldDef("registration", "Registration", "registration",
                 aliases=("title", "reg", "tail", "tail_number", "tailnumber"),
                 required=True, pattern=r"^[A-Za-z0-9][A-Za-z0-9-]*$", max_length=20),
        FieldDef("rawType", "Type", "raw_type",
                 aliases=("type", "model", "raw_type", "aircraft_model", "field_5"),
                 required=True, max_length=100,
                 description="Free-text equipment type; canonicalized on import."),
        FieldDef("aircraftType", "Canonical Type",
                 aliases=("aircraft_type", "canonical_type"),
                 applied=False,
                 description="Derived from rawType; ignored on import."),
        FieldDef("operator", "Operator", "operator_raw",
                 aliases=("operator_name", "airline", "customer", "field_2"),
                 required=True, max_length=255),
        FieldDef("manufacturer", "Manufacturer", "manufacturer",
                 aliases=("mfr", "field_4"), max_length=100),
        FieldDef("engineType", "Engine", "engine_type",
                 aliases=("engine", "engine_type", "engines"), max_length=100),
        FieldDef("serialNumber", "Serial Number", "serial_number",
                 aliases=("msn", "serial", "serial_number"), max_length=50),
        FieldDef("lessor", "Lessor", "lessor", aliases=("field_1",), max_length=255),
        FieldDef("category", "Category", "category",
                 aliases=("field_3", "cargo_config"), max_length=50),
        _SOURCE_FIELD,
        _ACTIVE_FIELD,
    ],
))
