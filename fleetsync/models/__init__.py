"""All models must be imported here so SQLAlchemy registers them."""

from fleetsync.models.master_data import Aircraft, AircraftTypeMapping, Customer  # noqa: F401
from fleetsync.models.infrastructure import ImportLogEntry, User  # noqa: F401
