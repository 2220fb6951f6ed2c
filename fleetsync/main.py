"""FleetSync API — main application entry point."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fleetsync.core.config import settings
from fleetsync.core.logging import configure_logging
from fleetsync.api.routes import (
    aircraft_types,
    config,
    exports,
    health,
    imports,
    master_data,
)
from fleetsync.services.committer import Committer
from fleetsync.services.type_normalizer import TypeNormalizer

configure_logging(settings.LOG_LEVEL)

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=(
        "Master-data reconciliation for aircraft and customer records. "
        "Validate is a preview; commit is the only write."
    ),
)

# Process-wide collaborators, handed to routes through request.app.state
app.state.type_normalizer = TypeNormalizer()
app.state.committer = Committer(app.state.type_normalizer)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes
app.include_router(health.router, tags=["health"])
app.include_router(config.router, prefix="/api/v1/config", tags=["config"])
app.include_router(imports.router, prefix="/api/v1/import", tags=["import"])
app.include_router(exports.router, prefix="/api/v1/export", tags=["export"])
app.include_router(master_data.router, prefix="/api/v1/master-data", tags=["master-data"])
app.include_router(aircraft_types.router, prefix="/api/v1/aircraft-types", tags=["aircraft-types"])
