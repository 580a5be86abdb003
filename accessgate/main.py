"""
FastAPI host for the access engine.
Serves health, access introspection and metrics.
"""
from fastapi import FastAPI

from accessgate.api.routes import access, health
from accessgate.core.logging import configure_logging
from accessgate.utils.metrics import router as metrics_router


configure_logging()

app = FastAPI(
    title="Access Gate",
    description="Authorization, view pingback and login orchestration for gated documents",
    version="0.1.0",
)

# Routers
app.include_router(health.router, tags=["health"])
app.include_router(access.router)
app.include_router(metrics_router)
