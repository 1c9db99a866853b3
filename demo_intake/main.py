from __future__ import annotations

from typing import Optional

from fastapi import FastAPI

from demo_intake.container import Services, build_services
from demo_intake.logging import configure_logging
from demo_intake.settings import get_settings

from demo_intake.api.routes_debug import router as debug_router
from demo_intake.api.routes_demo import router as demo_router
from demo_intake.api.routes_health import router as health_router
from demo_intake.api.routes_webhooks_tavus import router as tavus_router


def create_app(services: Optional[Services] = None) -> FastAPI:
    settings = services.settings if services is not None else get_settings()
    configure_logging(settings.LOG_LEVEL)

    # Validate configuration and fail fast if critical errors found
    settings.validate_and_fail_fast()

    app = FastAPI(
        title="Demo Intake Service",
        docs_url="/docs",
        redoc_url=None,
        openapi_url="/openapi.json",
    )
    app.state.services = services if services is not None else build_services(settings)

    app.include_router(health_router)
    app.include_router(tavus_router)
    app.include_router(demo_router)
    app.include_router(debug_router)
    return app


app = create_app()
