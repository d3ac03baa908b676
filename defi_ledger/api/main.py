"""FastAPI application factory"""

from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.responses import Response

from defi_ledger.api.middleware import RequestIDMiddleware, MetricsMiddleware
from defi_ledger.api.v1 import credit, loans, webhooks
from defi_ledger.infrastructure.observability.logging import setup_logging
from defi_ledger.infrastructure.database.session import get_db
from defi_ledger.config import settings

# Setup structured logging
setup_logging(settings.log_level)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="DeFi Ledger Settlement Engine",
        description="Webhook settlement, credit scoring and collateralized lending",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # Health check: the store is the only hard dependency, Redis is optional
    @app.get("/health")
    def health_check(db: Session = Depends(get_db)):
        try:
            db.execute(text("SELECT 1"))
        except SQLAlchemyError:
            return JSONResponse(
                status_code=503,
                content={"status": "degraded", "service": settings.service_name, "database": "unavailable"},
            )
        return {"status": "ok", "service": settings.service_name, "database": "ok"}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(webhooks.router, prefix="/v1", tags=["webhooks"])
    app.include_router(credit.router, prefix="/v1", tags=["credit"])
    app.include_router(loans.router, prefix="/v1", tags=["loans"])

    return app


app = create_app()
