"""FastAPI application factory"""

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from wallet_transfer.api.middleware import RequestIDMiddleware, MetricsMiddleware
from wallet_transfer.api.v1 import transfers, recipients, reconciliation
from wallet_transfer.infrastructure.observability.logging import setup_logging
from wallet_transfer.config import settings

# Setup structured logging
setup_logging(settings.log_level)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Wallet Transfer Service",
        description="Transfer orchestration: recipient verification, PIN-gated debit, routing and compensating refunds",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(transfers.router, prefix="/v1", tags=["transfers"])
    app.include_router(recipients.router, prefix="/v1", tags=["recipients"])
    app.include_router(reconciliation.router, prefix="/v1", tags=["reconciliation"])

    return app


app = create_app()
