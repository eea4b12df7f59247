"""FastAPI application factory"""

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from lending_gateway.api.errors import register_exception_handlers
from lending_gateway.api.middleware import RequestIDMiddleware, MetricsMiddleware
from lending_gateway.api.v1 import applications, kyc, loans, offers, transactions, wallets
from lending_gateway.infrastructure.observability.logging import setup_logging
from lending_gateway.config import settings

# Setup structured logging
setup_logging(settings.log_level)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="P2P Lending Gateway",
        description="Loan applications, offers, disbursement and settlement",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(applications.router, prefix="/v1", tags=["applications"])
    app.include_router(offers.router, prefix="/v1", tags=["offers"])
    app.include_router(loans.router, prefix="/v1", tags=["loans"])
    app.include_router(transactions.router, prefix="/v1", tags=["transactions"])
    app.include_router(wallets.router, prefix="/v1", tags=["wallets"])
    app.include_router(kyc.router, prefix="/v1", tags=["kyc"])

    return app


app = create_app()
