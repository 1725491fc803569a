"""FastAPI application factory."""

from fastapi import FastAPI, Request, Response

from vilo.observability.correlation import (
    CORRELATION_ID_HEADER,
    generate_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)

from .routes import bookings, health, tasks_paystack, webhooks_paystack


def create_app() -> FastAPI:
    """Create the booking engine API with correlation-id middleware."""
    app = FastAPI(
        title="Vilo Booking Engine",
        docs_url=None,
        redoc_url=None,
    )

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        cid = request.headers.get(CORRELATION_ID_HEADER) or generate_correlation_id()
        token = set_correlation_id(cid)
        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response
        finally:
            reset_correlation_id(token)

    app.include_router(health.router)
    app.include_router(bookings.router)
    app.include_router(webhooks_paystack.router)
    app.include_router(tasks_paystack.router)

    return app
