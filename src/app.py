"""Rental marketplace payments FastAPI application.

Serves the payments core over HTTP and processes commands synchronously.
Each request is wrapped in the payments domain context.

Usage:
    uvicorn app:app --app-dir src --host 0.0.0.0 --port 8000 --reload
"""

# ---------------------------------------------------------------------------
# Domain initialization
# ---------------------------------------------------------------------------
# The domain is initialized at module level so uvicorn workers share it.
# PROTEAN_ENV controls which config overlay is applied:
#   - "test"       → in-memory database, inline broker
#   - "production" → PostgreSQL at DATABASE_URL, Stripe gateway required
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from payments.domain import payments  # noqa: E402

payments.init()

# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Rental Payments API",
    description="Booking payments, gateway webhooks and refund reconciliation",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def domain_context_middleware(request: Request, call_next):
    """Push the payments domain context for each request."""
    with payments.domain_context():
        response = await call_next(request)
    return response


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from payments.api.errors import register_payment_exception_handlers  # noqa: E402
from payments.api.middleware import register_request_context  # noqa: E402
from payments.api.routes import booking_router, payment_router, webhook_router  # noqa: E402

register_payment_exception_handlers(app)
register_request_context(app)
app.include_router(payment_router)
app.include_router(webhook_router)
app.include_router(booking_router)


# ---------------------------------------------------------------------------
# Health / root
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    return JSONResponse(
        content={
            "status": "ok",
            "domains": {
                "payments": {"name": payments.name},
            },
        }
    )
