"""
Main FastAPI application for SubGate.
Serves health, access decisions, cron sweeps, checkout and payment confirmation, metrics.
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from subgate.core.config import settings
from subgate.core.logging import configure_logging
from subgate.api.errors import ApiError, api_error_handler
from subgate.api.routes import access, checkout, cron, health, payments
from subgate.utils.metrics import router as metrics_router


configure_logging()

app = FastAPI(
    title="SubGate API",
    description="Content access decisions and subscription lifecycle sweeps",
    version="1.0.0",
)

# CORS
origins = settings.cors_origins_list
if not origins:
    origins = ["http://localhost:3000", "http://127.0.0.1:3000"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Merchant API errors
app.add_exception_handler(ApiError, api_error_handler)

# Routers
app.include_router(health.router, tags=["health"])
app.include_router(access.router)
app.include_router(cron.router)
app.include_router(payments.router)
app.include_router(checkout.router)
app.include_router(metrics_router)
