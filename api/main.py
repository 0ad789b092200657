"""FastAPI application - Bulk Invoice API."""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import router
from bulk_invoice import __version__
from bulk_invoice.config import load_settings
from bulk_invoice.log import setup_logging

settings = load_settings()
setup_logging(settings.log_level)

app = FastAPI(
    title="Bulk Invoice API",
    description="Draft customer invoices from unbilled time entries, with regular/overtime line items.",
    version=__version__,
)

# CORS - allow frontend origins
# Set ALLOWED_ORIGINS="*" to allow any origin
ALLOWED_ORIGINS: list[str] = settings.allowed_origins
_allow_all = "*" in ALLOWED_ORIGINS

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if _allow_all else ALLOWED_ORIGINS,
    allow_credentials=not _allow_all,  # credentials not allowed with wildcard
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    max_age=3600,
)

app.include_router(router)


@app.get("/")
async def root():
    return {
        "name": "Bulk Invoice API",
        "version": __version__,
        "docs": "/docs",
        "health": "/api/v1/health",
    }
