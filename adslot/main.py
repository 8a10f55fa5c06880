"""
Main FastAPI application for the ad slot platform.
Serves health, cash, keywords, slots, guarantee, refunds, inquiries, search, admin, and metrics.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from adslot.api.routes import admin, cash, guarantee, health, inquiries, keywords, refunds, search, slots
from adslot.core.config import settings
from adslot.core.errors import DomainError
from adslot.core.logging import configure_logging
from adslot.utils.metrics import router as metrics_router

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Ad Slot Platform API",
    description="Keyword ad slots, guarantee negotiation, refunds, and support inquiries",
    version="1.0.0",
)

# CORS
origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
if not origins:
    origins = ["http://localhost:3000", "http://127.0.0.1:3000"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    logger.info(
        "domain_error",
        extra={"path": request.url.path, "error_code": exc.code, "status_code": exc.status_code},
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Routers
app.include_router(health.router, tags=["health"])
app.include_router(cash.router)
app.include_router(keywords.router)
app.include_router(slots.router)
app.include_router(guarantee.router)
app.include_router(refunds.router)
app.include_router(inquiries.router)
app.include_router(search.router)
app.include_router(admin.router)
app.include_router(metrics_router)
