# careportal/main.py
import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from careportal.api.routes import (
    admin,
    auth,
    hardware,
    health,
    notifications,
    sops,
    tickets,
)
from careportal.core.config import settings
from careportal.core.errors import AppError
from careportal.core.logging import setup_logging, RequestIdMiddleware, log_extra

setup_logging(settings.log_level)
log = logging.getLogger("careportal")

app = FastAPI(
    title="Care Portal",
    version="0.1.0",
    docs_url="/api/docs",
    redoc_url=None,
    openapi_url="/api/openapi.json",
)

# ==== Middlewares ====
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestIdMiddleware)


# ==== Errors ====
@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        log.error("%s: %s", type(exc).__name__, exc.detail, extra=log_extra(request))
    elif exc.status_code == 403:
        log.info("forbidden: %s %s", request.method, request.url.path, extra=log_extra(request))
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    # malformed input is a plain 400 like every other domain validation failure
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


# ==== API under /api ====
app.include_router(health.router,                      prefix="/api",               tags=["health"])
app.include_router(auth.router,                        prefix="/api/auth",          tags=["auth"])
app.include_router(tickets.router,                     prefix="/api/tickets",       tags=["tickets"])
app.include_router(hardware.router,                    prefix="/api/hardware",      tags=["hardware"])
app.include_router(hardware.locations_router,          prefix="/api/locations",     tags=["locations"])
app.include_router(sops.router,                        prefix="/api/sops",          tags=["sops"])
app.include_router(admin.organizations_router,         prefix="/api/organizations", tags=["organizations"])
app.include_router(admin.router,                       prefix="/api/admin",         tags=["admin"])
app.include_router(notifications.router,               prefix="/api/notifications", tags=["notifications"])
