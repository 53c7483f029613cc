from urllib.parse import urlparse

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException

from takehome.api.v1.routes import router as api_v1_router
from takehome.core.config import settings
from takehome.core.error_handling import (
    ApplicationError,
    application_error_handler,
    generic_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from takehome.core.logging_config import RequestLoggingMiddleware, setup_production_logging
from takehome.core.metrics import collector

app = FastAPI(
    title="Take-home Assessment API",
    version="1.0.0",
    openapi_url="/api/openapi.json",
    docs_url="/api/docs",
)

app.add_exception_handler(ApplicationError, application_error_handler)  # type: ignore[arg-type]
app.add_exception_handler(HTTPException, http_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
app.add_exception_handler(Exception, generic_exception_handler)

# CORS: local dev origins plus the candidate-facing web host and any configured extras
origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]
parsed = urlparse(settings.web_external_base_url)
if parsed.scheme and parsed.netloc:
    web_origin = f"{parsed.scheme}://{parsed.netloc}"
    if web_origin not in origins:
        origins.append(web_origin)
for o in settings.cors_allowed_origins:
    if o not in origins:
        origins.append(o)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
    max_age=86400,
)

setup_production_logging()

app.add_middleware(RequestLoggingMiddleware)


@app.get("/healthz", tags=["health"])
def healthcheck():
    return {"status": "ok", **collector.snapshot()}


app.include_router(api_v1_router, prefix="/api/v1")
