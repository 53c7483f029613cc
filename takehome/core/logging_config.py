"""
Structured logging configuration.
JSON lines on stdout for centralized log management.
"""
import json
import logging
import logging.config
import sys
import time
import uuid
from datetime import datetime, timezone

from starlette.datastructures import Headers

from takehome.core.config import settings

# LogRecord attributes that are not user-supplied ``extra`` fields
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None)).keys()
) | {"message", "asctime", "taskName"}


class CustomJSONFormatter(logging.Formatter):
    """
    Custom JSON formatter for structured logging
    """

    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
            "application": "takehome-api",
            "environment": settings.environment,
        }

        # Anything passed through ``extra=`` (request_id, submission_id, ...)
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and key not in log_record:
                log_record[key] = value

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_record, default=str)


def setup_logging(level: str | None = None):
    """
    Configure root and application loggers
    """
    level = level or settings.log_level

    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": CustomJSONFormatter,
            },
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "standard" if settings.debug else "json",
                "stream": sys.stdout,
            },
        },
        "loggers": {
            "": {  # Root logger
                "handlers": ["console"],
                "level": "WARNING",
            },
            "api.requests": {"handlers": ["console"], "level": level, "propagate": False},
            "errors": {"handlers": ["console"], "level": level, "propagate": False},
            "submissions": {"handlers": ["console"], "level": level, "propagate": False},
            "interviews": {"handlers": ["console"], "level": level, "propagate": False},
            "webhooks": {"handlers": ["console"], "level": level, "propagate": False},
            "llm": {"handlers": ["console"], "level": level, "propagate": False},
            "uvicorn": {"handlers": ["console"], "level": "WARNING", "propagate": False},
            "sqlalchemy": {"handlers": ["console"], "level": "WARNING", "propagate": False},
        },
    }

    logging.config.dictConfig(logging_config)


def client_ip_from_headers(headers, fallback: str | None = None) -> str | None:
    """First X-Forwarded-For hop, then X-Real-IP, then the socket peer."""
    forwarded_for = headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return headers.get("x-real-ip") or fallback


def token_prefix(token: str | None) -> str:
    """Shorten a candidate token for log lines; the full value is a credential."""
    if not token:
        return ""
    return token[:8]


class RequestLoggingMiddleware:
    """
    Middleware to log all HTTP requests with structured data
    """

    def __init__(self, app):
        self.app = app
        self.logger = logging.getLogger("api.requests")

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = str(uuid.uuid4())
        start_time = time.perf_counter()
        method = scope.get("method", "")
        path = self._redact_path(scope.get("path", ""))

        peer = scope["client"][0] if scope.get("client") else None
        client_ip = client_ip_from_headers(Headers(scope=scope), peer) or "unknown"

        self.logger.debug(
            "HTTP request started",
            extra={
                "request_id": request_id,
                "method": method,
                "path": path,
                "client_ip": client_ip,
            }
        )

        async def send_wrapper(message):
            if message["type"] == "http.response.start":
                status_code = message["status"]
                duration_ms = round((time.perf_counter() - start_time) * 1000, 2)

                log_level = logging.INFO
                if status_code >= 500:
                    log_level = logging.ERROR
                elif status_code >= 400:
                    log_level = logging.WARNING

                self.logger.log(
                    log_level,
                    "HTTP request completed",
                    extra={
                        "request_id": request_id,
                        "method": method,
                        "path": path,
                        "status_code": status_code,
                        "duration_ms": duration_ms,
                        "client_ip": client_ip,
                    }
                )

            await send(message)

        await self.app(scope, receive, send_wrapper)

    @staticmethod
    def _redact_path(path: str) -> str:
        # /submissions/token/<64 hex>/start -> /submissions/token/<prefix>.../start
        parts = path.split("/")
        for i, part in enumerate(parts):
            if i > 0 and parts[i - 1] == "token" and len(part) > 8:
                parts[i] = token_prefix(part) + "..."
        return "/".join(parts)


def setup_production_logging():
    setup_logging()
    logging.getLogger("api.requests").info(
        "Application logging initialized",
        extra={"event": "logging_initialized", "log_level": settings.log_level}
    )
