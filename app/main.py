import os
import logging
from logging.handlers import RotatingFileHandler
from datetime import datetime
from collections import deque

from fastapi import FastAPI, Depends
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request as StarletteRequest

from app.auth import init_db, ensure_migrations, require_admin
from app.attractions import seed_catalog
from app.models import User
from app.security import RateLimitMiddleware, SecurityHeadersMiddleware

# ─────────────────────────── VERSION ───────────────────────────
APP_VERSION = "0.3.0"
#
# Changelog:
# 0.3.0 - Planner API: per-device schedule, save/load against saved trips
# 0.2.0 - Attraction submissions with admin moderation, magic link sign-in
# 0.1.0 - Static catalog, trip schedule

APP_TITLE = "NYC Visitor Guide"

# ─────────────────────────── LOGGING SETUP ───────────────────────────
# Recent records kept for GET /api/logs
log_buffer = deque(maxlen=1000)

LOG_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s'
LOG_DATEFMT = '%Y-%m-%d %H:%M:%S'


class BufferHandler(logging.Handler):
    """Appends formatted records to log_buffer."""
    def emit(self, record):
        try:
            log_buffer.append({
                "time": datetime.fromtimestamp(record.created).isoformat(),
                "level": record.levelname,
                "name": record.name,
                "message": record.getMessage(),
                "formatted": self.format(record),
            })
        except Exception:
            self.handleError(record)


def configure_logging() -> logging.Logger:
    """
    Console + buffer handlers on the root logger (so uvicorn output is
    captured too), plus a rotating file when LOG_FILE is writable.
    """
    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    log_file = os.getenv("LOG_FILE", "/data/nycguide.log")
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)

    handlers = [logging.StreamHandler(), BufferHandler()]
    file_error = None
    try:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5))
    except OSError as e:
        file_error = e

    root = logging.getLogger()
    root.setLevel(level)
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.setLevel(level)
        root.addHandler(handler)

    app_logger = logging.getLogger("nycguide")
    app_logger.setLevel(level)
    if file_error:
        app_logger.warning(f"File logging disabled ({log_file}): {file_error}")
    app_logger.info(f"Logging initialized at level {level_name}")
    return app_logger


logger = configure_logging()

# ─────────────────────────── APP ───────────────────────────

app = FastAPI(title=APP_TITLE, version=APP_VERSION)


class ExceptionLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: StarletteRequest, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            logger.error(f"Unhandled error on {request.method} {request.url.path}: {e}", exc_info=True)
            raise


app.add_middleware(RateLimitMiddleware)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(ExceptionLoggingMiddleware)


@app.on_event("startup")
def _startup():
    init_db()
    ensure_migrations()
    seed_catalog()


# Mount feature routers
from app.routes_auth import router as auth_router  # noqa: E402
from app.attractions import router as attractions_router  # noqa: E402
from app.trips import router as trips_router  # noqa: E402
from app.planner import router as planner_router  # noqa: E402

app.include_router(auth_router)
app.include_router(attractions_router)
app.include_router(trips_router)
app.include_router(planner_router)


@app.get("/health")
async def health():
    return JSONResponse({"status": "ok", "version": APP_VERSION})


@app.get("/api/logs")
async def api_logs(limit: int = 200, level: str = None, admin: User = Depends(require_admin)):
    """Recent log lines from the in-memory buffer (admin only)."""
    limit = max(1, limit)
    entries = list(log_buffer)
    if level:
        entries = [e for e in entries if e["level"] == level.upper()]
    return JSONResponse({"logs": entries[-limit:]})
