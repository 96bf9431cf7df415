"""StroyManager API."""
import logging
import platform
import time
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from api import models_users  # noqa: F401  registers users/user_roles on Base.metadata
from api.config import settings
from api.db import SessionLocal
from api.endpoints_ai_providers import router as ai_providers_router
from api.endpoints_analytics import router as analytics_router
from api.endpoints_attendance import router as attendance_router
from api.endpoints_auth import router as auth_router
from api.endpoints_clients import router as clients_router
from api.endpoints_dashboard import router as dashboard_router
from api.endpoints_expenses import router as expenses_router
from api.endpoints_payments import router as payments_router
from api.endpoints_projects import router as projects_router
from api.endpoints_reports import router as reports_router
from api.endpoints_settings import router as settings_router
from api.endpoints_skills import router as skills_router
from api.endpoints_telegram import router as telegram_router
from api.endpoints_workers import router as workers_router
from api.routers.chat import router as chat_router
from api.utils.audit import record_metric

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

_started_at = time.time()

app = FastAPI(title="StroyManager API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ROUTE_KIND_OVERRIDES = {
    "/api/chat/query": "chat.query",
    "/api/telegram/webhook": "telegram.webhook",
    "/api/reports/export": "reports.export",
    "/health": "health",
}


@app.middleware("http")
async def latency_metrics(request: Request, call_next):
    t0 = time.perf_counter()
    response = None
    try:
        response = await call_next(request)
        return response
    finally:
        dt_ms = round((time.perf_counter() - t0) * 1000.0, 2)
        path = request.url.path
        kind = ROUTE_KIND_OVERRIDES.get(path, "http.other")
        status_code = getattr(response, "status_code", 0) if response else 500
        record_metric(kind, {"path": path, "latency_ms": dt_ms, "status": status_code})


app.include_router(auth_router)
app.include_router(workers_router)
app.include_router(attendance_router)
app.include_router(payments_router)
app.include_router(projects_router)
app.include_router(analytics_router)
app.include_router(clients_router)
app.include_router(expenses_router)
app.include_router(skills_router)
app.include_router(dashboard_router)
app.include_router(reports_router)
app.include_router(settings_router)
app.include_router(ai_providers_router)
app.include_router(chat_router)
app.include_router(telegram_router)


@app.get("/health")
def health():
    """Health check with uptime and a database ping."""
    db_ok = True
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Health check DB ping failed: {e}")
        db_ok = False
    finally:
        db.close()

    return {
        "service": "api",
        "status": "ok" if db_ok else "degraded",
        "ok": db_ok,
        "uptime_s": round(time.time() - _started_at, 3),
        "version": app.version,
        "ts": datetime.now(timezone.utc).isoformat(),
        "python": platform.python_version(),
        "env": {
            "DB_PATH": settings.DB_PATH,
            "TZ": settings.TZ,
        },
    }
