import asyncio
import os

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from atende.config import settings
from atende.database import get_db
from atende.logging_config import get_logger, setup_logging
from atende.models import Conversation, Message, PendingTrigger, Tenant
from atende.routers import admin, operator, webhook
from atende.services.debounce_service import get_scheduler

setup_logging(settings.log_level)

app = FastAPI(
    title="Atende API",
    description="Conversational automation engine for WhatsApp customer service",
    version="0.1.0",
)

cors_env = os.environ.get("CORS_ALLOW_ORIGINS", "*")
cors_origins = [origin.strip() for origin in cors_env.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(webhook.router)
app.include_router(operator.router)
app.include_router(admin.router)

sweeper_logger = get_logger("trigger_sweeper")
_sweeper_task: asyncio.Task | None = None


def _is_sweeper_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return settings.sweeper_enabled


async def _trigger_sweeper_loop() -> None:
    """Fires debounce triggers whose in-process timer was lost (restart, other instance)."""
    scheduler = get_scheduler()
    while True:
        try:
            await asyncio.sleep(max(settings.sweeper_interval_seconds, 0.1))
            fired = await scheduler.sweep()
            if fired:
                sweeper_logger.info("Trigger sweeper fired", extra={"context": {"fired": fired}})
        except asyncio.CancelledError:
            break
        except Exception as exc:
            sweeper_logger.error(
                "Trigger sweeper loop failed",
                extra={"context": {"error": str(exc)}},
            )


@app.on_event("startup")
async def start_trigger_sweeper() -> None:
    global _sweeper_task
    if not _is_sweeper_enabled():
        return
    if _sweeper_task is None or _sweeper_task.done():
        _sweeper_task = asyncio.create_task(_trigger_sweeper_loop())
        sweeper_logger.info("Trigger sweeper started")


@app.on_event("shutdown")
async def stop_trigger_sweeper() -> None:
    global _sweeper_task
    if _sweeper_task is None:
        return
    _sweeper_task.cancel()
    try:
        await _sweeper_task
    except asyncio.CancelledError:
        pass


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/db-check")
def db_check(db: Session = Depends(get_db)):
    return {
        "status": "ok",
        "tenants": db.query(Tenant).count(),
        "conversations": db.query(Conversation).count(),
        "messages": db.query(Message).count(),
        "pending_triggers": db.query(PendingTrigger).filter(PendingTrigger.processed.is_(False)).count(),
    }
