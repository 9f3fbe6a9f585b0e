# streetlights/scheduler.py
import os

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.exc import SQLAlchemyError

from streetlights.config import LOG_ENGINE, RELOAD_INTERVAL_SEC
from streetlights.crud import load_state
from streetlights.db import SessionLocal
from streetlights.errors import StoreError

scheduler: AsyncIOScheduler | None = None


async def reload_state(state) -> bool:
    """One bulk load of the full row sets into `state`. Never raises."""
    try:
        async with SessionLocal() as db:
            await load_state(db, state)
    except (StoreError, SQLAlchemyError, RuntimeError, OSError) as e:
        print(f"[scheduler] reload error: {e}")
        return False
    if LOG_ENGINE:
        print(f"[scheduler] reloaded reports={len(state.reports)} officials={len(state.officials)}")
    return True


def start_scheduler(state, interval_sec: int = RELOAD_INTERVAL_SEC) -> AsyncIOScheduler:
    global scheduler
    if scheduler and scheduler.running:
        return scheduler

    scheduler = AsyncIOScheduler(
        job_defaults={"coalesce": True, "max_instances": 1},
        timezone=os.getenv("TZ", "UTC"),
    )
    scheduler.add_job(
        reload_state,
        trigger=IntervalTrigger(seconds=interval_sec),
        args=[state],
        id="streetlights_reload",
        replace_existing=True,
    )
    scheduler.start()
    print(f"[scheduler] started (every {interval_sec} s)")
    return scheduler


def stop_scheduler() -> None:
    global scheduler
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        print("[scheduler] stopped")
    scheduler = None
