"""Background scheduler for the periodic stock scans.

Runs the stock level check every hour and the expiry check every day at
midnight (UTC). State is in-process only; nothing survives a restart.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from . import alerts
from .database import SessionLocal
from .events import bus

logger = logging.getLogger(__name__)

HOURLY = timedelta(hours=1)
DAILY = timedelta(days=1)


def next_midnight(now: datetime) -> datetime:
    return datetime.combine(now.date() + timedelta(days=1), datetime.min.time())


class TaskScheduler:
    """Lightweight asyncio-based task scheduler."""

    def __init__(self, tick_seconds: int = 60):
        self.tick_seconds = tick_seconds
        self._tasks: Dict[str, Dict[str, Any]] = {}
        self._running = False
        self._task_handle: Optional[asyncio.Task] = None

    def add_task(self, name: str, func: Callable, interval: timedelta, first_run: Optional[datetime] = None):
        self._tasks[name] = {
            "func": func,
            "interval": interval,
            "next_run": first_run or datetime.utcnow() + interval,
            "last_run": None,
            "run_count": 0,
            "last_error": None,
        }
        logger.info(f"Scheduled task '{name}' every {int(interval.total_seconds())}s")

    def remove_task(self, name: str):
        self._tasks.pop(name, None)

    async def run_pending(self, now: Optional[datetime] = None):
        """Run every task that is due. Failures are recorded, not raised."""
        now = now or datetime.utcnow()
        for name, task in list(self._tasks.items()):
            if now < task["next_run"]:
                continue
            try:
                if asyncio.iscoroutinefunction(task["func"]):
                    await task["func"]()
                else:
                    task["func"]()
                task["last_error"] = None
                logger.debug(f"Scheduled task '{name}' completed")
            except Exception as e:
                task["last_error"] = str(e)
                logger.error(f"Scheduled task '{name}' failed: {e}")
            task["last_run"] = now
            task["run_count"] += 1
            task["next_run"] = now + task["interval"]

    async def _loop(self):
        logger.info("Task scheduler started")
        while self._running:
            await self.run_pending()
            await asyncio.sleep(self.tick_seconds)

    def start(self):
        self._running = True
        self._task_handle = asyncio.create_task(self._loop())

    def stop(self):
        self._running = False
        if self._task_handle:
            self._task_handle.cancel()
            self._task_handle = None
        logger.info("Task scheduler stopped")

    def get_status(self) -> Dict[str, Any]:
        return {
            name: {
                "last_run": t["last_run"].isoformat() if t["last_run"] else None,
                "next_run": t["next_run"].isoformat(),
                "interval_seconds": int(t["interval"].total_seconds()),
                "run_count": t["run_count"],
                "last_error": t["last_error"],
            }
            for name, t in self._tasks.items()
        }


def run_stock_level_check():
    db = SessionLocal()
    try:
        alerts.check_stock_levels(db, bus)
    finally:
        db.close()


def run_expiry_check():
    db = SessionLocal()
    try:
        alerts.check_expiry_dates(db, bus)
    finally:
        db.close()


def build_scheduler() -> TaskScheduler:
    now = datetime.utcnow()
    task_scheduler = TaskScheduler()
    task_scheduler.add_task("stock_level_check", run_stock_level_check, HOURLY)
    task_scheduler.add_task("expiry_check", run_expiry_check, DAILY, first_run=next_midnight(now))
    return task_scheduler


scheduler = build_scheduler()
