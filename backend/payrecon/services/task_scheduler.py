"""
Task Scheduler — Durable delayed and recurring work backed by scheduled_tasks.

Scheduling writes a row; a worker process polls for due rows, claims them
with a conditional UPDATE and a lease, and dispatches to registered handlers.
A claimed task whose lease expires (worker crash) becomes claimable again,
so delivery is at-least-once and handlers must be idempotent.
"""
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from sqlalchemy import and_, or_, update
from sqlalchemy.orm import Session

from payrecon.config import Settings, get_settings
from payrecon.models.enums import TaskStatus
from payrecon.models.scheduled_task import ScheduledTask

logger = logging.getLogger(__name__)

TaskHandler = Callable[[Session, Dict[str, Any]], Any]


@dataclass
class RunReport:
    claimed: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: list = field(default_factory=list)


class TaskScheduler:
    """Scheduling primitives over the caller's session."""

    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()

    def schedule_at(
        self,
        task_name: str,
        payload: Dict[str, Any],
        run_at: datetime,
        dedupe_key: Optional[str] = None,
        max_attempts: int = 3,
    ) -> ScheduledTask:
        """Schedule a one-off task. Re-scheduling the same dedupe key re-arms the existing row."""
        task = self._by_key(dedupe_key) if dedupe_key else None
        if task is None:
            task = ScheduledTask(
                task_name=task_name,
                payload=payload,
                dedupe_key=dedupe_key,
                run_at=run_at,
                status=TaskStatus.PENDING.value,
                attempts=0,
                max_attempts=max_attempts,
            )
            self.db.add(task)
        elif task.status != TaskStatus.RUNNING.value:
            task.task_name = task_name
            task.payload = payload
            task.run_at = run_at
            task.status = TaskStatus.PENDING.value
            task.attempts = 0
            task.max_attempts = max_attempts
            task.last_error = None
            task.completed_at = None

        self.db.commit()
        self.db.refresh(task)
        logger.debug("Scheduled %s (%s) at %s", task_name, dedupe_key or task.id, run_at.isoformat())
        return task

    def schedule_recurring(
        self,
        task_name: str,
        payload: Dict[str, Any],
        interval: timedelta,
        dedupe_key: Optional[str] = None,
        start_at: Optional[datetime] = None,
    ) -> ScheduledTask:
        """Upsert a recurring task; one row per dedupe key, existing schedule kept."""
        key = dedupe_key or f"recurring:{task_name}"
        seconds = int(interval.total_seconds())
        task = self._by_key(key)
        if task is None:
            task = ScheduledTask(
                task_name=task_name,
                payload=payload,
                dedupe_key=key,
                run_at=start_at or datetime.utcnow(),
                interval_seconds=seconds,
                status=TaskStatus.PENDING.value,
                attempts=0,
            )
            self.db.add(task)
        else:
            task.task_name = task_name
            task.payload = payload
            task.interval_seconds = seconds
            if task.status in (TaskStatus.DONE.value, TaskStatus.FAILED.value):
                task.status = TaskStatus.PENDING.value
                task.run_at = start_at or datetime.utcnow()
                task.attempts = 0

        self.db.commit()
        self.db.refresh(task)
        logger.info("Recurring task %s every %ss (next run %s)", task_name, seconds, task.run_at.isoformat())
        return task

    def cancel(self, dedupe_key: str) -> bool:
        """Drop a pending task. Purely an optimization: handlers tolerate stale firings."""
        now = datetime.utcnow()
        result = self.db.execute(
            update(ScheduledTask)
            .where(ScheduledTask.dedupe_key == dedupe_key, ScheduledTask.status == TaskStatus.PENDING.value)
            .values(status=TaskStatus.DONE.value, completed_at=now, last_error="cancelled", updated_at=now)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1

    def claim_due(self, now: datetime, limit: int) -> list[ScheduledTask]:
        """Claim up to `limit` due tasks. Rows another worker claimed first are skipped."""
        claimable = or_(
            and_(ScheduledTask.status == TaskStatus.PENDING.value, ScheduledTask.run_at <= now),
            and_(ScheduledTask.status == TaskStatus.RUNNING.value, ScheduledTask.locked_until < now),
        )
        candidate_ids = [
            row.id for row in
            self.db.query(ScheduledTask.id).filter(claimable).order_by(ScheduledTask.run_at.asc()).limit(limit).all()
        ]

        lease_until = now + timedelta(seconds=self.settings.SCHEDULER_LEASE_SECONDS)
        claimed_ids = []
        for task_id in candidate_ids:
            result = self.db.execute(
                update(ScheduledTask)
                .where(ScheduledTask.id == task_id, claimable)
                .values(
                    status=TaskStatus.RUNNING.value,
                    locked_until=lease_until,
                    attempts=ScheduledTask.attempts + 1,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                claimed_ids.append(task_id)
        self.db.commit()

        if not claimed_ids:
            return []
        return (
            self.db.query(ScheduledTask)
            .filter(ScheduledTask.id.in_(claimed_ids))
            .order_by(ScheduledTask.run_at.asc())
            .all()
        )

    def complete(self, task: ScheduledTask, now: datetime) -> None:
        if task.interval_seconds:
            task.status = TaskStatus.PENDING.value
            task.run_at = now + timedelta(seconds=task.interval_seconds)
            task.attempts = 0
        else:
            task.status = TaskStatus.DONE.value
            task.completed_at = now
        task.locked_until = None
        task.last_error = None
        self.db.commit()

    def fail(self, task: ScheduledTask, error: str, now: datetime) -> None:
        """Retry with linear backoff until max_attempts; recurring tasks always re-arm."""
        task.locked_until = None
        task.last_error = error[:2000]
        if task.interval_seconds:
            task.status = TaskStatus.PENDING.value
            task.run_at = now + timedelta(seconds=task.interval_seconds)
            task.attempts = 0
        elif task.attempts >= task.max_attempts:
            task.status = TaskStatus.FAILED.value
            task.completed_at = now
            logger.error("Task %s (%s) failed after %d attempts: %s",
                         task.task_name, task.id, task.attempts, error)
        else:
            task.status = TaskStatus.PENDING.value
            task.run_at = now + timedelta(seconds=self.settings.SCHEDULER_RETRY_DELAY_SECONDS * task.attempts)
        self.db.commit()

    def _by_key(self, dedupe_key: str) -> Optional[ScheduledTask]:
        return self.db.query(ScheduledTask).filter(ScheduledTask.dedupe_key == dedupe_key).first()


class TaskRunner:
    """Polls for due tasks and dispatches them, one session per task."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        handlers: Dict[str, TaskHandler],
        settings: Optional[Settings] = None,
    ):
        self.session_factory = session_factory
        self.handlers = dict(handlers)
        self.settings = settings or get_settings()

    def run_due(self, now: Optional[datetime] = None) -> RunReport:
        now = now or datetime.utcnow()
        report = RunReport()

        with self.session_factory() as db:
            claimed = [
                (task.id, task.task_name, dict(task.payload or {}))
                for task in TaskScheduler(db, self.settings).claim_due(now, self.settings.SCHEDULER_BATCH_SIZE)
            ]
        report.claimed = len(claimed)

        for task_id, task_name, payload in claimed:
            if self._dispatch(task_id, task_name, payload, now):
                report.succeeded += 1
            else:
                report.failed += 1
                report.errors.append(task_id)
        return report

    def run_forever(self, stop_event: Optional[threading.Event] = None) -> None:
        stop_event = stop_event or threading.Event()
        logger.info("Task runner started (poll every %ss, handlers: %s)",
                    self.settings.SCHEDULER_POLL_SECONDS, ", ".join(sorted(self.handlers)))
        while not stop_event.is_set():
            try:
                report = self.run_due()
                if report.claimed:
                    logger.info("Ran %d task(s): %d ok, %d failed",
                                report.claimed, report.succeeded, report.failed)
            except Exception:
                logger.exception("Task poll failed")
            stop_event.wait(self.settings.SCHEDULER_POLL_SECONDS)
        logger.info("Task runner stopped")

    def _dispatch(self, task_id: int, task_name: str, payload: dict, now: datetime) -> bool:
        with self.session_factory() as db:
            scheduler = TaskScheduler(db, self.settings)
            handler = self.handlers.get(task_name)
            try:
                if handler is None:
                    raise LookupError(f"No handler registered for task '{task_name}'")
                handler(db, payload)
            except Exception as exc:
                db.rollback()
                logger.exception("Task %s (%s) raised", task_name, task_id)
                task = db.get(ScheduledTask, task_id)
                if task is not None:
                    scheduler.fail(task, f"{type(exc).__name__}: {exc}", now)
                return False

            task = db.get(ScheduledTask, task_id)
            if task is not None:
                scheduler.complete(task, now)
            return True
