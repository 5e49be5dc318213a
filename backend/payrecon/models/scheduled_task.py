"""
Scheduled Task Model — Durable rows backing delayed and recurring work.
A task survives process restarts; nothing is held in memory between
scheduling and firing.
"""
from datetime import datetime

from sqlalchemy import Column, String, Integer, DateTime, JSON, Text, Index

from payrecon.database import Base


class ScheduledTask(Base):
    __tablename__ = "scheduled_tasks"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)

    task_name = Column(String(64), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    dedupe_key = Column(String(160), unique=True, nullable=True)

    run_at = Column(DateTime, nullable=False)
    interval_seconds = Column(Integer, nullable=True)   # Set for recurring tasks only

    status = Column(String(16), nullable=False, default="PENDING")  # PENDING | RUNNING | DONE | FAILED
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    locked_until = Column(DateTime, nullable=True)
    last_error = Column(Text)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_scheduled_tasks_due", "status", "run_at"),
    )
