"""
Payment Reconciliation Backend — Launcher

Usage:
    python run.py                 # API server
    python run.py serve --port 8000 --reload
    python run.py worker          # Scheduled tasks: expiry checks, sweeps, notifications
    python run.py worker --once   # Run due tasks once and exit
"""
import argparse
import logging
import signal
import threading

import uvicorn

from payrecon.config import get_settings
from payrecon.database import SessionLocal, init_db
from payrecon.gateways import build_adapters, close_adapters
from payrecon.logging_config import configure_logging
from payrecon.services.task_scheduler import TaskRunner
from payrecon.services.tasks import build_task_handlers, register_recurring_tasks

logger = logging.getLogger("payrecon.worker")


def serve(args):
    settings = get_settings()
    print(f"""
    ========================================================
      {settings.APP_NAME} -- Backend Server
      API:     http://{args.host}:{args.port}
      Docs:    http://localhost:{args.port}/docs
      ReDoc:   http://localhost:{args.port}/redoc
    ========================================================
    """)

    uvicorn.run(
        "payrecon.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        workers=args.workers,
        log_level="info",
    )


def worker(args):
    settings = get_settings()
    configure_logging(settings, filename="worker.log")
    init_db()

    with SessionLocal() as db:
        register_recurring_tasks(db, settings)

    adapters = build_adapters(settings)
    runner = TaskRunner(SessionLocal, build_task_handlers(adapters), settings)
    try:
        if args.once:
            report = runner.run_due()
            logger.info("Ran %d task(s): %d ok, %d failed", report.claimed, report.succeeded, report.failed)
            return

        stop_event = threading.Event()
        for sig in (signal.SIGINT, signal.SIGTERM):
            signal.signal(sig, lambda *_: stop_event.set())
        runner.run_forever(stop_event)
    finally:
        close_adapters(adapters)


def main():
    parser = argparse.ArgumentParser(description="Payment Reconciliation Backend")
    subparsers = parser.add_subparsers(dest="command")

    serve_parser = subparsers.add_parser("serve", help="Run the API server (default)")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind host (default: 0.0.0.0)")
    serve_parser.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve_parser.add_argument("--reload", action="store_true", help="Enable hot reload for development")
    serve_parser.add_argument("--workers", type=int, default=1, help="Number of workers (default: 1)")

    worker_parser = subparsers.add_parser("worker", help="Run the scheduled task worker")
    worker_parser.add_argument("--once", action="store_true", help="Run due tasks once and exit")

    args = parser.parse_args()
    if args.command == "worker":
        worker(args)
    else:
        if args.command is None:
            args = serve_parser.parse_args([])
        serve(args)


if __name__ == "__main__":
    main()
