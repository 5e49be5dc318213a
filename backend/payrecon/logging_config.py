"""
Logging setup shared by the API server and the worker.
Console output plus an appending server.log under LOG_DIR.
"""
import logging
import os

from payrecon.config import Settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(settings: Settings, filename: str = "server.log") -> None:
    root = logging.getLogger()
    if getattr(root, "_payrecon_configured", False):
        return

    os.makedirs(settings.LOG_DIR, exist_ok=True)
    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    file_handler = logging.FileHandler(os.path.join(settings.LOG_DIR, filename), encoding="utf-8")
    file_handler.setFormatter(formatter)

    root.setLevel(logging.DEBUG if settings.DEBUG else settings.LOG_LEVEL.upper())
    root.addHandler(console)
    root.addHandler(file_handler)
    root._payrecon_configured = True
