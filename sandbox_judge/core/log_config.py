"""Logging setup shared by the CLI and embedding services"""

import logging
from pathlib import Path
from typing import List

from sandbox_judge.config import Settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(settings: Settings) -> None:
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if settings.LOG_FILE:
        # Ensure log directory exists
        Path(settings.LOG_FILE).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(settings.LOG_FILE))

    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
    )
