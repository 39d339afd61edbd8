"""Centralized logging service using loguru."""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from loguru import logger

from lenstrace.config import settings

# Remove default handler
logger.remove()

# Add console handler with color
logger.add(
    sys.stderr,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
    level=settings.app_log_level.upper(),
    colorize=True,
)

# Add file handler
if settings.log_to_file:
    LOG_DIR = Path(settings.log_dir)
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    logger.add(
        LOG_DIR / "lenstrace_{time:YYYY-MM-DD}.log",
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
        level="DEBUG",
        rotation="00:00",  # New file at midnight
        retention="7 days",
        compression="zip",
    )

# Reduce noise from framework/browser libraries
for logger_name in (
    "uvicorn",
    "uvicorn.error",
    "uvicorn.access",
    "fastapi",
    "asyncio",
    "playwright",
):
    logging.getLogger(logger_name).setLevel(settings.noisy_log_level.upper())


def log_extraction_step(
    job_id: str,
    step: str,
    status: str,
    duration_ms: int = 0,
    data: Optional[dict] = None,
    error: Optional[str] = None,
) -> None:
    """Log one step of the extraction protocol."""
    step_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "job_id": job_id,
        "step": step,
        "status": status,
        "duration_ms": duration_ms,
        "data": data,
        "error": error,
    }
    if error:
        logger.error(f"EXTRACTION_STEP_FAILED: {step_data}")
    else:
        logger.info(f"EXTRACTION_STEP: {step_data}")


def log_event(
    event_type: str,
    message: str,
    **kwargs,
) -> None:
    """Log a generic event."""
    event_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type,
        "message": message,
        **kwargs,
    }
    logger.info(f"EVENT: {event_data}")
