"""
Logger factory for the loader, query and session modules.

Each named logger gets a stdout handler and, unless DEALS_LOG_TO_FILE=false,
a per-day file under logs/ (``YYYYMMDD_deals_dashboard.log``). Upload
failures and snapshot problems are logged here, so the file is the record of
what an import rejected and why.

    logger = setup_logger(__name__)
"""
import logging
import os
import sys
from datetime import date
from pathlib import Path
from typing import Optional

LOG_DIR = Path(__file__).resolve().parents[2] / "logs"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def log_file_path(log_dir: Optional[Path] = None, day: Optional[date] = None) -> Path:
    day = day or date.today()
    return Path(log_dir or LOG_DIR) / f"{day:%Y%m%d}_deals_dashboard.log"


def _file_logging_enabled(log_to_file: Optional[bool]) -> bool:
    if log_to_file is not None:
        return log_to_file
    return os.getenv("DEALS_LOG_TO_FILE", "true").strip().lower() in ("1", "true", "yes")


def setup_logger(
    name: str,
    level: Optional[str] = None,
    log_to_file: Optional[bool] = None,
    log_dir: Optional[Path] = None,
) -> logging.Logger:
    """Return the named logger, attaching handlers on first use only.

    ``level`` falls back to LOG_LEVEL, then INFO.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logger.setLevel(getattr(logging, level_name, logging.INFO))
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    handlers = [logging.StreamHandler(sys.stdout)]
    if _file_logging_enabled(log_to_file):
        path = log_file_path(log_dir)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))

    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger
