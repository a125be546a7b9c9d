"""Clock and logging helpers."""

import datetime
import logging
import os
from pathlib import Path

import coloredlogs


def native_datetime_utc_now() -> datetime.datetime:
    """Get current UTC time as a native datetime object.

    Replacement for the deprecated datetime.datetime.utcnow().
    All timestamps in this package are naive UTC.
    """
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


def setup_console_logging(default_log_level="warning", log_file: Path | None = None) -> logging.Logger:
    """Coloured console logs for scripts.

    - Level comes from the ``LOG_LEVEL`` environment variable, falling back to ``default_log_level``
    - Transfer log lines are mirrored from ``eth_cctp.orchestrator``, so INFO shows the step by step progress
    - ``web3`` and ``aiohttp`` chatter is muted

    :param log_file:
        Also write INFO and above to this file, whatever the console level is

    :return:
        Root logger
    """
    level_name = os.environ.get("LOG_LEVEL", default_log_level).upper()
    level = getattr(logging, level_name, None)
    if not isinstance(level, int):
        raise ValueError(f"Unknown LOG_LEVEL: {level_name}")

    fmt = "%(asctime)s %(name)-30s %(levelname)-8s %(message)s"
    date_fmt = "%H:%M:%S"
    coloredlogs.install(level=level, fmt=fmt, datefmt=date_fmt)

    root = logging.getLogger()
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setLevel(min(logging.INFO, level))
        file_handler.setFormatter(logging.Formatter(fmt, date_fmt))
        root.addHandler(file_handler)
        root.setLevel(min(logging.INFO, level))

    for noisy in ("web3.providers.AsyncHTTPProvider", "web3.manager.RequestManager", "web3._utils.http_session_manager", "aiohttp.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return root
