"""Logging setup for card update runs.

``configure_logging()`` is called once by the CLI. Calling it again is a
no-op while the root logger already has handlers, so tests and embedding
callers keep their own configuration.
"""

import logging
import os
from typing import Optional

LOG_DIR = "logs"
LOG_FILE = "card_update.log"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Client libraries that log every request at INFO/DEBUG
NOISY_LOGGERS = ("urllib3", "httpx", "httpcore", "anthropic")


def configure_logging(level: int = logging.INFO, log_dir: Optional[str] = LOG_DIR) -> None:
    """Attach console and run-log handlers to the root logger.

    Args:
        level: Root log level
        log_dir: Directory for card_update.log; None disables the file log
    """
    root = logging.getLogger()
    if root.handlers:
        return

    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_dir:
        try:
            os.makedirs(log_dir, exist_ok=True)
            fh = logging.FileHandler(os.path.join(log_dir, LOG_FILE), mode="a", encoding="utf-8")
        except OSError as e:
            root.warning(f"File logging disabled ({log_dir}): {e}")
        else:
            fh.setFormatter(formatter)
            root.addHandler(fh)

    root.setLevel(level)

    # HTTP wire logs only when debugging
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if level <= logging.DEBUG else logging.WARNING)
