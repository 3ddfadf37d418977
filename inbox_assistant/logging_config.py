import logging
from pathlib import Path
from typing import Optional

# Libraries that log every HTTP request; run polling would flood the output.
NOISY_LOGGERS = ("httpx", "httpcore", "googleapiclient.discovery", "google_auth_oauthlib")


def setup_logging(level: int = logging.INFO, log_file: Optional[Path] = None) -> None:
    """
    Configure root logging for jobs and the chat worker.

    With log_file set, records also go to that file (its directory is created).
    """
    handlers = [logging.StreamHandler()]

    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=level,
        format="[%(asctime)s] [%(levelname)s] [%(threadName)s] %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
