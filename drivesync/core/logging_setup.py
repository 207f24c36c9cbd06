from __future__ import annotations

import logging
from pathlib import Path

# Third-party loggers that are chatty at INFO level.
QUIET_LOGGERS = ("googleapiclient.discovery_cache", "google.auth.transport.requests", "urllib3.connectionpool")


def setup_logging(level: str, logfile: str):
    Path(logfile).parent.mkdir(parents=True, exist_ok=True)

    log_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(log_level)

    # Clear existing handlers to avoid duplicates when `watch` reconfigures.
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter("%(asctime)s [%(levelname)s] [%(name)s] %(message)s")

    fh = logging.FileHandler(logfile, encoding="utf-8")
    fh.setLevel(log_level)
    fh.setFormatter(fmt)
    root.addHandler(fh)

    ch = logging.StreamHandler()
    ch.setLevel(log_level)
    ch.setFormatter(fmt)
    root.addHandler(ch)

    for logger_name in QUIET_LOGGERS:
        logging.getLogger(logger_name).setLevel(max(log_level, logging.WARNING))

    root.debug("logging initialized")
