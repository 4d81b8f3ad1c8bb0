"""
Logging utilities for the GCE node e2e runner.
"""

import logging
import os
import sys

LOG_FILE_NAME = "node-e2e.log"

# Chatty libraries underneath google-auth and requests
QUIET_LOGGERS = ("urllib3", "google.auth", "google.auth.transport.requests")


def setup_logging(verbose: bool = False, results_dir: str = "") -> logging.Logger:
    """
    Set up logging to stdout and to a log file next to the test artifacts.

    Workers run in their own threads, so the thread name is part of every
    record. HTTP and auth library loggers stay at WARNING unless verbose.

    Args:
        verbose: Enable verbose (DEBUG) logging
        results_dir: Directory for the log file (current directory if empty)

    Returns:
        Logger instance
    """
    level = logging.DEBUG if verbose else logging.INFO

    if results_dir:
        os.makedirs(results_dir, exist_ok=True)
    log_file = os.path.join(results_dir, LOG_FILE_NAME)

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(threadName)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file),
        ],
        force=True,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(level if verbose else logging.WARNING)

    return logging.getLogger(__name__)
