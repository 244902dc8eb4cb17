"""Logging configuration for the sideline core.

Console output goes to stderr so the CLI's JSON on stdout stays parseable.
A per-run log file under ``{data_dir}/logs/`` keeps DEBUG detail, including
the lock-contention retries logged by ``sideline.db``.
"""

import logging
from datetime import datetime
from pathlib import Path


def setup_logging(
    data_dir: str = "data", console_level: int = logging.INFO
) -> Path:
    """Attach a console handler and a DEBUG file handler to the root logger.

    Handlers already on the root logger are removed first, so repeated
    calls (one per CLI invocation in tests) do not duplicate output.

    Returns:
        Path to the newly created log file.
    """
    log_dir = Path(data_dir) / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)

    started = datetime.now().strftime("%Y-%m-%d-%H%M%S")
    log_file = log_dir / f"sideline-{started}.log"

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.handlers.clear()

    console = logging.StreamHandler()
    console.setLevel(console_level)
    console.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)-5s %(message)s", datefmt="%H:%M:%S")
    )
    root.addHandler(console)

    file_handler = logging.FileHandler(str(log_file), encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)-5s [%(name)s] %(message)s")
    )
    root.addHandler(file_handler)

    return log_file
