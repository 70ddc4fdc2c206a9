"""Logging setup shared by the CLI and the API server."""

import logging
import sys

LOG_FORMAT = "[%(asctime)s.%(msecs)03d] [%(levelname)s] %(message)s"
DATE_FORMAT = "%H:%M:%S"

logger = logging.getLogger("jhdeploy")


def configure_logging(debug: bool = False) -> None:
    """Install a single timestamped stream handler on the root logger."""
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if debug else logging.INFO)

    # Quieten chatty client libraries unless debugging
    if not debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("kubernetes_asyncio").setLevel(logging.WARNING)


def log_stage(position: int, name: str) -> None:
    logger.info(f"🚀 STAGE {position}: {name}")
