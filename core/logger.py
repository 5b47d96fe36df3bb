import logging
import os
from config.settings import DEBUG, LOG_FILE

os.makedirs(os.path.dirname(LOG_FILE), exist_ok=True)

logging.basicConfig(
    filename=str(LOG_FILE),
    level=logging.DEBUG if DEBUG else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
)

logger = logging.getLogger("vm-registry")


def log_event(message: str, level: int = logging.INFO) -> None:
    """
    Write a single line event to the main vm-registry.log file.
    """
    logger.log(level, message)
