import logging
import time
from typing import Callable, TypeVar

from admission_desk.core.errors import StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry_storage(operation: Callable[[], T], backoff: float, retries: int = 1) -> T:
    """
    Run a store operation, retrying transient StorageError with linear backoff.
    The last failure is re-raised as-is.
    """
    attempt = 0
    while True:
        try:
            return operation()
        except StorageError as e:
            if attempt >= retries:
                logger.error(f"Storage operation failed after {attempt + 1} attempts: {e.message}")
                raise
            attempt += 1
            logger.warning(f"Storage operation failed ({e.message}), retry {attempt}/{retries}")
            time.sleep(backoff * attempt)
