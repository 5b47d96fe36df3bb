import logging
import threading
import time
from typing import Iterable, Optional

from core.errors import OperationCancelled
from core.logger import log_event


class OperationContext:
    """
    Caller-owned deadline and cancellation flag for one operation.

    The controller checks it between steps. A backend call that is already
    running is never interrupted; the operation only stops before the next
    step.
    """

    def __init__(self, deadline: Optional[float] = None) -> None:
        # deadline is a time.monotonic() value
        self.deadline = deadline
        self._cancelled = threading.Event()

    @classmethod
    def with_timeout(cls, seconds: Optional[float]) -> "OperationContext":
        if seconds is None:
            return cls()
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def check(self, operation: str, step: str, committed: Iterable[str] = ()) -> None:
        if self.cancelled:
            reason = "cancelled"
        elif self.expired:
            reason = "deadline exceeded"
        else:
            return
        log_event(
            f"[vm] {operation} {reason} before step '{step}'; already committed: {list(committed) or 'nothing'}",
            logging.WARNING,
        )
        raise OperationCancelled(
            f"{operation} {reason} before step '{step}'",
            operation=operation,
            step=step,
            committed=committed,
        )
