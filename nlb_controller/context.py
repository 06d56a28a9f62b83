import logging
import threading
import time
from typing import Any, Dict, Optional

import kopf

from .errors import ReconcileCancelled

logger = logging.getLogger(__name__)

EVENT_TYPE_NORMAL = "Normal"
EVENT_TYPE_WARNING = "Warning"


class ReconcileContext:
    """
    Carries the per-reconcile deadline, the stop flag and the Service body
    that Kubernetes events are attached to.

    Every cloud call checks the context first, so an expired deadline or a
    stopping operator aborts the reconcile between calls.
    """

    def __init__(self, key: str, body: Optional[Dict[str, Any]] = None,
                 timeout: Optional[float] = None, stopped: Optional[threading.Event] = None):
        self.key = key
        self.body = body
        self.deadline = time.monotonic() + timeout if timeout else None
        self.stopped = stopped or threading.Event()

    def check(self) -> None:
        """
        Raise if this reconcile must not issue any further cloud calls.

        Raises:
            ReconcileCancelled: If the operator is stopping or the deadline passed
        """
        if self.stopped.is_set():
            raise ReconcileCancelled(f"reconcile of {self.key} cancelled: operator is stopping")
        if self.deadline is not None and time.monotonic() > self.deadline:
            raise ReconcileCancelled(f"reconcile of {self.key} exceeded its deadline")

    def info(self, reason: str, message: str) -> None:
        logger.info(f"{self.key}: {message}")
        self._post(EVENT_TYPE_NORMAL, reason, message)

    def warn(self, reason: str, message: str) -> None:
        logger.warning(f"{self.key}: {message}")
        self._post(EVENT_TYPE_WARNING, reason, message)

    def _post(self, event_type: str, reason: str, message: str) -> None:
        if not self.body:
            return
        try:
            if event_type == EVENT_TYPE_WARNING:
                kopf.warn(self.body, reason=reason, message=message)
            else:
                kopf.info(self.body, reason=reason, message=message)
        except Exception as e:
            # Events are informational; a failed post must not fail the reconcile
            logger.warning(f"Failed to post {event_type} event for {self.key}: {str(e)}")
