"""
Audit Sidecar
=============

Background worker for audit records and UI notifications. The consumer only
ever calls the synchronous ``submit_*`` methods, which enqueue and return;
a slow or failing audit endpoint can fill the queue but never block or fail
message processing.
"""

import asyncio
from typing import Awaitable, Callable, Optional

from ..events.schemas import LifecycleEvent
from ..schemas.notification import ProductNotification
from ..utils.logging import get_logger
from .audit_logger import CentralMessageLogger
from .notifications import Notifier, NullNotifier

logger = get_logger("product_staging_ingest.audit_sidecar")

Job = Callable[[], Awaitable[object]]


class AuditSidecar:
    """Bounded queue of audit and notification jobs drained by one task"""

    def __init__(
        self,
        message_logger: CentralMessageLogger,
        notifier: Optional[Notifier] = None,
        max_queue_size: int = 1000,
    ):
        self.message_logger = message_logger
        self.notifier = notifier or NullNotifier()
        self.queue: asyncio.Queue[Job] = asyncio.Queue(maxsize=max_queue_size)
        self.worker: Optional[asyncio.Task] = None
        # Error channel: worker failures stop here
        self.failures = 0
        self.dropped = 0
        self.last_error: Optional[str] = None

    def start(self) -> None:
        if self.worker is None or self.worker.done():
            self.worker = asyncio.create_task(self._run(), name="audit-sidecar")
            logger.info("Audit sidecar started", extra={"operation": "sidecar_start"})

    @property
    def running(self) -> bool:
        return self.worker is not None and not self.worker.done()

    def submit_consumed(
        self,
        event: LifecycleEvent,
        processing_time_ms: Optional[float] = None,
        error: Optional[str] = None,
    ) -> bool:
        return self._submit(
            lambda: self.message_logger.log_consumed(
                event, processing_time_ms=processing_time_ms, error=error
            ),
            "consumed",
        )

    def submit_published(
        self, event: LifecycleEvent, error: Optional[str] = None
    ) -> bool:
        return self._submit(
            lambda: self.message_logger.log_published(event, error=error),
            "published",
        )

    def submit_notification(self, notification: ProductNotification) -> bool:
        return self._submit(lambda: self.notifier.notify(notification), "notification")

    def _submit(self, job: Job, kind: str) -> bool:
        try:
            self.queue.put_nowait(job)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "Audit queue full, dropping job",
                extra={
                    "operation": "sidecar_submit",
                    "kind": kind,
                    "dropped": self.dropped,
                },
            )
            return False

    async def _run(self) -> None:
        while True:
            job = await self.queue.get()
            try:
                await job()
            except Exception as e:
                self.failures += 1
                self.last_error = str(e)
                logger.warning(
                    "Audit sidecar job failed",
                    extra={
                        "operation": "sidecar_job",
                        "error": str(e),
                        "failures": self.failures,
                    },
                )
            finally:
                self.queue.task_done()

    async def close(self, timeout: float = 5.0) -> None:
        """Drain pending jobs for up to ``timeout`` seconds, then stop the worker."""
        if self.worker is None:
            return

        if not self.worker.done():
            try:
                await asyncio.wait_for(self.queue.join(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "Audit sidecar did not drain before shutdown",
                    extra={"operation": "sidecar_close", "pending": self.queue.qsize()},
                )

        self.worker.cancel()
        try:
            await self.worker
        except asyncio.CancelledError:
            pass
        self.worker = None
        logger.info("Audit sidecar stopped", extra={"operation": "sidecar_close"})

    def health_check(self) -> dict:
        return {
            "status": "healthy" if self.running else "stopped",
            "pending": self.queue.qsize(),
            "failures": self.failures,
            "dropped": self.dropped,
            "last_error": self.last_error,
        }
