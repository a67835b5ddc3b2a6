"""Fire-and-forget notarization of accepted metrics.

dispatch() schedules a background task and returns immediately. The task
submits the metric hash to the sink and, on success, hands the receipt to
an ``attach`` callable that stores it on the record. Every failure is
logged with the caller's correlation id and dropped.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from src.errors import ImpactMonitoringError
from src.models.metric import ImpactMetric
from src.notarization.base import NotarizationReceipt, NotarizationSink, metric_payload_hash

logger = structlog.get_logger(__name__)

# (record_id, receipt) -> True when the receipt was stored.
ReceiptAttacher = Callable[[str, NotarizationReceipt], Awaitable[bool]]


class NotarizationDispatcher:
    """Runs notarization in background tasks it keeps references to.

    The record may not be committed yet when the receipt comes back, so
    ``attach`` is retried ``attach_attempts`` times, ``attach_delay``
    seconds apart, before the receipt is given up on.
    """

    def __init__(
        self,
        sink: NotarizationSink,
        attach: ReceiptAttacher,
        *,
        attach_attempts: int = 3,
        attach_delay: float = 0.5,
    ) -> None:
        self._sink = sink
        self._attach = attach
        self._attach_attempts = max(1, attach_attempts)
        self._attach_delay = attach_delay
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def dispatch(self, metric: ImpactMetric, *, correlation_id: str) -> asyncio.Task[None]:
        """Schedule notarization of ``metric``; never raises, never blocks."""
        task = asyncio.create_task(
            self._notarize(metric, correlation_id),
            name=f"notarize-{metric.metric_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every in-flight notarization (shutdown and tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _notarize(self, metric: ImpactMetric, correlation_id: str) -> None:
        log = logger.bind(correlation_id=correlation_id, metric_id=str(metric.metric_id))
        record_id = str(metric.metric_id)
        try:
            receipt = await self._sink.submit(
                record_id, metric_payload_hash(metric), correlation_id=correlation_id,
            )
        except ImpactMonitoringError as exc:
            log.warning("notarization_failed", error=exc.message)
            return
        except Exception:
            log.exception("notarization_sink_error")
            return

        for attempt in range(1, self._attach_attempts + 1):
            try:
                if await self._attach(record_id, receipt):
                    log.info("notarization_attached", transaction_hash=receipt.transaction_hash)
                    return
            except Exception:
                log.exception("notarization_attach_error", attempt=attempt)
            if attempt < self._attach_attempts:
                await asyncio.sleep(self._attach_delay)
        log.warning(
            "notarization_receipt_dropped",
            transaction_hash=receipt.transaction_hash,
            attempts=self._attach_attempts,
        )
