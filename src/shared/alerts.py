"""Alert events for high-risk orders and filed disputes.

Delivery is fire-and-forget: the pipeline never waits on, or fails because
of, the alert sink.
"""

import asyncio
import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Protocol

import structlog
from pydantic import BaseModel, Field

from src.shared.kafka_utils import produce_event

logger = structlog.get_logger()


class AlertType(StrEnum):
    HIGH_RISK_ORDER = "high_risk_order"
    PENDING_REVIEW = "pending_review"
    CHARGEBACK_FILED = "chargeback_filed"


class AlertEvent(BaseModel):
    alert_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    alert_type: AlertType
    merchant_id: str
    order_id: str
    severity: str = "high"
    details: dict = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class AlertEmitter(Protocol):
    async def emit(self, event: AlertEvent) -> None: ...


class LoggingAlertEmitter:
    """Writes alerts to the structured log only. Used when Kafka is disabled."""

    async def emit(self, event: AlertEvent) -> None:
        logger.warning(
            "alert_emitted",
            alert_id=event.alert_id,
            alert_type=event.alert_type.value,
            merchant_id=event.merchant_id,
            order_id=event.order_id,
            severity=event.severity,
        )


class KafkaAlertEmitter:
    """Publishes alerts to a Kafka topic keyed by merchant."""

    def __init__(self, producer, topic: str = "orderguard.alerts") -> None:
        self._producer = producer
        self._topic = topic

    async def emit(self, event: AlertEvent) -> None:
        if self._producer is None:
            logger.debug("kafka_producer_not_available", alert_id=event.alert_id)
            return

        try:
            await produce_event(
                self._producer,
                self._topic,
                event.model_dump(mode="json"),
                key=event.merchant_id,
            )
            logger.info("alert_published_to_kafka", alert_id=event.alert_id, topic=self._topic)
        except Exception:
            logger.exception("alert_publish_failed", alert_id=event.alert_id, topic=self._topic)


class AlertDispatcher:
    """Schedules alert delivery as background tasks and keeps them referenced."""

    def __init__(self, emitter: AlertEmitter | None = None) -> None:
        self._emitter = emitter or LoggingAlertEmitter()
        self._pending: set[asyncio.Task] = set()

    def set_emitter(self, emitter: AlertEmitter) -> None:
        self._emitter = emitter

    def dispatch(self, event: AlertEvent) -> None:
        task = asyncio.create_task(self._deliver(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, event: AlertEvent) -> None:
        try:
            await self._emitter.emit(event)
        except Exception:
            logger.exception("alert_delivery_failed", alert_id=event.alert_id)

    async def drain(self) -> None:
        """Wait for in-flight deliveries. Used at shutdown and in tests."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
