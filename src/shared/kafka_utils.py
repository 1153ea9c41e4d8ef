"""Kafka producer helpers."""

import json

import structlog
from aiokafka import AIOKafkaProducer

logger = structlog.get_logger()


async def create_producer(bootstrap_servers: str) -> AIOKafkaProducer:
    """Create and start a Kafka producer."""
    producer = AIOKafkaProducer(
        bootstrap_servers=bootstrap_servers,
        value_serializer=lambda v: json.dumps(v, default=str).encode("utf-8"),
    )
    await producer.start()
    logger.info("kafka_producer_started", bootstrap_servers=bootstrap_servers)
    return producer


async def produce_event(producer: AIOKafkaProducer, topic: str, event: dict, key: str) -> None:
    """Send a JSON event to ``topic`` keyed for partition affinity."""
    await producer.send_and_wait(topic, event, key=key.encode("utf-8"))
    logger.debug("event_produced", topic=topic, key=key)
