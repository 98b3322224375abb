"""Kafka producer management for visit events."""

import json

from aiokafka import AIOKafkaProducer

from shortlinks.config import get_settings
from shortlinks.schemas import VisitRecord

__all__ = ["close_kafka", "init_kafka", "publish_visit_event"]

settings = get_settings()

_producer: AIOKafkaProducer | None = None


async def init_kafka() -> None:
    global _producer
    if _producer is not None:
        return

    producer = AIOKafkaProducer(
        bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
        value_serializer=lambda payload: json.dumps(payload).encode("utf-8"),
    )
    try:
        await producer.start()
        _producer = producer
    except Exception:
        await producer.stop()
        _producer = None
        raise


async def close_kafka() -> None:
    global _producer
    if _producer is None:
        return
    await _producer.stop()
    _producer = None


async def publish_visit_event(record: VisitRecord) -> bool:
    assert isinstance(record, VisitRecord), f"record must be VisitRecord, got {type(record).__name__}"

    if _producer is None:
        return False

    await _producer.send_and_wait(
        settings.KAFKA_VISIT_TOPIC,
        record.model_dump(mode="json"),
        key=record.short_code.encode("utf-8"),
    )
    return True
