"""Best-effort publication of bed lifecycle events to RabbitMQ."""
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional

import pika
from pika.exceptions import AMQPError

from .config import get_settings

logger = logging.getLogger(__name__)


def build_bed_event(event: str, bed_id: int, room_id: int, patient_id: Optional[int], **extra: Any) -> Dict[str, Any]:
    message: Dict[str, Any] = {
        "event": event,
        "bed_id": bed_id,
        "room_id": room_id,
        "patient_id": patient_id,
        "occurred_at": datetime.utcnow().isoformat(),
    }
    message.update(extra)
    return message


def publish_bed_event(message: Dict[str, Any]) -> bool:
    """Send ``message`` to the bed events queue.

    Runs after the change is committed; a broker failure is logged and
    reported as ``False`` without touching the stored state.
    """

    settings = get_settings()
    if not settings.event_publishing_enabled:
        return False

    try:
        parameters = pika.ConnectionParameters(
            host=settings.rabbitmq_host,
            connection_attempts=1,
            socket_timeout=settings.rabbitmq_socket_timeout,
            blocked_connection_timeout=settings.rabbitmq_blocked_timeout,
        )
        connection = pika.BlockingConnection(parameters)
        try:
            channel = connection.channel()
            channel.queue_declare(queue=settings.bed_events_queue, durable=True)
            channel.basic_publish(
                exchange="",
                routing_key=settings.bed_events_queue,
                body=json.dumps(message),
                properties=pika.BasicProperties(delivery_mode=2),
            )
        finally:
            connection.close()
    except (AMQPError, OSError) as exc:
        logger.error("Could not publish %s event for bed %s: %s", message.get("event"), message.get("bed_id"), exc)
        return False

    logger.info("Published %s event for bed %s", message["event"], message["bed_id"])
    return True
