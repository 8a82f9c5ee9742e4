"""
Notification dispatch for reward events
"""

import asyncio
from typing import Optional, Protocol

import orjson
import structlog
from aiokafka import AIOKafkaProducer

from step_rewards.metrics import notification_failures
from step_rewards.models import RewardEvent

logger = structlog.get_logger(__name__)


class NotificationDispatcher(Protocol):
    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def dispatch(self, event: RewardEvent) -> None: ...


class LoggingDispatcher:
    """Writes reward events to the log. Used when no broker is configured."""

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    async def dispatch(self, event: RewardEvent) -> None:
        logger.info(
            "Reward event",
            event_type=event.event_type.value,
            user_id=event.user_id,
            event_id=event.event_id,
            data=event.data,
        )


class KafkaNotificationDispatcher:
    """Publishes reward events to a Kafka topic keyed by user id"""

    def __init__(self, bootstrap_servers: str, topic: str):
        self.bootstrap_servers = bootstrap_servers
        self.topic = topic
        self.producer: Optional[AIOKafkaProducer] = None

    async def start(self) -> None:
        """Start the Kafka producer"""
        self.producer = AIOKafkaProducer(
            bootstrap_servers=self.bootstrap_servers,
            value_serializer=lambda v: orjson.dumps(v, default=str),
            key_serializer=lambda k: k.encode("utf-8") if k else None,
            acks="all",
            enable_idempotence=True,
            compression_type="gzip",
        )
        await self.producer.start()
        logger.info(
            "Kafka producer started",
            bootstrap_servers=self.bootstrap_servers,
            topic=self.topic,
        )

    async def stop(self) -> None:
        """Stop the Kafka producer"""
        if self.producer:
            await self.producer.stop()
            self.producer = None
            logger.info("Kafka producer stopped")

    async def dispatch(self, event: RewardEvent) -> None:
        if not self.producer:
            raise RuntimeError("Producer not started")

        await self.producer.send_and_wait(
            self.topic,
            value=event.model_dump(mode="json"),
            key=event.user_id,
        )
        logger.debug(
            "Reward event sent to Kafka",
            topic=self.topic,
            event_type=event.event_type.value,
            user_id=event.user_id,
        )


class FireAndForget:
    """Schedules dispatches as background tasks so callers never wait on delivery."""

    def __init__(self, dispatcher: NotificationDispatcher):
        self.dispatcher = dispatcher
        self._tasks: set[asyncio.Task] = set()

    def submit(self, event: RewardEvent) -> asyncio.Task:
        task = asyncio.create_task(self._deliver(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _deliver(self, event: RewardEvent) -> None:
        try:
            await self.dispatcher.dispatch(event)
        except Exception as e:
            notification_failures.inc()
            logger.error(
                "Failed to dispatch reward event",
                event_type=event.event_type.value,
                user_id=event.user_id,
                error=str(e),
            )

    async def drain(self) -> None:
        """Wait for in-flight dispatches, used on shutdown and in tests."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._tasks)
