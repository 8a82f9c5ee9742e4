"""Unit tests for reward event notifications."""

from unittest.mock import AsyncMock, patch

import pytest

from step_rewards.models import RewardEvent, RewardEventType
from step_rewards.notifications import (
    FireAndForget,
    KafkaNotificationDispatcher,
    LoggingDispatcher,
)


@pytest.fixture()
def mock_producer():
    """Mock aiokafka producer fixture."""
    with patch("step_rewards.notifications.AIOKafkaProducer") as mock:
        producer_instance = AsyncMock()
        mock.return_value = producer_instance
        yield producer_instance


@pytest.fixture()
def event():
    return RewardEvent(
        event_type=RewardEventType.TIER_ADVANCED,
        user_id="user-1",
        data={"from_tier": 1, "to_tier": 2},
    )


class TestKafkaNotificationDispatcher:
    """Test publishing events to Kafka."""

    @pytest.mark.asyncio()
    async def test_dispatch_sends_keyed_event(self, mock_producer, event):
        """Test events are sent to the topic keyed by user."""
        dispatcher = KafkaNotificationDispatcher("localhost:9092", "rewards.events.notifications")
        await dispatcher.start()

        await dispatcher.dispatch(event)

        mock_producer.start.assert_awaited_once()
        mock_producer.send_and_wait.assert_awaited_once()
        args, kwargs = mock_producer.send_and_wait.call_args
        assert args[0] == "rewards.events.notifications"
        assert kwargs["key"] == "user-1"
        assert kwargs["value"]["event_type"] == "tier_advanced"
        assert kwargs["value"]["data"]["to_tier"] == 2

    @pytest.mark.asyncio()
    async def test_dispatch_before_start(self, event):
        """Test dispatching without a producer fails."""
        dispatcher = KafkaNotificationDispatcher("localhost:9092", "topic")

        with pytest.raises(RuntimeError, match="Producer not started"):
            await dispatcher.dispatch(event)

    @pytest.mark.asyncio()
    async def test_stop(self, mock_producer):
        """Test stopping the producer."""
        dispatcher = KafkaNotificationDispatcher("localhost:9092", "topic")
        await dispatcher.start()

        await dispatcher.stop()

        mock_producer.stop.assert_awaited_once()
        assert dispatcher.producer is None


class TestFireAndForget:
    """Test background dispatch."""

    @pytest.mark.asyncio()
    async def test_submit_delivers(self, event):
        """Test submitted events reach the dispatcher."""
        dispatcher = AsyncMock()
        notifier = FireAndForget(dispatcher)

        notifier.submit(event)
        await notifier.drain()

        dispatcher.dispatch.assert_awaited_once_with(event)
        assert notifier.pending == 0

    @pytest.mark.asyncio()
    async def test_failures_are_logged_not_raised(self, event):
        """Test a failing dispatcher does not propagate errors."""
        dispatcher = AsyncMock()
        dispatcher.dispatch.side_effect = ConnectionError("broker down")
        notifier = FireAndForget(dispatcher)

        task = notifier.submit(event)
        await task

        assert task.exception() is None

    @pytest.mark.asyncio()
    async def test_logging_dispatcher(self, event):
        """Test the default dispatcher accepts events."""
        dispatcher = LoggingDispatcher()
        await dispatcher.start()

        await dispatcher.dispatch(event)
        await dispatcher.stop()
