"""
Tests for progress fan-out to job subscribers.
"""

from uuid import uuid4

import pytest

from thesis_validator.orchestrator import ProgressBroker, ProgressEvent, ProgressEventType


def progress(job_id, percent: int) -> ProgressEvent:
    return ProgressEvent(type=ProgressEventType.PROGRESS, job_id=job_id, data={"progress": percent})


class TestProgressBroker:
    @pytest.mark.asyncio
    async def test_events_delivered_in_order(self) -> None:
        broker = ProgressBroker(buffer_size=8)
        job_id = uuid4()
        subscription = broker.subscribe(job_id)

        for percent in (10, 20, 30):
            broker.publish(progress(job_id, percent))
        broker.publish(ProgressEvent(type=ProgressEventType.COMPLETED, job_id=job_id))

        events = [e async for e in subscription]

        assert [e.type for e in events] == [ProgressEventType.PROGRESS] * 3 + [ProgressEventType.COMPLETED]
        assert [e.data.get("progress") for e in events[:3]] == [10, 20, 30]
        assert subscription.closed
        assert broker.subscriber_count(job_id) == 0

    @pytest.mark.asyncio
    async def test_full_buffer_drops_oldest(self) -> None:
        broker = ProgressBroker(buffer_size=2)
        job_id = uuid4()
        subscription = broker.subscribe(job_id)

        for percent in (10, 20, 30):
            assert broker.publish(progress(job_id, percent)) == 1

        first = await subscription.get(timeout=1)
        second = await subscription.get(timeout=1)

        assert [first.data["progress"], second.data["progress"]] == [20, 30]

    @pytest.mark.asyncio
    async def test_no_replay_for_late_subscribers(self) -> None:
        broker = ProgressBroker(buffer_size=8)
        job_id = uuid4()
        assert broker.publish(progress(job_id, 10)) == 0

        subscription = broker.subscribe(job_id)
        broker.publish(progress(job_id, 20))

        event = await subscription.get(timeout=1)
        assert event.data["progress"] == 20

    @pytest.mark.asyncio
    async def test_each_subscriber_gets_every_event(self) -> None:
        broker = ProgressBroker(buffer_size=8)
        job_id = uuid4()
        a, b = broker.subscribe(job_id), broker.subscribe(job_id)

        assert broker.publish(progress(job_id, 50)) == 2

        assert (await a.get(timeout=1)).data["progress"] == 50
        assert (await b.get(timeout=1)).data["progress"] == 50

    @pytest.mark.asyncio
    async def test_events_scoped_to_job(self) -> None:
        broker = ProgressBroker(buffer_size=8)
        mine, other = uuid4(), uuid4()
        subscription = broker.subscribe(mine)

        broker.publish(progress(other, 10))
        broker.publish(progress(mine, 20))

        assert (await subscription.get(timeout=1)).job_id == mine

    @pytest.mark.asyncio
    async def test_close_job_ends_streams(self) -> None:
        broker = ProgressBroker(buffer_size=8)
        job_id = uuid4()
        subscription = broker.subscribe(job_id)
        broker.publish(progress(job_id, 10))

        broker.close_job(job_id)

        assert [e.data["progress"] async for e in subscription] == [10]
        assert await subscription.get(timeout=1) is None
        assert broker.subscriber_count(job_id) == 0

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_delivery(self) -> None:
        broker = ProgressBroker(buffer_size=8)
        job_id = uuid4()

        async with broker.subscribe(job_id) as subscription:
            assert broker.subscriber_count(job_id) == 1

        assert subscription.closed
        assert broker.publish(progress(job_id, 10)) == 0
