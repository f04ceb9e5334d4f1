# pylint: disable=missing-module-docstring,missing-function-docstring
import asyncio

from engine.enums.status import PlaybackStatus
from engine.state_dataclass import EngineState
from engine.status_snapshot import snapshot_of
from service.status_channels import StatusChannel, StatusChannels


def test_publish_skips_unchanged_values():
    channel: StatusChannel[int] = StatusChannel("n", 0)

    assert not channel.publish(0)
    assert channel.publish(1)
    assert channel.value == 1


def test_slow_subscriber_sees_only_latest_value():
    async def scenario() -> list[int]:
        channel: StatusChannel[int] = StatusChannel("n", 0)
        sub = channel.subscribe()
        for value in range(1, 6):
            channel.publish(value)
        channel.close()
        return [v async for v in sub]

    assert asyncio.run(scenario()) == [5]


def test_close_wakes_waiting_subscriber():
    async def scenario() -> list[int]:
        channel: StatusChannel[int] = StatusChannel("n", 0)
        sub = channel.subscribe()
        received: list[int] = []

        async def consume() -> None:
            async for value in sub:
                received.append(value)

        task = asyncio.create_task(consume())
        await asyncio.sleep(0)
        channel.publish(7)
        await asyncio.sleep(0)
        channel.close()
        await asyncio.wait_for(task, timeout=1.0)
        return received

    assert asyncio.run(scenario()) == [0, 7]


def test_channels_close_exactly_once():
    channels = StatusChannels(snapshot_of(EngineState()))

    assert channels.close_all() == len(channels.all())
    assert channels.close_all() == 0
    assert all(c.closed for c in channels.all())
    assert channels.snapshot.subscriber_count == 0


def test_publish_fans_out_per_observable():
    channels = StatusChannels(snapshot_of(EngineState()))

    channels.publish(snapshot_of(EngineState(status=PlaybackStatus.PLAYING, volume=0.3)))

    assert channels.status.value == "PLAYING"
    assert channels.is_playing.value is True
    assert channels.is_loading.value is False
    assert channels.volume.value == 0.3
    assert channels.snapshot.value.status is PlaybackStatus.PLAYING


def test_unsubscribed_subscriber_gets_nothing_new():
    channel: StatusChannel[int] = StatusChannel("n", 0)
    sub = channel.subscribe()

    sub.unsubscribe()
    channel.publish(1)

    assert channel.subscriber_count == 0
