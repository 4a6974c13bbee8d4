import asyncio

import pytest

from tablepipe.core.channel import Channel, ChannelClosedError


def test_items_come_out_in_order():
    async def scenario():
        channel = Channel(3)
        received = []

        async def produce():
            for i in range(10):
                await channel.put(i)
            channel.close()

        async def consume():
            async for item in channel:
                received.append(item)

        await asyncio.gather(produce(), consume())
        return received, channel.high_water

    received, high_water = asyncio.run(scenario())

    assert received == list(range(10))
    assert high_water <= 3


def test_close_on_full_channel_does_not_block():
    async def scenario():
        channel = Channel(2)
        await channel.put("a")
        await channel.put("b")
        channel.close(faulted=True)
        return [item async for item in channel], channel.faulted

    items, faulted = asyncio.run(scenario())

    assert items == ["a", "b"]
    assert faulted is True


def test_put_after_close_raises():
    async def scenario():
        channel = Channel(1, name="rows")
        channel.close()
        await channel.put(1)

    with pytest.raises(ChannelClosedError, match="rows"):
        asyncio.run(scenario())


def test_full_channel_suspends_producer():
    async def scenario():
        channel = Channel(1)
        await channel.put(1)
        blocked = asyncio.ensure_future(channel.put(2))
        await asyncio.sleep(0.05)
        was_blocked = not blocked.done()
        assert await channel.get() == 1
        await asyncio.wait_for(blocked, 1)
        return was_blocked

    assert asyncio.run(scenario()) is True


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        Channel(0)
