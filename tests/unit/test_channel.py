"""Unit tests for the shared MessageStream."""
import asyncio

import pytest

from chatwatch.stream.channel import MessageStream, StreamClosed


@pytest.mark.unit
@pytest.mark.asyncio
async def test_items_arrive_in_put_order():
    stream = MessageStream(capacity=5)
    for i in range(3):
        await stream.put(i)

    assert [await stream.get() for _ in range(3)] == [0, 1, 2]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_put_blocks_when_full():
    stream = MessageStream(capacity=2)
    await stream.put(1)
    await stream.put(2)

    blocked = asyncio.create_task(stream.put(3))
    await asyncio.sleep(0.01)
    assert not blocked.done()

    assert await stream.get() == 1
    await asyncio.wait_for(blocked, timeout=1.0)
    assert stream.qsize() == 2


@pytest.mark.unit
@pytest.mark.asyncio
async def test_close_drains_then_ends_iteration():
    stream = MessageStream(capacity=5)
    await stream.put("a")
    await stream.put("b")
    stream.close()

    received = [item async for item in stream]

    assert received == ["a", "b"]
    assert stream.closed is True
    # A closed, drained stream keeps reporting the end
    assert await stream.get() is None
    assert stream.qsize() == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_close_is_idempotent_and_put_after_close_raises():
    stream = MessageStream(capacity=1)
    stream.close()
    stream.close()

    with pytest.raises(StreamClosed):
        await stream.put("late")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_close_never_blocks_on_full_stream():
    stream = MessageStream(capacity=1)
    await stream.put("only")
    stream.close()

    assert await stream.get() == "only"
    assert await stream.get() is None


@pytest.mark.unit
def test_invalid_capacity():
    with pytest.raises(ValueError):
        MessageStream(capacity=0)
