"""Tests for the console/milestone broadcaster."""

from __future__ import annotations

import pytest

from gamekeeper.broadcast import Broadcaster, RingBuffer


def test_ring_buffer_keeps_newest_lines() -> None:
    buf = RingBuffer(max_lines=3)
    for i in range(5):
        buf.append(f"line {i}")
    assert buf.seq == 5
    assert buf.tail(10) == ["line 2", "line 3", "line 4"]
    assert buf.tail(1) == ["line 4"]
    assert buf.tail(0) == []


@pytest.mark.asyncio
async def test_subscribers_receive_published_lines() -> None:
    broadcaster = Broadcaster()
    first = broadcaster.subscribe()
    second = broadcaster.subscribe()

    broadcaster.publish("[supervisor] alpha started")

    assert first.get_nowait() == "[supervisor] alpha started"
    assert second.get_nowait() == "[supervisor] alpha started"

    broadcaster.unsubscribe(second)
    broadcaster.publish("again")
    assert first.get_nowait() == "again"
    assert second.empty()


@pytest.mark.asyncio
async def test_full_queue_drops_instead_of_blocking() -> None:
    broadcaster = Broadcaster(queue_size=1)
    slow = broadcaster.subscribe()
    broadcaster.publish("one")
    broadcaster.publish("two")

    assert slow.qsize() == 1
    assert slow.get_nowait() == "one"
    assert broadcaster.tail(5) == ["one", "two"]


@pytest.mark.asyncio
async def test_console_lines_are_tagged_with_game() -> None:
    broadcaster = Broadcaster()
    await broadcaster.on_console_line("alpha", "<Nova> hi")
    assert broadcaster.tail(1) == ["[alpha] <Nova> hi"]
    assert broadcaster.seq == 1
