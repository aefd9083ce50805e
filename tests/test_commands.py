#!/usr/bin/env python3
"""test the TUI command queue"""

import nadctl.tui.commands
from nadctl.tui.commands import CommandQueue, OpKind


def _kinds(queue):
    return [item.kind for item in queue.pending()]


def test_fifo_order():
    """non-coalesced operations keep their order"""
    queue = CommandQueue()
    queue.put(OpKind.POWER_TOGGLE)
    queue.put(OpKind.SOURCE_NEXT)
    queue.put(OpKind.MUTE_TOGGLE)
    assert _kinds(queue) == [OpKind.POWER_TOGGLE, OpKind.SOURCE_NEXT, OpKind.MUTE_TOGGLE]
    assert queue.get().kind == OpKind.POWER_TOGGLE
    assert len(queue) == 2


def test_empty_get():
    """an empty queue returns None"""
    queue = CommandQueue()
    assert queue.get() is None
    assert not queue


def test_volume_coalescing():
    """at most one volume operation waits, and it is the newest"""
    queue = CommandQueue()
    queue.put(OpKind.VOLUME_UP)
    queue.put(OpKind.SOURCE_NEXT)
    queue.put(OpKind.VOLUME_DOWN)
    last = queue.put(OpKind.VOLUME_SET, volume=-12.0)
    assert _kinds(queue) == [OpKind.SOURCE_NEXT, OpKind.VOLUME_SET]
    assert queue.pending()[-1] is last
    assert last.params == {"volume": -12.0}


def test_refresh_coalescing():
    """repeated refresh requests collapse"""
    queue = CommandQueue()
    for _ in range(5):
        queue.put(OpKind.REFRESH)
    queue.put(OpKind.SPOTIFY_REFRESH)
    queue.put(OpKind.SPOTIFY_REFRESH)
    assert _kinds(queue) == [OpKind.REFRESH, OpKind.SPOTIFY_REFRESH]


def test_urgent_goes_first():
    """an urgent refresh runs before anything queued"""
    queue = CommandQueue()
    queue.put(OpKind.SOURCE_NEXT)
    queue.put(OpKind.REFRESH)
    queue.put(OpKind.REFRESH, urgent=True)
    assert _kinds(queue) == [OpKind.REFRESH, OpKind.SOURCE_NEXT]


def test_later_refresh_keeps_urgent_position():
    """a refresh arriving after a follow-up refresh does not push it back"""
    queue = CommandQueue()
    queue.put(OpKind.SOURCE_NEXT)
    queue.put(OpKind.REFRESH, urgent=True)
    latest = queue.put(OpKind.REFRESH)
    assert _kinds(queue) == [OpKind.REFRESH, OpKind.SOURCE_NEXT]
    assert queue.pending()[0] is latest


def test_refresh_keeps_earliest_position():
    """a pending refresh keeps its place; an urgent one moves it to the head"""
    queue = CommandQueue()
    queue.put(OpKind.REFRESH)
    queue.put(OpKind.MUTE_TOGGLE)
    queue.put(OpKind.REFRESH)
    assert _kinds(queue) == [OpKind.REFRESH, OpKind.MUTE_TOGGLE]
    queue.put(OpKind.SPOTIFY_NEXT)
    queue.put(OpKind.SPOTIFY_REFRESH)
    queue.put(OpKind.REFRESH, urgent=True)
    queue.put(OpKind.SPOTIFY_REFRESH, urgent=True)
    assert _kinds(queue) == [
        OpKind.SPOTIFY_REFRESH,
        OpKind.REFRESH,
        OpKind.MUTE_TOGGLE,
        OpKind.SPOTIFY_NEXT,
    ]


def test_has_pending_and_clear():
    """inspection helpers"""
    queue = CommandQueue()
    queue.put(OpKind.DISCOVER)
    assert queue.has_pending(OpKind.DISCOVER)
    assert not queue.has_pending(OpKind.CONNECT)
    queue.clear()
    assert len(queue) == 0


def test_put_existing_operation():
    """a prebuilt operation is queued as is"""
    queue = CommandQueue()
    operation = nadctl.tui.commands.QueuedOperation(OpKind.SOURCE_SET, {"source": "TV"})
    assert queue.put(operation) is operation
    assert queue.get() is operation


def test_ids_increase():
    """each operation has a fresh id"""
    queue = CommandQueue()
    first = queue.put(OpKind.MUTE_TOGGLE)
    second = queue.put(OpKind.MUTE_TOGGLE)
    assert second.id > first.id


def test_is_spotify():
    """spotify kinds are recognized by name"""
    assert OpKind.SPOTIFY_NEXT.is_spotify
    assert not OpKind.VOLUME_UP.is_spotify
