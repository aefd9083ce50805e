#!/usr/bin/env python3
"""
Command queue for device operations

Everything the UI wants done to the receiver or to Spotify is queued here
and drained by a single worker, so the device only ever sees one command at
a time.  Repeated volume and refresh requests collapse into one.
"""

import collections
import enum
import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Any

_ids = itertools.count(1)


class OpKind(enum.Enum):
    """operation taxonomy"""

    POWER_TOGGLE = "power toggle"
    VOLUME_SET = "volume set"
    VOLUME_UP = "volume up"
    VOLUME_DOWN = "volume down"
    SOURCE_NEXT = "source next"
    SOURCE_PREV = "source previous"
    SOURCE_SET = "source set"
    BRIGHTNESS_SET = "brightness set"
    BRIGHTNESS_UP = "brightness up"
    BRIGHTNESS_DOWN = "brightness down"
    MUTE_TOGGLE = "mute toggle"
    REFRESH = "refresh"
    DISCOVER = "discover"
    CONNECT = "connect"
    SPOTIFY_PLAY_PAUSE = "spotify play/pause"
    SPOTIFY_NEXT = "spotify next"
    SPOTIFY_PREV = "spotify previous"
    SPOTIFY_SHUFFLE = "spotify shuffle"
    SPOTIFY_REFRESH = "spotify refresh"
    SPOTIFY_DEVICES = "spotify devices"
    SPOTIFY_TRANSFER = "spotify transfer"
    SPOTIFY_AUTH = "spotify auth"
    SPOTIFY_DISCONNECT = "spotify disconnect"

    @property
    def is_spotify(self) -> bool:
        """operations handled by the Spotify controller"""
        return self.name.startswith("SPOTIFY_")


VOLUME_KINDS = frozenset({OpKind.VOLUME_SET, OpKind.VOLUME_UP, OpKind.VOLUME_DOWN})

# kinds where only the newest pending request matters
COALESCED_GROUPS: tuple[frozenset[OpKind], ...] = (
    VOLUME_KINDS,
    frozenset({OpKind.REFRESH}),
    frozenset({OpKind.SPOTIFY_REFRESH}),
)


@dataclass(frozen=True)
class QueuedOperation:
    """one unit of work for the worker"""

    kind: OpKind
    params: dict[str, Any] = field(default_factory=dict)
    id: int = field(default_factory=lambda: next(_ids))
    enqueued_at: float = field(default_factory=time.monotonic)


class CommandQueue:
    """ordered buffer of operations with coalescing"""

    def __init__(self):
        self._items: collections.deque[QueuedOperation] = collections.deque()

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def pending(self) -> list[QueuedOperation]:
        """copy of the queue contents, head first"""
        return list(self._items)

    def has_pending(self, kind: OpKind) -> bool:
        """is an operation of this kind waiting"""
        return any(item.kind == kind for item in self._items)

    def put(
        self, kind_or_op: OpKind | QueuedOperation, urgent: bool = False, **params
    ) -> QueuedOperation:
        """
        add an operation

        Volume operations replace any pending volume operation and join the
        tail.  A refresh request takes the place of a pending refresh, so a
        refresh already waiting at the head stays there.  Urgent operations
        go to the head of the queue.
        """
        if isinstance(kind_or_op, QueuedOperation):
            operation = kind_or_op
        else:
            operation = QueuedOperation(kind=kind_or_op, params=params)

        for group in COALESCED_GROUPS:
            if operation.kind not in group:
                continue
            if group is VOLUME_KINDS:
                before = len(self._items)
                self._items = collections.deque(
                    item for item in self._items if item.kind not in group
                )
                if dropped := before - len(self._items):
                    logging.debug("Coalesced %d pending %s operation(s)", dropped, operation.kind.value)
                break
            for index, item in enumerate(self._items):
                if item.kind in group:
                    logging.debug("Coalesced pending %s operation", operation.kind.value)
                    if urgent:
                        del self._items[index]
                        break
                    self._items[index] = operation
                    return operation
            break

        if urgent:
            self._items.appendleft(operation)
        else:
            self._items.append(operation)
        return operation

    def get(self) -> QueuedOperation | None:
        """pop the head, or None when empty"""
        if not self._items:
            return None
        return self._items.popleft()

    def clear(self) -> None:
        """drop everything"""
        self._items.clear()
