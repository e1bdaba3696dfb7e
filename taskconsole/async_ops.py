"""Async operations performed on resources, and their statistics."""

from __future__ import annotations

import enum
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from taskconsole.fields import (
    Attribute,
    Field,
    Metadata,
    Span,
    WireAttribute,
    format_attributes,
)
from taskconsole.store import Id, Ids, SpanId, Store, Visibility
from taskconsole.tasks import PollStats

logger = logging.getLogger(__name__)

_ZERO = timedelta(0)


def _elapsed(later: datetime, earlier: datetime) -> timedelta:
    """Time from ``earlier`` to ``later``, or zero if ``later`` comes first."""
    delta = later - earlier
    return delta if delta > _ZERO else _ZERO


def _wire_duration(value: Optional[timedelta]) -> timedelta:
    if value is None:
        return _ZERO
    if value < _ZERO:
        raise ValueError("duration should not be negative")
    return value


def _optional_key(value: Any) -> tuple:
    return (0,) if value is None else (1, value)


@dataclass
class WireAsyncOpStats:
    created_at: Optional[datetime] = None
    dropped_at: Optional[datetime] = None
    poll_stats: Optional[PollStats] = None
    task_id: Optional[SpanId] = None
    attributes: list[WireAttribute] = field(default_factory=list)


@dataclass
class WireAsyncOp:
    id: Optional[SpanId] = None
    metadata: Optional[int] = None
    resource_id: Optional[SpanId] = None
    parent_async_op_id: Optional[SpanId] = None
    source: str = ""


@dataclass
class AsyncOpUpdate:
    new_async_ops: list[WireAsyncOp] = field(default_factory=list)
    stats_update: dict[SpanId, WireAsyncOpStats] = field(default_factory=dict)
    dropped_events: int = 0


@dataclass
class AsyncOpStats:
    created_at: datetime
    dropped_at: Optional[datetime]
    polls: int
    busy: timedelta
    last_poll_started: Optional[datetime]
    last_poll_ended: Optional[datetime]
    idle: Optional[timedelta]
    total: Optional[timedelta]
    task_id: Optional[Id]
    task_id_str: str
    formatted_attributes: list[list[Span]]

    @classmethod
    def from_wire(
        cls, wire: WireAsyncOpStats, meta: Metadata, task_ids: Ids
    ) -> AsyncOpStats:
        """Build stats from the wire; creation time and poll stats are required."""
        attributes = []
        for wire_attr in wire.attributes:
            if wire_attr.field is None:
                continue
            resolved = Field.from_wire(wire_attr.field, meta)
            if resolved is None:
                continue
            attributes.append(Attribute(resolved, wire_attr.unit))

        if wire.created_at is None:
            raise ValueError("async op span was never created")
        created_at = wire.created_at
        dropped_at = wire.dropped_at
        total = None if dropped_at is None else _elapsed(dropped_at, created_at)

        if wire.poll_stats is None:
            raise ValueError("task should have poll stats")
        poll_stats = wire.poll_stats
        busy = _wire_duration(poll_stats.busy_time)
        idle = None
        if total is not None:
            remaining = total - busy
            idle = remaining if remaining > _ZERO else _ZERO
        formatted = format_attributes(attributes)
        task_id = None if wire.task_id is None else task_ids.id_for(wire.task_id)
        return cls(
            created_at=created_at,
            dropped_at=dropped_at,
            polls=poll_stats.polls,
            busy=busy,
            last_poll_started=poll_stats.last_poll_started,
            last_poll_ended=poll_stats.last_poll_ended,
            idle=idle,
            total=total,
            task_id=task_id,
            task_id_str="n/a" if task_id is None else str(task_id),
            formatted_attributes=formatted,
        )


@dataclass(eq=False)
class AsyncOp:
    """An async operation on a resource."""

    id: Id
    parent_id: str
    resource_id: Id
    meta_id: int
    source: str
    stats: AsyncOpStats

    @property
    def task_id(self) -> Optional[Id]:
        return self.stats.task_id

    @property
    def task_id_str(self) -> str:
        return self.stats.task_id_str

    @property
    def total_polls(self) -> int:
        return self.stats.polls

    @property
    def formatted_attributes(self) -> list[list[Span]]:
        return self.stats.formatted_attributes

    def total(self, since: datetime) -> timedelta:
        if self.stats.total is not None:
            return self.stats.total
        delta = since - self.stats.created_at
        return delta if delta >= _ZERO else _ZERO

    def busy(self, since: datetime) -> timedelta:
        started = self.stats.last_poll_started
        if started is not None and self.stats.last_poll_ended is None:
            return self.stats.busy + _elapsed(since, started)
        return self.stats.busy

    def idle(self, since: datetime) -> timedelta:
        if self.stats.idle is not None:
            return self.stats.idle
        remaining = self.total(since) - self.busy(since)
        return remaining if remaining >= _ZERO else _ZERO

    def dropped(self) -> bool:
        return self.stats.total is not None


class AsyncOpSortBy(enum.IntEnum):
    """Columns of the async op list that can be sorted by."""

    AID = 0
    TASK = 1
    SOURCE = 2
    TOTAL = 3
    BUSY = 4
    IDLE = 5
    POLLS = 6

    @classmethod
    def default(cls) -> AsyncOpSortBy:
        return cls.AID

    @classmethod
    def from_column(cls, index: int) -> AsyncOpSortBy:
        """Return the sort order for a column index; ValueError if out of range."""
        return cls(index)

    def sort(self, now: datetime, ops: list[Optional[AsyncOp]]) -> None:
        """Sort ``ops`` in place; missing entries come first."""
        key_of = {
            AsyncOpSortBy.AID: lambda o: o.id,
            AsyncOpSortBy.TASK: lambda o: _optional_key(o.task_id),
            AsyncOpSortBy.SOURCE: lambda o: o.source,
            AsyncOpSortBy.TOTAL: lambda o: o.total(now),
            AsyncOpSortBy.BUSY: lambda o: o.busy(now),
            AsyncOpSortBy.IDLE: lambda o: o.idle(now),
            AsyncOpSortBy.POLLS: lambda o: o.total_polls,
        }[self]
        ops.sort(key=lambda o: (0,) if o is None else (1, key_of(o)))


class AsyncOpsState:
    """All known async operations."""

    def __init__(self) -> None:
        self.ops: Store[AsyncOp] = Store()
        self.dropped_events = 0

    def take_new_async_ops(self) -> list[AsyncOp]:
        """Return the async ops added since the last call."""
        return self.ops.take_new_items()

    def async_ops(self) -> list[AsyncOp]:
        return list(self.ops.values())

    def update_async_ops(
        self,
        metas: Mapping[int, Metadata],
        update: AsyncOpUpdate,
        resource_ids: Ids,
        task_ids: Ids,
        visibility: Visibility,
    ) -> None:
        stats_update = dict(update.stats_update)

        def build(ids: Ids, wire: WireAsyncOp) -> Optional[tuple[Id, AsyncOp]]:
            if wire.id is None:
                logger.warning("skipping async op with no id: %r", wire)
                return None
            span_id = wire.id
            if wire.metadata is None:
                logger.warning("async op has no metadata id, skipping: %r", wire)
                return None
            meta = metas.get(wire.metadata)
            if meta is None:
                logger.warning("no metadata for async op, skipping: %r", wire)
                return None
            wire_stats = stats_update.pop(span_id, None)
            if wire_stats is None:
                return None
            stats = AsyncOpStats.from_wire(wire_stats, meta, task_ids)

            id = ids.id_for(span_id)
            if wire.resource_id is None:
                return None
            resource_id = resource_ids.id_for(wire.resource_id)
            if wire.parent_async_op_id is None:
                parent_id = "n/a"
            else:
                parent_id = str(ids.id_for(wire.parent_async_op_id))

            op = AsyncOp(
                id=id,
                parent_id=parent_id,
                resource_id=resource_id,
                meta_id=wire.metadata,
                source=wire.source,
                stats=stats,
            )
            return id, op

        self.ops.insert_with(visibility, update.new_async_ops, build)

        for wire_stats, op in self.ops.updated(stats_update):
            meta = metas.get(op.meta_id)
            if meta is not None:
                logger.debug("processing stats update for async op %s", op.id)
                op.stats = AsyncOpStats.from_wire(wire_stats, meta, task_ids)

        self.dropped_events += update.dropped_events

    def retain_active(self, now: datetime, retain_for: timedelta) -> None:
        """Forget async ops dropped at least ``retain_for`` before ``now``."""

        def keep(_id: Id, op: AsyncOp) -> bool:
            dropped_at = op.stats.dropped_at
            return dropped_at is None or retain_for > _elapsed(now, dropped_at)

        self.ops.retain(keep)


__all__: Sequence[str] = (
    "AsyncOp",
    "AsyncOpSortBy",
    "AsyncOpStats",
    "AsyncOpUpdate",
    "AsyncOpsState",
    "WireAsyncOp",
    "WireAsyncOpStats",
)