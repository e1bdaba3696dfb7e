"""Tasks reported by an instrumented runtime, their statistics and lints."""

from __future__ import annotations

import enum
import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional, Protocol

from taskconsole.fields import (
    Field,
    FieldKind,
    FieldValue,
    Location,
    Metadata,
    Span,
    WireField,
    format_fields,
    format_location,
)
from taskconsole.store import Id, Ids, SpanId, Store, Visibility
from taskconsole.util import percent_of

logger = logging.getLogger(__name__)

_ZERO = timedelta(0)


def _elapsed(later: datetime, earlier: datetime) -> timedelta:
    """Time from ``earlier`` to ``later``, or zero if ``later`` comes first."""
    delta = later - earlier
    return delta if delta > _ZERO else _ZERO


def _later(a: Optional[datetime], b: Optional[datetime]) -> bool:
    """Compare optional timestamps where a missing one is earliest."""
    if a is None:
        return False
    if b is None:
        return True
    return a > b


def _wire_duration(value: Optional[timedelta]) -> timedelta:
    if value is None:
        return _ZERO
    if value < _ZERO:
        raise ValueError("duration should not be negative")
    return value


def _optional_key(value: Any) -> tuple:
    return (0,) if value is None else (1, value)


class TaskState(enum.IntEnum):
    """What a task is doing; ordered for sorting."""

    COMPLETED = 0
    IDLE = 1
    RUNNING = 2
    SCHEDULED = 3

    def render(self, utf8: bool) -> Span:
        """Return the symbol shown for this state."""
        if self is TaskState.RUNNING:
            return Span("\u25B6" if utf8 else "BUSY", color="green")
        if self is TaskState.SCHEDULED:
            return Span("\u23EB" if utf8 else "SCHED")
        if self is TaskState.IDLE:
            return Span("\u23F8" if utf8 else "IDLE")
        return Span("\u23F9" if utf8 else "DONE")


class LintKind(enum.Enum):
    OK = "ok"
    WARNING = "warning"
    RECHECK = "recheck"


@dataclass(frozen=True)
class Lint:
    """The outcome of checking one task with one linter."""

    kind: LintKind
    linter: Any = None

    @classmethod
    def ok(cls) -> Lint:
        return cls(LintKind.OK)

    @classmethod
    def recheck(cls) -> Lint:
        return cls(LintKind.RECHECK)

    @classmethod
    def warning(cls, linter: Any) -> Lint:
        return cls(LintKind.WARNING, linter)


class Linter(Protocol):
    """Anything that can check a task and count the warnings it found."""

    def check(self, task: Task) -> Lint: ...

    def count(self) -> int: ...


@dataclass
class PollStats:
    polls: int = 0
    busy_time: Optional[timedelta] = None
    last_poll_started: Optional[datetime] = None
    last_poll_ended: Optional[datetime] = None


@dataclass
class WireTaskStats:
    created_at: Optional[datetime] = None
    dropped_at: Optional[datetime] = None
    poll_stats: Optional[PollStats] = None
    scheduled_time: Optional[timedelta] = None
    last_wake: Optional[datetime] = None
    wakes: int = 0
    waker_clones: int = 0
    waker_drops: int = 0
    self_wakes: int = 0


@dataclass
class WireTask:
    id: Optional[SpanId] = None
    metadata: Optional[int] = None
    fields: list[WireField] = field(default_factory=list)
    location: Optional[Location] = None


@dataclass
class TaskUpdate:
    new_tasks: list[WireTask] = field(default_factory=list)
    stats_update: dict[SpanId, WireTaskStats] = field(default_factory=dict)
    dropped_events: int = 0


@dataclass
class TaskStats:
    polls: int
    created_at: datetime
    dropped_at: Optional[datetime]
    busy: timedelta
    scheduled: timedelta
    last_poll_started: Optional[datetime]
    last_poll_ended: Optional[datetime]
    idle: Optional[timedelta]
    total: Optional[timedelta]
    wakes: int
    waker_clones: int
    waker_drops: int
    last_wake: Optional[datetime]
    self_wakes: int

    @classmethod
    def from_wire(cls, wire: WireTaskStats) -> TaskStats:
        """Build stats from the wire; creation time and poll stats are required."""
        if wire.created_at is None:
            raise ValueError("task span was never created")
        if wire.poll_stats is None:
            raise ValueError("task should have poll stats")
        created_at = wire.created_at
        dropped_at = wire.dropped_at
        total = None if dropped_at is None else _elapsed(dropped_at, created_at)
        poll_stats = wire.poll_stats
        busy = _wire_duration(poll_stats.busy_time)
        scheduled = _wire_duration(wire.scheduled_time)
        idle = None
        if total is not None:
            remaining = total - (busy + scheduled)
            idle = remaining if remaining > _ZERO else _ZERO
        return cls(
            polls=poll_stats.polls,
            created_at=created_at,
            dropped_at=dropped_at,
            busy=busy,
            scheduled=scheduled,
            last_poll_started=poll_stats.last_poll_started,
            last_poll_ended=poll_stats.last_poll_ended,
            idle=idle,
            total=total,
            wakes=wire.wakes,
            waker_clones=wire.waker_clones,
            waker_drops=wire.waker_drops,
            last_wake=wire.last_wake,
            self_wakes=wire.self_wakes,
        )


@dataclass(eq=False)
class Task:
    """A task, with a sequential id assigned for its remote span id."""

    id: Id
    task_id: Optional[int]
    span_id: SpanId
    id_str: str
    short_desc: str
    formatted_fields: list[list[Span]]
    stats: TaskStats
    target: str
    name: Optional[str]
    location: str
    kind: str
    size_bytes: Optional[int] = None
    original_size_bytes: Optional[int] = None
    warnings: list[Any] = field(default_factory=list)

    @property
    def total_polls(self) -> int:
        return self.stats.polls

    @property
    def last_wake(self) -> Optional[datetime]:
        return self.stats.last_wake

    @property
    def wakes(self) -> int:
        return self.stats.wakes

    @property
    def self_wakes(self) -> int:
        return self.stats.self_wakes

    @property
    def waker_clones(self) -> int:
        return self.stats.waker_clones

    @property
    def waker_drops(self) -> int:
        return self.stats.waker_drops

    def is_running(self) -> bool:
        """True if the task is being polled right now."""
        return _later(self.stats.last_poll_started, self.stats.last_poll_ended)

    def is_scheduled(self) -> bool:
        return _later(self.stats.last_wake, self.stats.last_poll_started)

    def is_blocking(self) -> bool:
        return self.kind in ("block_on", "blocking")

    def is_completed(self) -> bool:
        return self.stats.total is not None

    def state(self) -> TaskState:
        if self.is_completed():
            return TaskState.COMPLETED
        if self.is_running():
            return TaskState.RUNNING
        if self.is_scheduled():
            return TaskState.SCHEDULED
        return TaskState.IDLE

    def total(self, since: datetime) -> timedelta:
        if self.stats.total is not None:
            return self.stats.total
        return _elapsed(since, self.stats.created_at)

    def busy(self, since: datetime) -> timedelta:
        started = self.stats.last_poll_started
        if started is not None and _later(started, self.stats.last_poll_ended):
            return self.stats.busy + _elapsed(since, started)
        return self.stats.busy

    def scheduled(self, since: datetime) -> timedelta:
        wake = self.stats.last_wake
        if wake is not None and _later(wake, self.stats.last_poll_started):
            return self.stats.scheduled + _elapsed(since, wake)
        return self.stats.scheduled

    def idle(self, since: datetime) -> timedelta:
        if self.stats.idle is not None:
            return self.stats.idle
        remaining = self.total(since) - (self.busy(since) + self.scheduled(since))
        return remaining if remaining > _ZERO else _ZERO

    def since_wake(self, now: datetime) -> Optional[timedelta]:
        """Time since the last wake, or None if never woken or woken after ``now``."""
        if self.stats.last_wake is None:
            return None
        delta = now - self.stats.last_wake
        return delta if delta >= _ZERO else None

    def waker_count(self) -> int:
        """The number of wakers currently alive for this task."""
        return max(self.waker_clones - self.waker_drops, 0)

    def self_wake_percent(self) -> int:
        return percent_of(self.self_wakes, self.wakes)

    def is_awakened(self) -> bool:
        """True if the task was woken and has not been polled since."""
        return self.total_polls == 0 or _later(self.last_wake, self.stats.last_poll_started)

    def lint(self, linters: Iterable[Linter]) -> bool:
        """Run every linter, collecting warnings; return True if a recheck is needed."""
        self.warnings.clear()
        recheck = False
        for linter in linters:
            logger.debug("checking task %s with %r", self.id, linter)
            result = linter.check(self)
            if result.kind is LintKind.WARNING:
                logger.info("found a warning for task %s: %r", self.id, result.linter)
                self.warnings.append(result.linter)
            elif result.kind is LintKind.RECHECK:
                recheck = True
        return recheck


@dataclass
class Details:
    span_id: SpanId = 0
    poll_times_histogram: Any = None
    scheduled_times_histogram: Any = None


class TaskSortBy(enum.IntEnum):
    """Columns of the task list that can be sorted by."""

    WARNS = 0
    TID = 1
    STATE = 2
    NAME = 3
    TOTAL = 4
    BUSY = 5
    SCHEDULED = 6
    IDLE = 7
    POLLS = 8
    TARGET = 9
    LOCATION = 10

    @classmethod
    def default(cls) -> TaskSortBy:
        return cls.TOTAL

    @classmethod
    def from_column(cls, index: int) -> TaskSortBy:
        """Return the sort order for a column index; ValueError if out of range."""
        return cls(index)

    def sort(self, now: datetime, tasks: list[Optional[Task]]) -> None:
        """Sort ``tasks`` in place; missing entries come first."""
        key_of = {
            TaskSortBy.TID: lambda t: _optional_key(t.task_id),
            TaskSortBy.NAME: lambda t: _optional_key(t.name),
            TaskSortBy.STATE: lambda t: t.state(),
            TaskSortBy.WARNS: lambda t: len(t.warnings),
            TaskSortBy.TOTAL: lambda t: t.total(now),
            TaskSortBy.IDLE: lambda t: t.idle(now),
            TaskSortBy.SCHEDULED: lambda t: t.scheduled(now),
            TaskSortBy.BUSY: lambda t: t.busy(now),
            TaskSortBy.POLLS: lambda t: t.total_polls,
            TaskSortBy.TARGET: lambda t: t.target,
            TaskSortBy.LOCATION: lambda t: t.location,
        }[self]
        tasks.sort(key=lambda t: (0,) if t is None else (1, key_of(t)))


class TasksState:
    """All known tasks, with lint bookkeeping."""

    def __init__(self) -> None:
        self.tasks: Store[Task] = Store()
        self.pending_lint: set[Id] = set()
        self.linters: list[Linter] = []
        self.dropped_events = 0

    @property
    def ids(self) -> Ids:
        return self.tasks.ids

    def take_new_tasks(self) -> list[Task]:
        """Return the tasks added since the last call."""
        return self.tasks.take_new_items()

    def update_tasks(
        self,
        metas: Mapping[int, Metadata],
        update: TaskUpdate,
        visibility: Visibility,
    ) -> None:
        stats_update = dict(update.stats_update)
        linters = self.linters
        next_pending: set[Id] = set()

        def build(ids: Ids, wire: WireTask) -> Optional[tuple[Id, Task]]:
            if wire.id is None:
                logger.warning("task has no id, skipping: %r", wire)
                return None
            span_id = wire.id
            if wire.metadata is None:
                logger.warning("task has no metadata id, skipping: %r", wire)
                return None
            meta = metas.get(wire.metadata)
            if meta is None:
                logger.warning("no metadata for task, skipping: %r", wire)
                return None

            name: Optional[str] = None
            task_id: Optional[int] = None
            kind = ""
            size_bytes: Optional[int] = None
            original_size_bytes: Optional[int] = None
            fields: list[Field] = []
            for wire_field in wire.fields:
                resolved = Field.from_wire(wire_field, meta)
                if resolved is None:
                    continue
                value = resolved.value
                is_u64 = value.kind is FieldKind.U64
                if resolved.name == Field.NAME:
                    name = str(value)
                    continue
                if resolved.name == Field.TASK_ID:
                    task_id = int(value.value) if is_u64 else None
                    continue
                if resolved.name == Field.KIND:
                    kind = str(value)
                    continue
                if resolved.name == Field.SIZE_BYTES:
                    size_bytes = int(value.value) if is_u64 else None
                elif resolved.name == Field.ORIGINAL_SIZE_BYTES:
                    original_size_bytes = int(value.value) if is_u64 else None
                fields.append(resolved)
            fields.append(Field("target", FieldValue(FieldKind.STR, meta.target)))
            formatted_fields = format_fields(fields)

            wire_stats = stats_update.pop(span_id, None)
            if wire_stats is None:
                return None
            stats = TaskStats.from_wire(wire_stats)
            location = format_location(wire.location)
            id = ids.id_for(span_id)

            if task_id is not None and name is not None:
                short_desc = f"{task_id} ({name})"
            elif task_id is not None:
                short_desc = str(task_id)
            else:
                short_desc = name or ""

            task = Task(
                id=id,
                task_id=task_id,
                span_id=span_id,
                id_str="" if task_id is None else str(task_id),
                short_desc=short_desc,
                formatted_fields=formatted_fields,
                stats=stats,
                target=meta.target,
                name=name,
                location=location,
                kind=kind,
                size_bytes=size_bytes,
                original_size_bytes=original_size_bytes,
            )
            if task.lint(linters):
                next_pending.add(id)
            return id, task

        self.tasks.insert_with(visibility, update.new_tasks, build)

        for wire_stats, task in self.tasks.updated(stats_update):
            logger.debug("processing stats update for task %s", task.id)
            task.stats = TaskStats.from_wire(wire_stats)
            if task.lint(linters):
                next_pending.add(task.id)
            else:
                self.pending_lint.discard(task.id)

        for id in self.pending_lint:
            task = self.tasks.get(id)
            if task is not None and task.lint(linters):
                next_pending.add(id)
        self.pending_lint = next_pending

        self.dropped_events += update.dropped_events

    def retain_active(self, now: datetime, retain_for: timedelta) -> None:
        """Forget tasks that completed at least ``retain_for`` before ``now``."""

        def keep(_id: Id, task: Task) -> bool:
            dropped_at = task.stats.dropped_at
            return dropped_at is None or retain_for > _elapsed(now, dropped_at)

        self.tasks.retain(keep)

    def warnings(self) -> list[Linter]:
        """Return the linters that have found at least one warning."""
        return [linter for linter in self.linters if linter.count() > 0]

    def task(self, id: Id) -> Optional[Task]:
        return self.tasks.get(id)


__all__: Sequence[str] = (
    "Details",
    "Lint",
    "LintKind",
    "Linter",
    "PollStats",
    "Task",
    "TaskSortBy",
    "TaskState",
    "TaskStats",
    "TaskUpdate",
    "TasksState",
    "WireTask",
    "WireTaskStats",
)