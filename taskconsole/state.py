"""The console's view of everything an instrumented process reports."""

from __future__ import annotations

import enum
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from taskconsole.async_ops import AsyncOpUpdate, AsyncOpsState
from taskconsole.fields import Metadata, WireMetadata
from taskconsole.resources import ResourcesState, ResourceUpdate
from taskconsole.store import Visibility
from taskconsole.tasks import Details, Linter, TasksState, TaskUpdate


class Temporality(enum.Enum):
    UNPAUSING = "unpausing"
    LIVE = "live"
    PAUSING = "pausing"
    PAUSED = "paused"


_WIRE_TEMPORALITY = {0: Temporality.LIVE, 1: Temporality.PAUSED}


class ViewState(enum.Enum):
    """Which view the console is currently showing."""

    TASKS_LIST = "tasks_list"
    TASK_INSTANCE = "task_instance"
    RESOURCES_LIST = "resources_list"
    RESOURCE_INSTANCE = "resource_instance"


@dataclass
class TaskDetailsUpdate:
    task_id: Optional[int] = None
    poll_times_histogram: Any = None
    scheduled_times_histogram: Any = None


@dataclass
class WireUpdate:
    """One update from the instrumented process.

    ``new_metadata`` holds ``(id, metadata)`` pairs; entries missing either
    part are ignored.
    """

    now: Optional[datetime] = None
    new_metadata: Optional[list[tuple[Optional[int], Optional[WireMetadata]]]] = None
    task_update: Optional[TaskUpdate] = None
    resource_update: Optional[ResourceUpdate] = None
    async_op_update: Optional[AsyncOpUpdate] = None


def _visibility(shown: bool) -> Visibility:
    return Visibility.SHOW if shown else Visibility.HIDE


class State:
    """Tasks, resources and async ops, plus pause state and task details."""

    def __init__(self) -> None:
        self.metas: dict[int, Metadata] = {}
        self.last_updated_at: Optional[datetime] = None
        self.temporality = Temporality.LIVE
        self.tasks_state = TasksState()
        self.resources_state = ResourcesState()
        self.async_ops_state = AsyncOpsState()
        self.current_task_details: Optional[Details] = None
        self.retain_for: Optional[timedelta] = None

    def with_retain_for(self, retain_for: Optional[timedelta]) -> State:
        self.retain_for = retain_for
        return self

    def with_task_linters(self, linters: Iterable[Linter]) -> State:
        self.tasks_state.linters.extend(linters)
        return self

    def update(self, current_view: ViewState, update: WireUpdate) -> None:
        if update.now is not None:
            self.last_updated_at = update.now

        if update.new_metadata is not None:
            for id, wire in update.new_metadata:
                if id is None or wire is None:
                    continue
                self.metas[id] = Metadata.from_wire(wire, id)

        if update.task_update is not None:
            self.tasks_state.update_tasks(
                self.metas,
                update.task_update,
                _visibility(current_view is ViewState.TASKS_LIST),
            )

        if update.resource_update is not None:
            self.resources_state.update_resources(
                self.metas,
                update.resource_update,
                _visibility(current_view is ViewState.RESOURCES_LIST),
            )

        if update.async_op_update is not None:
            self.async_ops_state.update_async_ops(
                self.metas,
                update.async_op_update,
                self.resources_state.ids,
                self.tasks_state.ids,
                _visibility(current_view is ViewState.RESOURCE_INSTANCE),
            )

    def retain_active(self) -> None:
        """Forget finished items older than the retention period, unless paused."""
        if self.is_paused():
            return
        if self.last_updated_at is not None and self.retain_for is not None:
            now, retain_for = self.last_updated_at, self.retain_for
            self.tasks_state.retain_active(now, retain_for)
            self.resources_state.retain_active(now, retain_for)
            self.async_ops_state.retain_active(now, retain_for)

    def update_task_details(self, update: TaskDetailsUpdate) -> None:
        if update.task_id is None:
            return
        self.current_task_details = Details(
            span_id=update.task_id,
            poll_times_histogram=update.poll_times_histogram,
            scheduled_times_histogram=update.scheduled_times_histogram,
        )

    def unset_task_details(self) -> None:
        self.current_task_details = None

    def start_unpausing(self) -> None:
        self.temporality = Temporality.UNPAUSING

    def start_pausing(self) -> None:
        self.temporality = Temporality.PAUSING

    def update_temporality(self, temporality: int) -> None:
        """Set the temporality from its wire value; ValueError if unknown."""
        try:
            self.temporality = _WIRE_TEMPORALITY[temporality]
        except KeyError:
            raise ValueError(f"invalid temporality: {temporality!r}") from None

    def is_paused(self) -> bool:
        return self.temporality in (Temporality.PAUSED, Temporality.PAUSING)


__all__: Sequence[str] = (
    "State",
    "TaskDetailsUpdate",
    "Temporality",
    "ViewState",
    "WireUpdate",
)