"""Resources reported by an instrumented runtime and their statistics."""

from __future__ import annotations

import enum
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional, Union

from taskconsole.fields import (
    Attribute,
    Field,
    Location,
    Metadata,
    Span,
    WireAttribute,
    format_attributes,
    format_location,
)
from taskconsole.store import Id, Ids, SpanId, Store, Visibility

logger = logging.getLogger(__name__)

_ZERO = timedelta(0)

TIMER_KIND = 0
"""The wire value of the one known resource kind, a timer."""


def _elapsed(later: datetime, earlier: datetime) -> timedelta:
    """Time from ``earlier`` to ``later``, or zero if ``later`` comes first."""
    delta = later - earlier
    return delta if delta > _ZERO else _ZERO


def _optional_key(value: Any) -> tuple:
    return (0,) if value is None else (1, value)


class TypeVisibility(enum.IntEnum):
    """Whether a resource type is public or internal to the runtime."""

    PUBLIC = 0
    INTERNAL = 1

    def render(self, utf8: bool) -> Span:
        """Return the symbol shown for this visibility."""
        if self is TypeVisibility.INTERNAL:
            return Span("\U0001F512" if utf8 else "INT", color="red")
        return Span("\u2705" if utf8 else "PUB", color="green")


@dataclass
class WireResourceStats:
    created_at: Optional[datetime] = None
    dropped_at: Optional[datetime] = None
    attributes: list[WireAttribute] = field(default_factory=list)


@dataclass
class WireResource:
    """A resource as sent on the wire.

    ``kind`` is an integer for a known kind, a string for any other kind.
    """

    id: Optional[SpanId] = None
    metadata: Optional[int] = None
    kind: Union[int, str, None] = None
    concrete_type: str = ""
    location: Optional[Location] = None
    is_internal: bool = False
    parent_resource_id: Optional[SpanId] = None


@dataclass
class ResourceUpdate:
    new_resources: list[WireResource] = field(default_factory=list)
    stats_update: dict[SpanId, WireResourceStats] = field(default_factory=dict)
    dropped_events: int = 0


def kind_from_wire(kind: Union[int, str]) -> str:
    """Return the display name of a wire resource kind.

    Raises ValueError for a known kind that is not recognised.
    """
    if isinstance(kind, str):
        return kind
    if kind == TIMER_KIND:
        return "Timer"
    raise ValueError(f"failed to parse known kind from {kind}")


@dataclass
class ResourceStats:
    created_at: datetime
    dropped_at: Optional[datetime]
    total: Optional[timedelta]
    formatted_attributes: list[list[Span]]

    @classmethod
    def from_wire(cls, wire: WireResourceStats, meta: Metadata) -> ResourceStats:
        """Build stats from the wire; the creation time is required."""
        attributes = []
        for wire_attr in wire.attributes:
            if wire_attr.field is None:
                continue
            resolved = Field.from_wire(wire_attr.field, meta)
            if resolved is None:
                continue
            attributes.append(Attribute(resolved, wire_attr.unit))
        formatted = format_attributes(attributes)
        if wire.created_at is None:
            raise ValueError("resource span was never created")
        created_at = wire.created_at
        dropped_at = wire.dropped_at
        total = None if dropped_at is None else _elapsed(dropped_at, created_at)
        return cls(
            created_at=created_at,
            dropped_at=dropped_at,
            total=total,
            formatted_attributes=formatted,
        )


@dataclass(eq=False)
class Resource:
    """A resource, known by a sequential console id as well as its remote span id."""

    id: Id
    span_id: SpanId
    id_str: str
    parent: str
    parent_id: str
    meta_id: int
    kind: str
    stats: ResourceStats
    target: str
    concrete_type: str
    location: str
    visibility: TypeVisibility

    @property
    def formatted_attributes(self) -> list[list[Span]]:
        return self.stats.formatted_attributes

    def total(self, since: datetime) -> timedelta:
        if self.stats.total is not None:
            return self.stats.total
        return _elapsed(since, self.stats.created_at)

    def dropped(self) -> bool:
        return self.stats.total is not None


def _first_attribute_key(resource: Resource) -> Optional[str]:
    attributes = resource.formatted_attributes
    if not attributes or not attributes[0]:
        return None
    return attributes[0][0].content


class ResourceSortBy(enum.IntEnum):
    """Columns of the resource list that can be sorted by."""

    ID = 0
    PARENT_ID = 1
    KIND = 2
    TOTAL = 3
    TARGET = 4
    CONCRETE_TYPE = 5
    VISIBILITY = 6
    LOCATION = 7
    ATTRIBUTES = 8

    @classmethod
    def default(cls) -> ResourceSortBy:
        return cls.ID

    @classmethod
    def from_column(cls, index: int) -> ResourceSortBy:
        """Return the sort order for a column index; ValueError if out of range."""
        return cls(index)

    def sort(self, now: datetime, resources: list[Optional[Resource]]) -> None:
        """Sort ``resources`` in place; missing entries come first."""
        if self is ResourceSortBy.ATTRIBUTES:
            # Only the key of the first attribute is used for ordering.
            def outer(r: Optional[Resource]) -> tuple:
                return _optional_key(None if r is None else _first_attribute_key(r))

            resources.sort(key=outer)
            return

        key_of = {
            ResourceSortBy.ID: lambda r: r.id,
            ResourceSortBy.PARENT_ID: lambda r: r.parent_id,
            ResourceSortBy.KIND: lambda r: r.kind,
            ResourceSortBy.TOTAL: lambda r: r.total(now),
            ResourceSortBy.TARGET: lambda r: r.target,
            ResourceSortBy.CONCRETE_TYPE: lambda r: r.concrete_type,
            ResourceSortBy.VISIBILITY: lambda r: r.visibility,
            ResourceSortBy.LOCATION: lambda r: r.location,
        }[self]
        resources.sort(key=lambda r: (0,) if r is None else (1, key_of(r)))


class ResourcesState:
    """All known resources."""

    def __init__(self) -> None:
        self.resources: Store[Resource] = Store()
        self.dropped_events = 0

    @property
    def ids(self) -> Ids:
        return self.resources.ids

    def take_new_resources(self) -> list[Resource]:
        """Return the resources added since the last call."""
        return self.resources.take_new_items()

    def update_resources(
        self,
        metas: Mapping[int, Metadata],
        update: ResourceUpdate,
        visibility: Visibility,
    ) -> None:
        parents: dict[Id, Resource] = {}
        for wire in update.new_resources:
            if wire.parent_resource_id is None:
                continue
            parent = self.resources.get_by_span(wire.parent_resource_id)
            if parent is not None:
                parents[parent.id] = parent

        stats_update = dict(update.stats_update)

        def build(ids: Ids, wire: WireResource) -> Optional[tuple[Id, Resource]]:
            if wire.id is None:
                logger.warning("skipping resource with no id: %r", wire)
                return None
            span_id = wire.id
            if wire.metadata is None:
                logger.warning("resource has no metadata id, skipping: %r", wire)
                return None
            meta = metas.get(wire.metadata)
            if meta is None:
                logger.warning("no metadata for resource, skipping: %r", wire)
                return None
            if wire.kind is None:
                return None
            try:
                kind = kind_from_wire(wire.kind)
            except ValueError as err:
                logger.warning("resource kind cannot be parsed: %s", err)
                return None

            wire_stats = stats_update.pop(span_id, None)
            if wire_stats is None:
                return None
            stats = ResourceStats.from_wire(wire_stats, meta)

            id = ids.id_for(span_id)
            parent_id = (
                None if wire.parent_resource_id is None else ids.id_for(wire.parent_resource_id)
            )
            if parent_id is None:
                parent = "n/a"
            else:
                known = parents.get(parent_id)
                if known is not None:
                    parent = f"{known.id} ({known.target}::{known.concrete_type})"
                else:
                    parent = str(parent_id)

            resource = Resource(
                id=id,
                span_id=span_id,
                id_str=str(id),
                parent=parent,
                parent_id="n/a" if parent_id is None else str(parent_id),
                meta_id=wire.metadata,
                kind=kind,
                stats=stats,
                target=meta.target,
                concrete_type=wire.concrete_type,
                location=format_location(wire.location),
                visibility=(
                    TypeVisibility.INTERNAL if wire.is_internal else TypeVisibility.PUBLIC
                ),
            )
            return id, resource

        self.resources.insert_with(visibility, update.new_resources, build)

        self.dropped_events += update.dropped_events

        for wire_stats, resource in self.resources.updated(stats_update):
            meta = metas.get(resource.meta_id)
            if meta is not None:
                logger.debug("processing stats update for resource %s", resource.id)
                resource.stats = ResourceStats.from_wire(wire_stats, meta)

    def retain_active(self, now: datetime, retain_for: timedelta) -> None:
        """Forget resources dropped at least ``retain_for`` before ``now``."""

        def keep(_id: Id, resource: Resource) -> bool:
            dropped_at = resource.stats.dropped_at
            return dropped_at is None or retain_for > _elapsed(now, dropped_at)

        self.resources.retain(keep)


__all__: Sequence[str] = (
    "Resource",
    "ResourceSortBy",
    "ResourceStats",
    "ResourceUpdate",
    "ResourcesState",
    "TypeVisibility",
    "WireResource",
    "WireResourceStats",
    "kind_from_wire",
)