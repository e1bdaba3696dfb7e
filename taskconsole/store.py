"""Storage for items keyed by sequential ids assigned to remote span ids."""

from __future__ import annotations

import enum
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")
U = TypeVar("U")
V = TypeVar("V")

SpanId = int

_U64_MASK = (1 << 64) - 1


class Visibility(enum.Enum):
    """Whether the view showing a store's items is currently displayed."""

    SHOW = "show"
    HIDE = "hide"


@dataclass(frozen=True, order=True)
class Id:
    """A sequential id, distinct from the remote span id which may be reused."""

    id: int

    def __str__(self) -> str:
        return str(self.id)


class Ids:
    """Maps remote span ids to sequential ids, starting at 1."""

    def __init__(self) -> None:
        self.next = 1
        self._map: dict[SpanId, Id] = {}

    def id_for(self, span_id: SpanId) -> Id:
        """Return the id for ``span_id``, allocating a new one if needed."""
        existing = self._map.get(span_id)
        if existing is not None:
            return existing
        new_id = Id(self.next)
        self._map[span_id] = new_id
        self.next = (self.next + 1) & _U64_MASK
        return new_id

    def lookup(self, span_id: SpanId) -> Optional[Id]:
        """Return the id already assigned to ``span_id``, or None."""
        return self._map.get(span_id)

    def __repr__(self) -> str:
        return f"Ids(next={self.next}, map={self._map!r})"


class Store(Generic[T]):
    """Items associated with a span id and a sequential id."""

    def __init__(self) -> None:
        self.ids = Ids()
        self._store: dict[Id, T] = {}
        self._new_items: list[tuple[Id, T]] = []

    def get(self, id: Id) -> Optional[T]:
        return self._store.get(id)

    def get_by_span(self, span_id: SpanId) -> Optional[T]:
        id = self.ids.lookup(span_id)
        if id is None:
            return None
        return self._store.get(id)

    def insert_with(
        self,
        visibility: Visibility,
        items: Iterable[U],
        f: Callable[[Ids, U], Optional[tuple[Id, T]]],
    ) -> None:
        """Map each item with ``f`` and store the results that are not None.

        When the store's view is shown, items not yet taken as new are
        forgotten before the insert.
        """
        if visibility is Visibility.SHOW:
            self._new_items.clear()
        for raw in items:
            result = f(self.ids, raw)
            if result is None:
                continue
            id, item = result
            self._store[id] = item
            self._new_items.append((id, item))

    def updated(
        self, update: Mapping[SpanId, V] | Iterable[tuple[SpanId, V]]
    ) -> Iterator[tuple[V, T]]:
        """Yield ``(update, item)`` for each update whose span is stored."""
        pairs: Iterable[Any] = update.items() if isinstance(update, Mapping) else update
        for span_id, value in pairs:
            id = self.ids.lookup(span_id)
            if id is None:
                continue
            item = self._store.get(id)
            if item is None:
                continue
            yield value, item

    def retain(self, predicate: Callable[[Id, T], bool]) -> None:
        """Remove every item for which ``predicate`` returns False."""
        self._store = {id: item for id, item in self._store.items() if predicate(id, item)}
        self._new_items = [
            (id, item) for id, item in self._new_items if self._store.get(id) is item
        ]

    def take_new_items(self) -> list[T]:
        """Return the items added since the last call, and forget them."""
        taken = [item for id, item in self._new_items if self._store.get(id) is item]
        self._new_items.clear()
        return taken

    def values(self) -> Iterator[T]:
        return iter(list(self._store.values()))

    def items(self) -> Iterator[tuple[Id, T]]:
        return iter(list(self._store.items()))

    def __iter__(self) -> Iterator[Id]:
        return iter(list(self._store))

    def __len__(self) -> int:
        return len(self._store)

    def __repr__(self) -> str:
        return f"Store(len={len(self._store)}, new={len(self._new_items)})"