# taskconsole

The data model behind a console that watches an instrumented async runtime.
It takes in updates from the runtime (new tasks, resources and async
operations, plus their changing statistics) and keeps a queryable picture of
what is running, what is idle and what has finished. Times are `datetime`
values and durations are `timedelta` values.

## Modules

- `taskconsole.state`: `State`, the top-level object. Feed it `WireUpdate`s
  with `State.update(current_view, update)`, where `current_view` is a
  `ViewState`; the view decides which store's "new items" list is reset.
  `State.retain_active()` forgets finished items that were dropped longer ago
  than the window set with `with_retain_for()`, unless the state is paused.
  Pausing is tracked with `start_pausing()`, `start_unpausing()`,
  `update_temporality()` (wire value 0 is live, 1 is paused) and
  `is_paused()`. `update_task_details()` and `unset_task_details()` manage the
  `Details` of the task being inspected.
- `taskconsole.tasks`: `Task` with its timing (`total`, `busy`, `scheduled`,
  `idle`), waker statistics (`waker_count`, `self_wake_percent`,
  `is_awakened`), its `state()` as a `TaskState`, and lint warnings.
  Linters are any objects with `check(task)` returning a `Lint` and
  `count()`; register them with `State.with_task_linters()`. A linter that
  returns `Lint.recheck()` has the task checked again on the next update.
  `TaskSortBy` sorts a list of tasks in place by any table column, with
  `from_column()` mapping a column index to the sort order.
- `taskconsole.resources`: `Resource`, `ResourcesState`, `ResourceSortBy`,
  `TypeVisibility` and `kind_from_wire`.
- `taskconsole.async_ops`: `AsyncOp`, `AsyncOpsState` and `AsyncOpSortBy`.
- `taskconsole.store`: `Store` and `Ids`, which map remote span ids to short
  sequential ids, starting at 1, stable for the life of the session.
- `taskconsole.fields`: field values, fields and attributes, their display
  order (`task.name` first, `spawn.location` last), `format_fields` and
  `format_attributes` which render them as styled `Span` groups, and
  `format_location`, which shortens paths into a package registry to
  `<cargo>/...` (or `<cargo>\...` for Windows paths).
- `taskconsole.util`: `percentage` and `percent_of`.

## Example

```python
from taskconsole.fields import Location, format_location

print(format_location(Location(file="/home/user/.cargo/git/checkouts/app/src/lib.rs")))
# <cargo>/app/src/lib.rs
print(format_location(None))
# <unknown location>
```

```python
from datetime import timedelta
from taskconsole.state import State

state = State().with_retain_for(timedelta(seconds=6))
state.start_pausing()
print(state.is_paused())  # True
```

## What it does not do

This package is the state model only. It has no terminal interface, does not
connect to an instrumented process or decode its wire messages (updates are
built from the `Wire*` dataclasses by the caller), and does not decode poll or
scheduling histograms: those are kept in `Details` exactly as they are passed
in.

## Running the tests

Install with the `test` extra and run pytest:

```
pip install -e ".[test]"
pytest
```