"""Metadata, fields and attributes received from an instrumented process."""

from __future__ import annotations

import dataclasses
import enum
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import timedelta
from typing import ClassVar, Optional, Union

logger = logging.getLogger(__name__)

KEY_COLOR = "light_blue"
VALUE_COLOR = "yellow"


class FieldKind(enum.IntEnum):
    """The kind of a field value; the order is the sort order of values."""

    BOOL = 0
    STR = 1
    U64 = 2
    I64 = 3
    DEBUG = 4


@dataclass(frozen=True, order=True)
class FieldValue:
    kind: FieldKind
    value: Union[bool, str, int]

    def __str__(self) -> str:
        if self.kind is FieldKind.BOOL:
            return "true" if self.value else "false"
        return str(self.value)

    def ensure_nonempty(self) -> Optional[FieldValue]:
        """Return None for an empty string value, otherwise self."""
        if self.kind in (FieldKind.STR, FieldKind.DEBUG) and self.value == "":
            return None
        return self

    def truncate_registry_path(self) -> FieldValue:
        """Shorten package-registry paths in string values."""
        if self.kind in (FieldKind.STR, FieldKind.DEBUG):
            return FieldValue(FieldKind.DEBUG, truncate_registry_path(str(self.value)))
        return self


@dataclass
class WireField:
    """A field as sent on the wire: named directly or by metadata index."""

    name: Union[str, int, None]
    value: Optional[FieldValue]
    metadata_id: Optional[int] = None


@dataclass
class WireAttribute:
    field: Optional[WireField]
    unit: Optional[str] = None


@dataclass
class WireMetadata:
    field_names: list[str] = field(default_factory=list)
    target: str = ""


@dataclass(frozen=True)
class Location:
    file: Optional[str] = None
    module_path: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None

    def __str__(self) -> str:
        if self.file is not None:
            text = self.file
        elif self.module_path is not None:
            text = self.module_path
        else:
            return "<unknown location>"
        if self.line is not None:
            text += f":{self.line}"
            if self.column is not None:
                text += f":{self.column}"
        return text


@dataclass
class Metadata:
    field_names: list[str]
    target: str
    id: int

    @classmethod
    def from_wire(cls, wire: WireMetadata, id: int) -> Metadata:
        return cls(field_names=list(wire.field_names), target=wire.target, id=id)


@dataclass(frozen=True)
class Field:
    name: str
    value: FieldValue

    SPAWN_LOCATION: ClassVar[str] = "spawn.location"
    KIND: ClassVar[str] = "kind"
    NAME: ClassVar[str] = "task.name"
    TASK_ID: ClassVar[str] = "task.id"
    SIZE_BYTES: ClassVar[str] = "size.bytes"
    ORIGINAL_SIZE_BYTES: ClassVar[str] = "original_size.bytes"

    @classmethod
    def from_wire(cls, wire: WireField, meta: Metadata) -> Optional[Field]:
        """Resolve a wire field against ``meta``.

        Returns None if the field is malformed or its string value is empty.
        """
        if wire.name is None:
            return None
        if isinstance(wire.name, str):
            name = wire.name
        else:
            index = wire.name
            if wire.metadata_id != meta.id:
                logger.warning(
                    "skipping malformed field name (metadata id mismatch): "
                    "task meta id %s, field meta id %s, name index %s",
                    meta.id,
                    wire.metadata_id,
                    index,
                )
                return None
            if not 0 <= index < len(meta.field_names):
                logger.warning(
                    "missing field name for index %s (metadata id %s)", index, meta.id
                )
                return None
            name = meta.field_names[index]

        if wire.value is None:
            logger.warning("missing field value for field %r", name)
            return None
        value = wire.value.ensure_nonempty()
        if value is None:
            return None
        if name == cls.SPAWN_LOCATION:
            value = value.truncate_registry_path()
        return cls(name=name, value=value)

    def sort_key(self) -> tuple[int, str]:
        """Order by name, with the task name first and spawn location last."""
        if self.name == self.NAME:
            return (0, "")
        if self.name == self.SPAWN_LOCATION:
            return (2, "")
        return (1, self.name)


@dataclass(frozen=True)
class Attribute:
    field: Field
    unit: Optional[str] = None

    def sort_key(self) -> tuple[tuple[int, str], tuple[bool, str]]:
        return (self.field.sort_key(), (self.unit is not None, self.unit or ""))


@dataclass(frozen=True)
class Span:
    """A piece of styled text."""

    content: str
    color: Optional[str] = None
    bold: bool = False
    dim: bool = False


def _key_spans(name: str) -> list[Span]:
    return [
        Span(name, color=KEY_COLOR, bold=True),
        Span("=", color=KEY_COLOR, dim=True),
    ]


def format_fields(fields: Iterable[Field]) -> list[list[Span]]:
    """Render fields in display order as ``name=value `` span groups."""
    return [
        [*_key_spans(f.name), Span(f"{f.value} ", color=VALUE_COLOR)]
        for f in sorted(fields, key=Field.sort_key)
    ]


def format_attributes(attributes: Iterable[Attribute]) -> list[list[Span]]:
    """Render attributes in display order, with their units when present."""
    formatted = []
    for attr in sorted(attributes, key=Attribute.sort_key):
        spans = [*_key_spans(attr.field.name), Span(str(attr.field.value), color=VALUE_COLOR)]
        if attr.unit is not None:
            spans.append(Span(attr.unit, color=KEY_COLOR))
        spans.append(Span(" "))
        formatted.append(spans)
    return formatted


_DRIVE_LETTER = re.compile(r"^[a-zA-Z]:\\")
_REGISTRY_PATH = re.compile(
    r".*[/\\]\.cargo[/\\](?:registry[/\\]src[/\\][^/\\]*[/\\]|git[/\\]checkouts[/\\])"
)


def is_windows_path(path: str) -> bool:
    """Guess whether ``path`` is a Windows path: a drive letter and mostly backslashes."""
    has_drive_letter = _DRIVE_LETTER.match(path) is not None
    return has_drive_letter and path.count("\\") > path.count("/")


def truncate_registry_path(path: str) -> str:
    """Replace the package-registry prefix of ``path`` with ``<cargo>``."""
    replacement = "<cargo>\\" if is_windows_path(path) else "<cargo>/"
    return _REGISTRY_PATH.sub(lambda _match: replacement, path, count=1)


def format_location(location: Optional[Location]) -> str:
    if location is None:
        return "<unknown location>"
    if location.file is not None:
        location = dataclasses.replace(location, file=truncate_registry_path(location.file))
    return str(location)


def duration_from_parts(seconds: int, nanos: int) -> timedelta:
    """Build a duration from wire seconds and nanoseconds, which must not be negative."""
    if seconds < 0 or nanos < 0:
        raise ValueError("duration should not be negative")
    return timedelta(seconds=seconds, microseconds=nanos // 1000)