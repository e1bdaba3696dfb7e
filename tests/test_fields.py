from datetime import timedelta

import pytest

from taskconsole.fields import (
    Attribute,
    Field,
    FieldKind,
    FieldValue,
    Location,
    Metadata,
    Span,
    WireField,
    WireMetadata,
    duration_from_parts,
    format_attributes,
    format_fields,
    format_location,
    is_windows_path,
    truncate_registry_path,
)


def _meta():
    return Metadata.from_wire(WireMetadata(field_names=["kind", "task.name"], target="runtime::task"), 3)


def _str(value):
    return FieldValue(FieldKind.STR, value)


# Location formatting carried over from the source's own tests.


def test_format_location_linux():
    loc1 = Location(
        file="/home/user/.cargo/registry/src/github.com-1ecc6299db9ec823/tokio-1.0.1/src/lib.rs"
    )
    loc2 = Location(file="/home/user/.cargo/git/checkouts/tokio-1.0.1/src/lib.rs")
    loc3 = Location(file="/home/user/projects/tokio-1.0.1/src/lib.rs")
    assert format_location(loc1) == "<cargo>/tokio-1.0.1/src/lib.rs"
    assert format_location(loc2) == "<cargo>/tokio-1.0.1/src/lib.rs"
    assert format_location(loc3) == "/home/user/projects/tokio-1.0.1/src/lib.rs"
    assert format_location(None) == "<unknown location>"


def test_format_location_macos():
    loc1 = Location(
        file="/Users/user/.cargo/registry/src/github.com-1ecc6299db9ec823/tokio-1.0.1/src/lib.rs"
    )
    loc2 = Location(file="/Users/user/.cargo/git/checkouts/tokio-1.0.1/src/lib.rs")
    loc3 = Location(file="/Users/user/projects/tokio-1.0.1/src/lib.rs")
    assert format_location(loc1) == "<cargo>/tokio-1.0.1/src/lib.rs"
    assert format_location(loc2) == "<cargo>/tokio-1.0.1/src/lib.rs"
    assert format_location(loc3) == "/Users/user/projects/tokio-1.0.1/src/lib.rs"


def test_format_location_windows():
    loc1 = Location(
        file="C:\\Users\\user\\.cargo\\registry\\src\\github.com-1ecc6299db9ec823\\tokio-1.0.1\\src\\lib.rs"
    )
    loc2 = Location(file="C:\\Users\\user\\.cargo\\git\\checkouts\\tokio-1.0.1\\src\\lib.rs")
    loc3 = Location(file="C:\\Users\\user\\projects\\tokio-1.0.1\\src\\lib.rs")
    assert format_location(loc1) == "<cargo>\\tokio-1.0.1\\src\\lib.rs"
    assert format_location(loc2) == "<cargo>\\tokio-1.0.1\\src\\lib.rs"
    assert format_location(loc3) == "C:\\Users\\user\\projects\\tokio-1.0.1\\src\\lib.rs"


def test_location_includes_line_and_column():
    assert str(Location(file="src/main.rs", line=10, column=4)) == "src/main.rs:10:4"
    assert str(Location()) == "<unknown location>"


def test_is_windows_path():
    assert is_windows_path("C:\\Users\\user\\projects")
    assert not is_windows_path("C:/Users/user/projects")
    assert not is_windows_path("/home/user/projects")


def test_truncate_registry_path_leaves_other_paths_alone():
    path = "/home/user/projects/tokio-1.0.1/src/lib.rs"
    assert truncate_registry_path(path) == path


def test_field_value_display():
    assert str(FieldValue(FieldKind.BOOL, True)) == "true"
    assert str(FieldValue(FieldKind.BOOL, False)) == "false"
    assert str(FieldValue(FieldKind.I64, -5)) == "-5"


def test_field_value_ensure_nonempty():
    assert _str("").ensure_nonempty() is None
    assert FieldValue(FieldKind.DEBUG, "").ensure_nonempty() is None
    assert _str("x").ensure_nonempty() == _str("x")


def test_field_value_truncate_turns_string_into_debug():
    value = _str("/home/user/.cargo/git/checkouts/tokio-1.0.1/src/lib.rs").truncate_registry_path()
    assert value == FieldValue(FieldKind.DEBUG, "<cargo>/tokio-1.0.1/src/lib.rs")
    number = FieldValue(FieldKind.U64, 4)
    assert number.truncate_registry_path() == number


def test_metadata_from_wire():
    meta = _meta()
    assert meta.id == 3
    assert meta.field_names == ["kind", "task.name"]
    assert meta.target == "runtime::task"


def test_field_from_wire_by_name():
    field = Field.from_wire(WireField(name="foo", value=_str("bar")), _meta())
    assert field == Field("foo", _str("bar"))


def test_field_from_wire_by_index():
    field = Field.from_wire(WireField(name=1, value=_str("worker"), metadata_id=3), _meta())
    assert field == Field("task.name", _str("worker"))


def test_field_from_wire_rejects_metadata_mismatch():
    assert Field.from_wire(WireField(name=0, value=_str("x"), metadata_id=9), _meta()) is None


def test_field_from_wire_rejects_missing_index():
    assert Field.from_wire(WireField(name=5, value=_str("x"), metadata_id=3), _meta()) is None


def test_field_from_wire_rejects_empty_and_missing_values():
    assert Field.from_wire(WireField(name="foo", value=_str("")), _meta()) is None
    assert Field.from_wire(WireField(name="foo", value=None), _meta()) is None
    assert Field.from_wire(WireField(name=None, value=_str("x")), _meta()) is None


def test_field_from_wire_truncates_spawn_location():
    wire = WireField(
        name="spawn.location",
        value=_str("/home/user/.cargo/git/checkouts/tokio-1.0.1/src/lib.rs:3:1"),
    )
    field = Field.from_wire(wire, _meta())
    assert field.value == FieldValue(FieldKind.DEBUG, "<cargo>/tokio-1.0.1/src/lib.rs:3:1")


def test_field_sort_order_puts_name_first_and_location_last():
    fields = [Field(n, _str("v")) for n in ["spawn.location", "b", "task.name", "a"]]
    ordered = sorted(fields, key=Field.sort_key)
    assert [f.name for f in ordered] == ["task.name", "a", "b", "spawn.location"]


def test_attribute_sort_orders_missing_unit_first():
    field = Field("size", FieldValue(FieldKind.U64, 1))
    attrs = [Attribute(field, "ms"), Attribute(field, None)]
    assert [a.unit for a in sorted(attrs, key=Attribute.sort_key)] == [None, "ms"]


def test_format_fields_renders_sorted_key_value_pairs():
    formatted = format_fields([Field("z", _str("last")), Field("task.name", _str("first"))])
    assert [[s.content for s in group] for group in formatted] == [
        ["task.name", "=", "first "],
        ["z", "=", "last "],
    ]
    assert formatted[0][0].bold
    assert formatted[0][1].dim


def test_format_fields_empty():
    assert format_fields([]) == []


def test_format_attributes_includes_unit_and_trailing_space():
    attrs = [
        Attribute(Field("duration", FieldValue(FieldKind.U64, 5)), "ms"),
        Attribute(Field("count", FieldValue(FieldKind.U64, 2))),
    ]
    formatted = format_attributes(attrs)
    assert [[s.content for s in group] for group in formatted] == [
        ["count", "=", "2", " "],
        ["duration", "=", "5", "ms", " "],
    ]
    assert formatted[0][-1] == Span(" ")


def test_duration_from_parts():
    assert duration_from_parts(1, 500_000_000) == timedelta(seconds=1, milliseconds=500)


def test_duration_from_parts_rejects_negative():
    with pytest.raises(ValueError):
        duration_from_parts(-1, 0)
    with pytest.raises(ValueError):
        duration_from_parts(0, -1)