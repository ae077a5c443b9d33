import io
import struct

import pytest

from java_class import MAX_DEPTH_LIMIT, ReaderOptions, is_class, parse_class, read_class_file
from java_util import (
    BadConstantIndexError,
    BadMagicError,
    ClassFormatError,
    TruncatedInputError,
    UnknownConstantTagError,
    UnsupportedVersionError,
)

from . import _util


def test_parse_minimal_class() -> None:
    data = _util.class_bytes([_util.utf8("A")])
    classfile = parse_class(data)

    assert classfile.magic == 0xCAFEBABE
    assert classfile.version == (52, 0)
    assert len(classfile.constant_pool) == 1
    assert classfile.constant_pool[1].value == "A"
    assert classfile.fields == ()
    assert classfile.methods == ()
    assert classfile.attributes == ()
    assert classfile.super_name is None


def test_parse_from_file_object() -> None:
    classfile = parse_class(io.BytesIO(_util.class_bytes([_util.utf8("A")])))
    assert classfile.this_class == 1


def test_parse_members_and_interfaces() -> None:
    constants = _util.SAMPLE_CONSTANTS + [
        _util.utf8("count"),  # 6
        _util.utf8("I"),  # 7
        _util.utf8("ConstantValue"),  # 8
        _util.utf8("run"),  # 9
        _util.utf8("()V"),  # 10
        _util.utf8("java/lang/Runnable"),  # 11
        _util.class_ref(11),  # 12
    ]
    field = _util.member(0x0019, 6, 7, _util.attribute(8, _util.u2(5)))
    method = _util.member(0x0001, 9, 10)
    data = _util.class_bytes(
        constants, this_class=2, super_class=4, interfaces=[12], fields=[field], methods=[method]
    )
    classfile = parse_class(data)

    assert classfile.name == "demo/Sample"
    assert classfile.super_name == "java/lang/Object"
    assert classfile.interface_names == ("java/lang/Runnable",)
    assert classfile.access_flags == 0x0021

    (field_record,) = classfile.fields
    assert field_record.access_flags == 0x0019
    assert classfile.member_name(field_record) == "count"
    assert classfile.member_descriptor(field_record) == "I"
    (record,) = field_record.attributes
    assert classfile.attribute_name(record) == "ConstantValue"
    assert classfile.find_attributes("ConstantValue", field_record.attributes) == [record]

    (method_record,) = classfile.methods
    assert classfile.member_name(method_record) == "run"
    assert method_record.attributes == ()


def test_payload_is_captured_verbatim() -> None:
    payload = bytes(range(200))
    classfile = parse_class(_util.sample_class("Whatever", payload))
    (record,) = classfile.attributes
    assert record.length == 200
    assert len(record.payload) == record.length
    assert record.payload == payload


def test_empty_payload() -> None:
    classfile = parse_class(_util.sample_class("Synthetic", b""))
    (record,) = classfile.attributes
    assert record.length == 0
    assert record.payload == b""


def test_bad_magic() -> None:
    with pytest.raises(BadMagicError) as info:
        parse_class(_util.class_bytes([_util.utf8("A")], magic=0xCAFEBABF))
    assert info.value.magic == 0xCAFEBABF


def test_unsupported_version() -> None:
    data = _util.class_bytes([_util.utf8("A")], major=70)
    with pytest.raises(UnsupportedVersionError):
        parse_class(data)

    options = ReaderOptions(max_major_version=None)
    assert parse_class(data, options).major_version == 70

    with pytest.raises(UnsupportedVersionError):
        parse_class(_util.class_bytes([_util.utf8("A")], major=44))


def test_truncated_input() -> None:
    data = _util.class_bytes([_util.utf8("A")])
    for cut in (3, 9, 14, len(data) - 1):
        with pytest.raises(TruncatedInputError):
            parse_class(data[:cut])


def test_truncated_attribute_payload() -> None:
    data = _util.sample_class("Whatever", b"\x00" * 10)
    with pytest.raises(TruncatedInputError):
        parse_class(data[:-3])


def test_unknown_constant_tag_aborts_parse() -> None:
    with pytest.raises(UnknownConstantTagError):
        parse_class(_util.class_bytes([_util.u1(13) + _util.u2(1)]))


def test_this_class_index_zero_rejected() -> None:
    with pytest.raises(BadConstantIndexError):
        parse_class(_util.class_bytes([_util.utf8("A")], this_class=0))


def test_reference_to_wide_placeholder_rejected() -> None:
    constants = [_util.utf8("A"), _util.u1(5) + struct.pack(">q", 1)]
    data = _util.class_bytes(constants, pool_count=4, interfaces=[3])
    with pytest.raises(BadConstantIndexError) as info:
        parse_class(data)
    assert info.value.index == 3


def test_member_and_attribute_indices_checked() -> None:
    constants = [_util.utf8("A")]
    with pytest.raises(BadConstantIndexError):
        parse_class(_util.class_bytes(constants, fields=[_util.member(0, 1, 9)]))
    with pytest.raises(BadConstantIndexError):
        parse_class(_util.class_bytes(constants, class_attributes=[_util.attribute(0, b"")]))
    with pytest.raises(BadConstantIndexError):
        parse_class(_util.class_bytes(constants, methods=[_util.member(0, 1, 1, _util.attribute(2, b""))]))


def test_index_checks_can_be_disabled() -> None:
    data = _util.class_bytes([_util.utf8("A")], this_class=0, super_class=7)
    classfile = parse_class(data, ReaderOptions(check_indices=False))
    assert classfile.super_class == 7


def test_errors_share_a_base() -> None:
    with pytest.raises(ClassFormatError):
        parse_class(b"\xca\xfe")


def test_read_class_file(tmp_path) -> None:
    path = tmp_path / "A.class"
    path.write_bytes(_util.class_bytes([_util.utf8("A")]))
    assert read_class_file(path).constant_pool.utf8(1) == "A"
    assert is_class(path.read_bytes())
    assert not is_class(b"PK\x03\x04")


def test_max_depth_is_bounded() -> None:
    assert ReaderOptions(max_depth=MAX_DEPTH_LIMIT).max_depth == MAX_DEPTH_LIMIT
    with pytest.raises(ValueError):
        ReaderOptions(max_depth=MAX_DEPTH_LIMIT + 1)
    with pytest.raises(ValueError):
        ReaderOptions(max_depth=-1)
