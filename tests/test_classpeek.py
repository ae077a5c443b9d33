import dataclasses
import zipfile

import classpeek

from java_class import parse_class

from . import _util

u1, u2 = _util.u1, _util.u2


def annotated_class() -> bytes:
    constants = _util.SAMPLE_CONSTANTS + [
        _util.utf8("RuntimeVisibleAnnotations"),  # 6
        _util.utf8("Ldemo/Marker;"),  # 7
        _util.utf8("Ldemo/Inner;"),  # 8
        _util.utf8("value"),  # 9
        _util.utf8("run"),  # 10
        _util.utf8("()V"),  # 11
        _util.utf8("RuntimeInvisibleParameterAnnotations"),  # 12
        _util.utf8("Ldemo/Param;"),  # 13
    ]
    nested = u1(ord("[")) + u2(1) + u1(ord("@")) + u2(8) + u2(0)
    class_annotations = u2(1) + u2(7) + u2(1) + u2(9) + nested
    parameter_annotations = u1(1) + u2(1) + u2(13) + u2(0)
    method = _util.member(0x0001, 10, 11, _util.attribute(12, parameter_annotations))
    return _util.class_bytes(
        constants,
        this_class=2,
        super_class=4,
        methods=[method],
        class_attributes=[_util.attribute(6, class_annotations)],
    )


def test_annotation_types() -> None:
    classfile = parse_class(annotated_class())
    assert classpeek.annotation_types(classfile) == ["Ldemo/Inner;", "Ldemo/Marker;", "Ldemo/Param;"]


def test_describe() -> None:
    lines = classpeek.describe(parse_class(annotated_class()))
    assert lines[0] == "Class demo/Sample (version 52.0)"
    assert "  flags: public" in lines
    assert "  super: java/lang/Object" in lines
    assert lines[-1] == "  attributes: RuntimeVisibleAnnotations"


def test_peek_class_file(tmp_path, capsys) -> None:
    path = tmp_path / "Sample.class"
    path.write_bytes(annotated_class())

    assert classpeek.main([str(path), "--decode", "--annotations"]) == 0
    out = capsys.readouterr().out
    assert "Class demo/Sample" in out
    assert "method run()V: RuntimeInvisibleParameterAnnotations" in out
    assert "uses Ldemo/Marker;" in out


def test_peek_jar(tmp_path, capsys) -> None:
    path = tmp_path / "sample.jar"
    with zipfile.ZipFile(path, "w") as zout:
        zout.writestr("META-INF/MANIFEST.MF", "Manifest-Version: 1.0\n")
        zout.writestr("demo/Sample.class", annotated_class())
        zout.writestr("demo/Broken.class", b"\xca\xfe\xba\xbe\x00")

    assert classpeek.main([str(path), "-v"]) == 1
    captured = capsys.readouterr()
    assert "Skipping META-INF/MANIFEST.MF" in captured.out
    assert "Reading demo/Sample.class" in captured.out
    assert "Class demo/Sample" in captured.out
    assert "demo/Broken.class" in captured.err


def test_decode_failure_is_reported_per_attribute(tmp_path, capsys) -> None:
    path = tmp_path / "Broken.class"
    path.write_bytes(_util.sample_class("ConstantValue", b"\x00"))

    assert classpeek.main([str(path), "--decode"]) == 0
    out = capsys.readouterr().out
    assert "class: #6 FAILED" in out


def api_class() -> bytes:
    constants = _util.SAMPLE_CONSTANTS + [
        _util.utf8("lib/Base"),  # 6
        _util.class_ref(6),  # 7
        _util.utf8("lib/Iface"),  # 8
        _util.class_ref(8),  # 9
        _util.utf8("Exceptions"),  # 10
        _util.utf8("RuntimeVisibleAnnotations"),  # 11
        _util.utf8("Llib/Marker;"),  # 12
        _util.utf8("handle"),  # 13
        _util.utf8("([[Llib/Item;ILjava/lang/String;)Llib/Result;"),  # 14
        _util.utf8("lib/Failure"),  # 15
        _util.class_ref(15),  # 16
        _util.utf8("hidden"),  # 17
        _util.utf8("Llib/Secret;"),  # 18
        _util.utf8("Ldemo/Other;"),  # 19
    ]
    marker = _util.attribute(11, u2(1) + u2(12) + u2(0))
    method = _util.member(0x0001, 13, 14, _util.attribute(10, u2(1) + u2(16)), marker)
    fields = [
        _util.member(0x0004, 17, 19),
        _util.member(0x0002, 17, 18),
    ]
    return _util.class_bytes(
        constants,
        this_class=2,
        super_class=7,
        interfaces=[9],
        fields=fields,
        methods=[method],
        class_attributes=[marker],
    )


def test_api_classes() -> None:
    classfile = parse_class(api_class())
    assert classpeek.api_classes(classfile, {"demo.Other"}) == [
        "lib.Base",
        "lib.Failure",
        "lib.Iface",
        "lib.Item",
        "lib.Marker",
        "lib.Result",
    ]
    assert "demo.Other" in classpeek.api_classes(classfile)


def test_api_classes_of_non_public_class() -> None:
    classfile = dataclasses.replace(parse_class(api_class()), access_flags=0x0020)
    assert classpeek.api_classes(classfile) == []


def test_descriptor_classes() -> None:
    assert classpeek.descriptor_classes("(I[JLa/B;)[[Lc/D;") == ["a.B", "c.D"]
    assert classpeek.descriptor_classes("()V") == []


def test_peek_api(tmp_path, capsys) -> None:
    path = tmp_path / "Sample.class"
    path.write_bytes(api_class())

    assert classpeek.main([str(path), "--api"]) == 0
    out = capsys.readouterr().out
    assert "  api lib.Base" in out
    assert "  api lib.Secret" not in out
    assert "  api java.lang.String" not in out


def test_bad_member_name_is_reported(tmp_path, capsys) -> None:
    path = tmp_path / "Bad.class"
    field = _util.member(0x0001, 2, 1)
    path.write_bytes(_util.class_bytes(_util.SAMPLE_CONSTANTS, this_class=2, super_class=4, fields=[field]))

    assert classpeek.main([str(path), "--decode"]) == 1
    captured = capsys.readouterr()
    assert "Class demo/Sample" in captured.out
    assert "Expected CONSTANT_Utf8 at index 2" in captured.err
