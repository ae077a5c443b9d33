#!/usr/bin/env python3

"""
On-demand decoding of attribute payloads.

The primary pass keeps every attribute as an opaque AttributeRecord;
decode_attribute() re-reads one record's payload through a CursorScanner
and returns one of the attribute value classes below, or Unrecognized for
names missing from DECODERS.
"""

import logging
import struct
from dataclasses import dataclass

from java_class import DEFAULT_OPTIONS, AttributeRecord
from java_util import (
    BufferUnderrunError,
    NestingTooDeepError,
    PayloadLengthMismatchError,
    UnknownElementTagError,
    UnknownTagError,
)

logger = logging.getLogger(__name__)

_U1 = struct.Struct('>B')
_U2 = struct.Struct('>H')
_U4 = struct.Struct('>I')


class CursorScanner:
    def __init__(self, buffer, position=0):
        self.buffer = bytes(buffer)
        self.position = position

    @property
    def remaining(self):
        return len(self.buffer) - self.position

    def read(self, length):
        if length > self.remaining:
            raise BufferUnderrunError(self.position, length, max(self.remaining, 0))
        data = self.buffer[self.position:self.position + length]
        self.position += length
        return data

    def u1(self):
        return _U1.unpack(self.read(1))[0]

    def u2(self):
        return _U2.unpack(self.read(2))[0]

    def u4(self):
        return _U4.unpack(self.read(4))[0]

    def u2_table(self):
        count = self.u2()
        return tuple(self.u2() for _ in range(count))


# Annotations

CONST_TAGS = frozenset('BCDFIJSZs')

@dataclass(frozen=True)
class ConstElementValue:
    tag: str
    const_value_index: int

@dataclass(frozen=True)
class EnumElementValue:
    type_name_index: int
    const_name_index: int
    tag = 'e'

@dataclass(frozen=True)
class ClassElementValue:
    class_info_index: int
    tag = 'c'

@dataclass(frozen=True)
class AnnotationElementValue:
    annotation: 'Annotation'
    tag = '@'

@dataclass(frozen=True)
class ArrayElementValue:
    values: tuple
    tag = '['

@dataclass(frozen=True)
class ElementValuePair:
    name_index: int
    value: object

@dataclass(frozen=True)
class Annotation:
    type_index: int
    elements: tuple

    def get(self, name_index):
        for pair in self.elements:
            if pair.name_index == name_index:
                return pair.value
        return None


def read_element_value(scanner, depth=0, max_depth=DEFAULT_OPTIONS.max_depth):
    position = scanner.position
    tag = chr(scanner.u1())
    if tag in CONST_TAGS:
        return ConstElementValue(tag, scanner.u2())
    if tag == 'e':
        type_name_index = scanner.u2()
        return EnumElementValue(type_name_index, scanner.u2())
    if tag == 'c':
        return ClassElementValue(scanner.u2())
    if tag == '@':
        return AnnotationElementValue(read_annotation(scanner, depth + 1, max_depth))
    if tag == '[':
        if depth + 1 > max_depth:
            raise NestingTooDeepError(max_depth)
        count = scanner.u2()
        return ArrayElementValue(tuple(read_element_value(scanner, depth + 1, max_depth) for _ in range(count)))
    raise UnknownElementTagError(tag, position)

def read_annotation(scanner, depth=0, max_depth=DEFAULT_OPTIONS.max_depth):
    if depth > max_depth:
        raise NestingTooDeepError(max_depth)
    type_index = scanner.u2()
    count = scanner.u2()
    elements = []
    for _ in range(count):
        name_index = scanner.u2()
        elements.append(ElementValuePair(name_index, read_element_value(scanner, depth, max_depth)))
    return Annotation(type_index, tuple(elements))

def read_annotations(scanner, max_depth=DEFAULT_OPTIONS.max_depth):
    count = scanner.u2()
    return tuple(read_annotation(scanner, 0, max_depth) for _ in range(count))

def read_parameter_annotations(scanner, max_depth=DEFAULT_OPTIONS.max_depth):
    count = scanner.u1()
    return tuple(read_annotations(scanner, max_depth) for _ in range(count))


# Attribute values

@dataclass(frozen=True)
class Unrecognized:
    name: str
    payload: bytes

@dataclass(frozen=True)
class ConstantValue:
    index: int

@dataclass(frozen=True)
class ExceptionHandler:
    start_pc: int
    end_pc: int
    handler_pc: int
    catch_type: int

@dataclass(frozen=True)
class Code:
    max_stack: int
    max_locals: int
    code: bytes
    exception_table: tuple
    attributes: tuple

@dataclass(frozen=True)
class Exceptions:
    class_indices: tuple

@dataclass(frozen=True)
class SourceFile:
    index: int

@dataclass(frozen=True)
class Signature:
    index: int

@dataclass(frozen=True)
class SourceDebugExtension:
    data: bytes

@dataclass(frozen=True)
class LineNumber:
    start_pc: int
    line_number: int

@dataclass(frozen=True)
class LineNumberTable:
    entries: tuple

    def line_for_offset(self, offset):
        line = None
        for entry in sorted(self.entries, key=lambda e: e.start_pc):
            if entry.start_pc > offset:
                break
            line = entry.line_number
        return line

@dataclass(frozen=True)
class LocalVariable:
    start_pc: int
    length: int
    name_index: int
    descriptor_index: int
    index: int

@dataclass(frozen=True)
class LocalVariableTable:
    entries: tuple

@dataclass(frozen=True)
class LocalVariableTypeTable:
    entries: tuple

@dataclass(frozen=True)
class InnerClass:
    inner_class_info_index: int
    outer_class_info_index: int
    inner_name_index: int
    inner_class_access_flags: int

@dataclass(frozen=True)
class InnerClasses:
    classes: tuple

@dataclass(frozen=True)
class EnclosingMethod:
    class_index: int
    method_index: int

@dataclass(frozen=True)
class Synthetic:
    pass

@dataclass(frozen=True)
class Deprecated:
    pass

@dataclass(frozen=True)
class RuntimeVisibleAnnotations:
    annotations: tuple

@dataclass(frozen=True)
class RuntimeInvisibleAnnotations:
    annotations: tuple

@dataclass(frozen=True)
class RuntimeVisibleParameterAnnotations:
    parameters: tuple

@dataclass(frozen=True)
class RuntimeInvisibleParameterAnnotations:
    parameters: tuple

@dataclass(frozen=True)
class AnnotationDefault:
    value: object

@dataclass(frozen=True)
class BootstrapMethod:
    method_ref: int
    arguments: tuple

@dataclass(frozen=True)
class BootstrapMethods:
    methods: tuple

@dataclass(frozen=True)
class MethodParameter:
    name_index: int
    access_flags: int

@dataclass(frozen=True)
class MethodParameters:
    parameters: tuple

@dataclass(frozen=True)
class NestHost:
    host_class_index: int

@dataclass(frozen=True)
class NestMembers:
    classes: tuple

@dataclass(frozen=True)
class PermittedSubclasses:
    classes: tuple

@dataclass(frozen=True)
class TypeAnnotation:
    target_type: int
    target_info: tuple
    type_path: tuple
    annotation: Annotation

@dataclass(frozen=True)
class RuntimeVisibleTypeAnnotations:
    annotations: tuple

@dataclass(frozen=True)
class RuntimeInvisibleTypeAnnotations:
    annotations: tuple

@dataclass(frozen=True)
class RecordComponent:
    name_index: int
    descriptor_index: int
    attributes: tuple

@dataclass(frozen=True)
class Record:
    components: tuple

@dataclass(frozen=True)
class ModuleRequires:
    requires_index: int
    flags: int
    version_index: int

@dataclass(frozen=True)
class ModuleExports:
    package_index: int
    flags: int
    to_indices: tuple

@dataclass(frozen=True)
class ModuleProvides:
    class_index: int
    with_indices: tuple

@dataclass(frozen=True)
class Module:
    name_index: int
    flags: int
    version_index: int
    requires: tuple
    exports: tuple
    opens: tuple
    uses: tuple
    provides: tuple

@dataclass(frozen=True)
class ModulePackages:
    packages: tuple

@dataclass(frozen=True)
class ModuleMainClass:
    main_class_index: int

@dataclass(frozen=True)
class VerificationType:
    tag: int
    value: int = None

@dataclass(frozen=True)
class StackMapFrame:
    """
    One frame as encoded. `locals` holds only the entries the frame
    carries: none for same and chop frames, the appended ones for
    append frames, all of them for full frames.
    """
    frame_type: int
    offset_delta: int
    locals: tuple
    stack: tuple

@dataclass(frozen=True)
class StackMapTable:
    frames: tuple


def _read_nested_attributes(scanner):
    attributes = []
    for _ in range(scanner.u2()):
        name_index = scanner.u2()
        length = scanner.u4()
        attributes.append(AttributeRecord(name_index, length, scanner.read(length)))
    return tuple(attributes)

def _read_code(scanner, options):
    max_stack = scanner.u2()
    max_locals = scanner.u2()
    code = scanner.read(scanner.u4())
    handlers = []
    for _ in range(scanner.u2()):
        handlers.append(ExceptionHandler(scanner.u2(), scanner.u2(), scanner.u2(), scanner.u2()))
    return Code(max_stack, max_locals, code, tuple(handlers), _read_nested_attributes(scanner))

def _read_local_variables(scanner):
    count = scanner.u2()
    return tuple(LocalVariable(scanner.u2(), scanner.u2(), scanner.u2(), scanner.u2(), scanner.u2())
                 for _ in range(count))

def _read_line_numbers(scanner, options):
    count = scanner.u2()
    return LineNumberTable(tuple(LineNumber(scanner.u2(), scanner.u2()) for _ in range(count)))

def _read_inner_classes(scanner, options):
    count = scanner.u2()
    return InnerClasses(tuple(InnerClass(scanner.u2(), scanner.u2(), scanner.u2(), scanner.u2())
                              for _ in range(count)))

def _read_bootstrap_methods(scanner, options):
    methods = []
    for _ in range(scanner.u2()):
        method_ref = scanner.u2()
        methods.append(BootstrapMethod(method_ref, scanner.u2_table()))
    return BootstrapMethods(tuple(methods))

def _read_method_parameters(scanner, options):
    count = scanner.u1()
    return MethodParameters(tuple(MethodParameter(scanner.u2(), scanner.u2()) for _ in range(count)))

def _read_enclosing_method(scanner, options):
    class_index = scanner.u2()
    return EnclosingMethod(class_index, scanner.u2())

def _read_target_info(scanner, target_type):
    if target_type in (0x00, 0x01, 0x16):
        return (scanner.u1(),)
    if target_type in (0x10, 0x17, 0x42) or 0x43 <= target_type <= 0x46:
        return (scanner.u2(),)
    if target_type in (0x11, 0x12):
        parameter = scanner.u1()
        return (parameter, scanner.u1())
    if 0x13 <= target_type <= 0x15:
        return ()
    if target_type in (0x40, 0x41):
        count = scanner.u2()
        return tuple((scanner.u2(), scanner.u2(), scanner.u2()) for _ in range(count))
    if 0x47 <= target_type <= 0x4B:
        offset = scanner.u2()
        return (offset, scanner.u1())
    raise UnknownTagError('type annotation target', target_type, scanner.position - 1)

def read_type_annotation(scanner, max_depth=DEFAULT_OPTIONS.max_depth):
    target_type = scanner.u1()
    target_info = _read_target_info(scanner, target_type)
    path_length = scanner.u1()
    type_path = tuple((scanner.u1(), scanner.u1()) for _ in range(path_length))
    return TypeAnnotation(target_type, target_info, type_path, read_annotation(scanner, 0, max_depth))

def read_type_annotations(scanner, max_depth=DEFAULT_OPTIONS.max_depth):
    count = scanner.u2()
    return tuple(read_type_annotation(scanner, max_depth) for _ in range(count))

def _read_record(scanner, options):
    components = []
    for _ in range(scanner.u2()):
        name_index = scanner.u2()
        descriptor_index = scanner.u2()
        components.append(RecordComponent(name_index, descriptor_index, _read_nested_attributes(scanner)))
    return Record(tuple(components))

def _read_exports(scanner):
    count = scanner.u2()
    return tuple(ModuleExports(scanner.u2(), scanner.u2(), scanner.u2_table()) for _ in range(count))

def _read_module(scanner, options):
    name_index = scanner.u2()
    flags = scanner.u2()
    version_index = scanner.u2()
    requires = tuple(ModuleRequires(scanner.u2(), scanner.u2(), scanner.u2()) for _ in range(scanner.u2()))
    exports = _read_exports(scanner)
    opens = _read_exports(scanner)
    uses = scanner.u2_table()
    provides = tuple(ModuleProvides(scanner.u2(), scanner.u2_table()) for _ in range(scanner.u2()))
    return Module(name_index, flags, version_index, requires, exports, opens, uses, provides)

def _read_verification_type(scanner):
    tag = scanner.u1()
    if tag <= 6:
        return VerificationType(tag)
    if tag in (7, 8):
        return VerificationType(tag, scanner.u2())
    raise UnknownTagError('verification type', tag, scanner.position - 1)

def _read_verification_types(scanner, count):
    return tuple(_read_verification_type(scanner) for _ in range(count))

def _read_stack_map_frame(scanner):
    frame_type = scanner.u1()
    if frame_type < 64:
        return StackMapFrame(frame_type, frame_type, (), ())
    if frame_type < 128:
        return StackMapFrame(frame_type, frame_type - 64, (), _read_verification_types(scanner, 1))
    if frame_type < 247:
        raise UnknownTagError('stack map frame type', frame_type, scanner.position - 1)
    offset_delta = scanner.u2()
    if frame_type == 247:
        return StackMapFrame(frame_type, offset_delta, (), _read_verification_types(scanner, 1))
    if frame_type <= 251:
        return StackMapFrame(frame_type, offset_delta, (), ())
    if frame_type <= 254:
        return StackMapFrame(frame_type, offset_delta, _read_verification_types(scanner, frame_type - 251), ())
    local_types = _read_verification_types(scanner, scanner.u2())
    return StackMapFrame(frame_type, offset_delta, local_types, _read_verification_types(scanner, scanner.u2()))

def _read_stack_map_table(scanner, options):
    count = scanner.u2()
    return StackMapTable(tuple(_read_stack_map_frame(scanner) for _ in range(count)))


DECODERS = {
    'ConstantValue': lambda s, o: ConstantValue(s.u2()),
    'Code': _read_code,
    'Exceptions': lambda s, o: Exceptions(s.u2_table()),
    'SourceFile': lambda s, o: SourceFile(s.u2()),
    'Signature': lambda s, o: Signature(s.u2()),
    'SourceDebugExtension': lambda s, o: SourceDebugExtension(s.read(s.remaining)),
    'LineNumberTable': _read_line_numbers,
    'LocalVariableTable': lambda s, o: LocalVariableTable(_read_local_variables(s)),
    'LocalVariableTypeTable': lambda s, o: LocalVariableTypeTable(_read_local_variables(s)),
    'InnerClasses': _read_inner_classes,
    'EnclosingMethod': _read_enclosing_method,
    'Synthetic': lambda s, o: Synthetic(),
    'Deprecated': lambda s, o: Deprecated(),
    'RuntimeVisibleAnnotations':
        lambda s, o: RuntimeVisibleAnnotations(read_annotations(s, o.max_depth)),
    'RuntimeInvisibleAnnotations':
        lambda s, o: RuntimeInvisibleAnnotations(read_annotations(s, o.max_depth)),
    'RuntimeVisibleParameterAnnotations':
        lambda s, o: RuntimeVisibleParameterAnnotations(read_parameter_annotations(s, o.max_depth)),
    'RuntimeInvisibleParameterAnnotations':
        lambda s, o: RuntimeInvisibleParameterAnnotations(read_parameter_annotations(s, o.max_depth)),
    'AnnotationDefault': lambda s, o: AnnotationDefault(read_element_value(s, 0, o.max_depth)),
    'BootstrapMethods': _read_bootstrap_methods,
    'MethodParameters': _read_method_parameters,
    'NestHost': lambda s, o: NestHost(s.u2()),
    'NestMembers': lambda s, o: NestMembers(s.u2_table()),
    'PermittedSubclasses': lambda s, o: PermittedSubclasses(s.u2_table()),
    'RuntimeVisibleTypeAnnotations':
        lambda s, o: RuntimeVisibleTypeAnnotations(read_type_annotations(s, o.max_depth)),
    'RuntimeInvisibleTypeAnnotations':
        lambda s, o: RuntimeInvisibleTypeAnnotations(read_type_annotations(s, o.max_depth)),
    'Record': _read_record,
    'Module': _read_module,
    'ModulePackages': lambda s, o: ModulePackages(s.u2_table()),
    'ModuleMainClass': lambda s, o: ModuleMainClass(s.u2()),
    'StackMapTable': _read_stack_map_table,
}


def decode_attribute(record, pool, options=None):
    """
    Decode one attribute record against the constant pool of its class.

    Raises PayloadLengthMismatchError when the payload is shorter or
    longer than its grammar; in the latter case the decoded value is
    available as the error's `partial`.
    """
    options = options or DEFAULT_OPTIONS
    name = pool.utf8(record.name_index)
    decoder = DECODERS.get(name)
    if decoder is None:
        logger.debug('Leaving %s attribute (%d bytes) undecoded', name, record.length)
        return Unrecognized(name, record.payload)

    scanner = CursorScanner(record.payload)
    try:
        value = decoder(scanner, options)
    except BufferUnderrunError as e:
        raise PayloadLengthMismatchError(name, record.length, None) from e
    if scanner.remaining:
        raise PayloadLengthMismatchError(name, record.length, scanner.position, partial=value)
    return value
