#!/usr/bin/env python3

import io
import logging
import struct

# https://docs.oracle.com/javase/specs/jvms/se21/html/jvms-4.html

logger = logging.getLogger(__name__)

_U1 = struct.Struct('>B')
_U2 = struct.Struct('>H')
_U4 = struct.Struct('>I')
_HH = struct.Struct('>HH')
_BH = struct.Struct('>BH')


class ClassFormatError(Exception):
    pass

class TruncatedInputError(ClassFormatError):
    def __init__(self, offset, wanted, available):
        super().__init__(f'Input ended at offset {offset}: wanted {wanted} bytes, got {available}')
        self.offset = offset
        self.wanted = wanted
        self.available = available

class BadMagicError(ClassFormatError):
    def __init__(self, magic):
        super().__init__(f'Invalid class: {magic:x}')
        self.magic = magic

class UnsupportedVersionError(ClassFormatError):
    def __init__(self, major, minor):
        super().__init__(f'Unsupported class file version {major}.{minor}')
        self.major = major
        self.minor = minor

class UnknownConstantTagError(ClassFormatError):
    def __init__(self, tag, index, offset):
        super().__init__(f'Unknown constant pool tag {tag} at index {index} (offset {offset})')
        self.tag = tag
        self.index = index
        self.offset = offset

class BadConstantIndexError(ClassFormatError):
    def __init__(self, index, reason='unusable'):
        super().__init__(f'Constant pool index {index} is {reason}')
        self.index = index

class ConstantKindError(ClassFormatError):
    def __init__(self, index, expected, actual):
        super().__init__(f'Expected {expected.__name__} at index {index}, got {type(actual).__name__}')
        self.index = index
        self.expected = expected
        self.actual = actual

class BufferUnderrunError(ClassFormatError):
    def __init__(self, position, wanted, available):
        super().__init__(f'Read of {wanted} bytes at position {position} overruns buffer ({available} left)')
        self.position = position
        self.wanted = wanted
        self.available = available

class PayloadLengthMismatchError(ClassFormatError):
    def __init__(self, name, declared, consumed, partial=None):
        if consumed is None:
            message = f'{name} attribute needs more than its declared {declared} bytes'
        else:
            message = f'{name} attribute declares {declared} bytes but {consumed} were decoded'
        super().__init__(message)
        self.name = name
        self.declared = declared
        self.consumed = consumed
        self.partial = partial

class UnknownElementTagError(ClassFormatError):
    def __init__(self, tag, position):
        super().__init__(f'Unknown element value tag {tag!r} at position {position}')
        self.tag = tag
        self.position = position

class UnknownTagError(ClassFormatError):
    def __init__(self, kind, tag, position):
        super().__init__(f'Unknown {kind} {tag} at position {position}')
        self.kind = kind
        self.tag = tag
        self.position = position

class NestingTooDeepError(ClassFormatError):
    def __init__(self, max_depth):
        super().__init__(f'Element values nested deeper than {max_depth} levels')
        self.max_depth = max_depth


class StreamReader:
    def __init__(self, source):
        if isinstance(source, (bytes, bytearray, memoryview)):
            source = io.BytesIO(source)
        self.source = source
        self.offset = 0

    def read(self, length):
        data = self.source.read(length) if length else b''
        if len(data) != length:
            raise TruncatedInputError(self.offset, length, len(data))
        self.offset += length
        return data

    def u1(self):
        return _U1.unpack(self.read(1))[0]

    def u2(self):
        return _U2.unpack(self.read(2))[0]

    def u4(self):
        return _U4.unpack(self.read(4))[0]


def decode_mutf8(raw):
    # NUL is stored as C0 80 and supplementary characters as surrogate pairs
    try:
        text = bytes(raw).replace(b'\xc0\x80', b'\x00').decode('utf-8', 'surrogatepass')
        return text.encode('utf-16-le', 'surrogatepass').decode('utf-16-le', 'replace')
    except UnicodeDecodeError:
        return bytes(raw).decode('utf-8', 'replace')


class Constant:
    __slots__ = ()
    tag = None
    wide = False

    def __setattr__(self, name, value):
        raise AttributeError(f'{type(self).__name__} is read-only')

    def __delattr__(self, name):
        raise AttributeError(f'{type(self).__name__} is read-only')

    def __eq__(self, other):
        return type(self) is type(other) and self.to_bytes() == other.to_bytes()

    def __hash__(self):
        return hash(self.to_bytes())

    def to_bytes(self):
        return _U1.pack(self.tag) + self.body()


class CONSTANT_Utf8(Constant):
    __slots__ = ('raw',)
    tag = 1

    def __init__(self, raw):
        object.__setattr__(self, 'raw', bytes(raw))

    @property
    def value(self):
        return decode_mutf8(self.raw)

    def __repr__(self):
        return self.value

    def body(self):
        return _U2.pack(len(self.raw)) + self.raw

    @classmethod
    def read(cls, reader):
        length = reader.u2()
        return cls(reader.read(length))

class NumericConstant(Constant):
    __slots__ = ('raw',)
    fmt = None

    def __init__(self, raw):
        object.__setattr__(self, 'raw', bytes(raw))

    @property
    def value(self):
        value, = struct.unpack(self.fmt, self.raw)
        return value

    def __repr__(self):
        return str(self.value)

    def body(self):
        return self.raw

    @classmethod
    def read(cls, reader):
        return cls(reader.read(struct.calcsize(cls.fmt)))

class CONSTANT_Integer(NumericConstant):
    __slots__ = ()
    tag = 3
    fmt = '>i'

class CONSTANT_Float(NumericConstant):
    __slots__ = ()
    tag = 4
    fmt = '>f'

class CONSTANT_Long(NumericConstant):
    __slots__ = ()
    tag = 5
    fmt = '>q'
    wide = True

class CONSTANT_Double(NumericConstant):
    __slots__ = ()
    tag = 6
    fmt = '>d'
    wide = True

class IndexConstant(Constant):
    __slots__ = ('index',)

    def __init__(self, index):
        object.__setattr__(self, 'index', index)

    def __repr__(self):
        return f'{type(self).__name__[9:]} #{self.index}'

    def body(self):
        return _U2.pack(self.index)

    @classmethod
    def read(cls, reader):
        return cls(reader.u2())

class CONSTANT_Class(IndexConstant):
    __slots__ = ()
    tag = 7

    @property
    def name_index(self):
        return self.index

class CONSTANT_String(IndexConstant):
    __slots__ = ()
    tag = 8

    @property
    def string_index(self):
        return self.index

class CONSTANT_MethodType(IndexConstant):
    __slots__ = ()
    tag = 16

    @property
    def descriptor_index(self):
        return self.index

class CONSTANT_Module(IndexConstant):
    __slots__ = ()
    tag = 19

    @property
    def name_index(self):
        return self.index

class CONSTANT_Package(IndexConstant):
    __slots__ = ()
    tag = 20

    @property
    def name_index(self):
        return self.index

class CONSTANT_XXXref(Constant):
    __slots__ = ('class_index', 'name_and_type_index')

    def __init__(self, class_index, name_and_type_index):
        object.__setattr__(self, 'class_index', class_index)
        object.__setattr__(self, 'name_and_type_index', name_and_type_index)

    def __repr__(self):
        return f'{type(self).__name__[9:]} #{self.class_index}.#{self.name_and_type_index}'

    def body(self):
        return _HH.pack(self.class_index, self.name_and_type_index)

    @classmethod
    def read(cls, reader):
        class_index, name_and_type_index = _HH.unpack(reader.read(4))
        return cls(class_index, name_and_type_index)

class CONSTANT_Fieldref(CONSTANT_XXXref):
    __slots__ = ()
    tag = 9

class CONSTANT_Methodref(CONSTANT_XXXref):
    __slots__ = ()
    tag = 10

class CONSTANT_InterfaceMethodref(CONSTANT_XXXref):
    __slots__ = ()
    tag = 11

class CONSTANT_NameAndType(Constant):
    __slots__ = ('name_index', 'descriptor_index')
    tag = 12

    def __init__(self, name_index, descriptor_index):
        object.__setattr__(self, 'name_index', name_index)
        object.__setattr__(self, 'descriptor_index', descriptor_index)

    def __repr__(self):
        return f'NameAndType #{self.name_index}:#{self.descriptor_index}'

    def body(self):
        return _HH.pack(self.name_index, self.descriptor_index)

    @classmethod
    def read(cls, reader):
        name_index, descriptor_index = _HH.unpack(reader.read(4))
        return cls(name_index, descriptor_index)

class CONSTANT_MethodHandle(Constant):
    __slots__ = ('reference_kind', 'reference_index')
    tag = 15

    def __init__(self, reference_kind, reference_index):
        object.__setattr__(self, 'reference_kind', reference_kind)
        object.__setattr__(self, 'reference_index', reference_index)

    def __repr__(self):
        return f'MethodHandle {self.reference_kind}:#{self.reference_index}'

    def body(self):
        return _BH.pack(self.reference_kind, self.reference_index)

    @classmethod
    def read(cls, reader):
        reference_kind, reference_index = _BH.unpack(reader.read(3))
        return cls(reference_kind, reference_index)

class DynamicConstant(Constant):
    __slots__ = ('bootstrap_method_attr_index', 'name_and_type_index')

    def __init__(self, bootstrap_method_attr_index, name_and_type_index):
        object.__setattr__(self, 'bootstrap_method_attr_index', bootstrap_method_attr_index)
        object.__setattr__(self, 'name_and_type_index', name_and_type_index)

    def __repr__(self):
        return f'{type(self).__name__[9:]} {self.bootstrap_method_attr_index} -> #{self.name_and_type_index}'

    def body(self):
        return _HH.pack(self.bootstrap_method_attr_index, self.name_and_type_index)

    @classmethod
    def read(cls, reader):
        bootstrap_method_attr_index, name_and_type_index = _HH.unpack(reader.read(4))
        return cls(bootstrap_method_attr_index, name_and_type_index)

class CONSTANT_Dynamic(DynamicConstant):
    __slots__ = ()
    tag = 17

class CONSTANT_InvokeDynamic(DynamicConstant):
    __slots__ = ()
    tag = 18

CONSTANTS = {
    1: CONSTANT_Utf8,
    3: CONSTANT_Integer,
    4: CONSTANT_Float,
    5: CONSTANT_Long,
    6: CONSTANT_Double,
    7: CONSTANT_Class,
    8: CONSTANT_String,
    9: CONSTANT_Fieldref,
    10: CONSTANT_Methodref,
    11: CONSTANT_InterfaceMethodref,
    12: CONSTANT_NameAndType,
    15: CONSTANT_MethodHandle,
    16: CONSTANT_MethodType,
    17: CONSTANT_Dynamic,
    18: CONSTANT_InvokeDynamic,
    19: CONSTANT_Module,
    20: CONSTANT_Package,
}


class ConstantPool:
    """
    The 1-based constant pool of a class file.

    Slot 0 and the slot following a Long or Double hold None and are
    rejected on lookup.
    """

    def __init__(self, slots):
        self._slots = (None,) + tuple(slots)

    @property
    def count(self):
        return len(self._slots)

    def __len__(self):
        return sum(1 for entry in self._slots if entry is not None)

    def __iter__(self):
        return (entry for entry in self._slots if entry is not None)

    def __repr__(self):
        return f'<ConstantPool count={self.count}>'

    def is_usable(self, index):
        return 0 < index < len(self._slots) and self._slots[index] is not None

    def check(self, index):
        if index <= 0 or index >= len(self._slots):
            raise BadConstantIndexError(index, f'out of range (count {self.count})')
        if self._slots[index] is None:
            raise BadConstantIndexError(index, 'the reserved half of a wide constant')
        return index

    def __getitem__(self, index):
        return self._slots[self.check(index)]

    def entries(self):
        for index, entry in enumerate(self._slots):
            if entry is not None:
                yield index, entry

    def get(self, index, kind):
        entry = self[index]
        if not isinstance(entry, kind):
            raise ConstantKindError(index, kind, entry)
        return entry

    def utf8(self, index):
        return self.get(index, CONSTANT_Utf8).value

    def class_name(self, index):
        return self.utf8(self.get(index, CONSTANT_Class).name_index)


def read_constant_pool(reader, count):
    slots = []
    index = 1
    while index < count:
        offset = reader.offset
        tag = reader.u1()
        constant = CONSTANTS.get(tag)
        if constant is None:
            raise UnknownConstantTagError(tag, index, offset)
        entry = constant.read(reader)
        slots.append(entry)
        index += 1
        if entry.wide:
            if index >= count:
                raise BadConstantIndexError(index, f'past the end of the pool for wide constant at {index - 1}')
            slots.append(None)
            index += 1
    logger.debug('Read %d constant pool slots', len(slots))
    return ConstantPool(slots)
