#!/usr/bin/env python3

import logging
from dataclasses import dataclass

from java_util import (
    BadMagicError,
    CONSTANT_Utf8,
    StreamReader,
    UnsupportedVersionError,
    read_constant_pool,
)

logger = logging.getLogger(__name__)

CLASS_MAGIC = 0xCAFEBABE

# element values recurse natively, two frames per level
MAX_DEPTH_LIMIT = 256


@dataclass(frozen=True)
class ReaderOptions:
    min_major_version: int = 45
    max_major_version: int = 69
    max_depth: int = 64
    check_indices: bool = True

    def __post_init__(self):
        if not 0 <= self.max_depth <= MAX_DEPTH_LIMIT:
            raise ValueError(f'max_depth must be between 0 and {MAX_DEPTH_LIMIT}, got {self.max_depth}')

    def accepts_version(self, major):
        if self.min_major_version is not None and major < self.min_major_version:
            return False
        if self.max_major_version is not None and major > self.max_major_version:
            return False
        return True

DEFAULT_OPTIONS = ReaderOptions()


@dataclass(frozen=True)
class AttributeRecord:
    name_index: int
    length: int
    payload: bytes


@dataclass(frozen=True)
class MemberRecord:
    access_flags: int
    name_index: int
    descriptor_index: int
    attributes: tuple


@dataclass(frozen=True)
class ClassFile:
    magic: int
    minor_version: int
    major_version: int
    constant_pool: object
    access_flags: int
    this_class: int
    super_class: int
    interfaces: tuple
    fields: tuple
    methods: tuple
    attributes: tuple

    @property
    def version(self):
        return self.major_version, self.minor_version

    @property
    def name(self):
        return self.constant_pool.class_name(self.this_class)

    @property
    def super_name(self):
        if self.super_class == 0:
            return None
        return self.constant_pool.class_name(self.super_class)

    @property
    def interface_names(self):
        return tuple(self.constant_pool.class_name(index) for index in self.interfaces)

    def member_name(self, member):
        return self.constant_pool.utf8(member.name_index)

    def member_descriptor(self, member):
        return self.constant_pool.utf8(member.descriptor_index)

    def attribute_name(self, record):
        return self.constant_pool.utf8(record.name_index)

    def find_attributes(self, name, attributes=None):
        """
        Records called `name` among `attributes` (the class-level
        attributes by default). Slots that are not Utf8 never match.
        """
        if attributes is None:
            attributes = self.attributes
        pool = self.constant_pool
        return [record for record in attributes
                if isinstance(pool[record.name_index], CONSTANT_Utf8) and pool.utf8(record.name_index) == name]

    def decode(self, record, options=None):
        from java_attributes import decode_attribute
        return decode_attribute(record, self.constant_pool, options)


def read_attribute(reader):
    name_index = reader.u2()
    length = reader.u4()
    return AttributeRecord(name_index, length, reader.read(length))

def read_attributes(reader):
    count = reader.u2()
    return tuple(read_attribute(reader) for _ in range(count))

def read_member(reader):
    access_flags = reader.u2()
    name_index = reader.u2()
    descriptor_index = reader.u2()
    return MemberRecord(access_flags, name_index, descriptor_index, read_attributes(reader))

def read_members(reader, count):
    return tuple(read_member(reader) for _ in range(count))


def _check_indices(classfile):
    pool = classfile.constant_pool
    pool.check(classfile.this_class)
    if classfile.super_class:
        pool.check(classfile.super_class)
    for index in classfile.interfaces:
        pool.check(index)
    for member in classfile.fields + classfile.methods:
        pool.check(member.name_index)
        pool.check(member.descriptor_index)
        for record in member.attributes:
            pool.check(record.name_index)
    for record in classfile.attributes:
        pool.check(record.name_index)


def parse_class(source, options=None):
    options = options or DEFAULT_OPTIONS
    reader = StreamReader(source)

    magic = reader.u4()
    if magic != CLASS_MAGIC:
        raise BadMagicError(magic)
    minor_version = reader.u2()
    major_version = reader.u2()
    if not options.accepts_version(major_version):
        raise UnsupportedVersionError(major_version, minor_version)
    logger.debug('Class file version %d.%d', major_version, minor_version)

    constant_pool = read_constant_pool(reader, reader.u2())

    access_flags = reader.u2()
    this_class = reader.u2()
    super_class = reader.u2()
    interfaces = tuple(reader.u2() for _ in range(reader.u2()))

    fields = read_members(reader, reader.u2())
    methods = read_members(reader, reader.u2())
    attributes = read_attributes(reader)
    logger.debug('Read %d fields, %d methods, %d attributes', len(fields), len(methods), len(attributes))

    classfile = ClassFile(
        magic=magic,
        minor_version=minor_version,
        major_version=major_version,
        constant_pool=constant_pool,
        access_flags=access_flags,
        this_class=this_class,
        super_class=super_class,
        interfaces=interfaces,
        fields=fields,
        methods=methods,
        attributes=attributes,
    )
    if options.check_indices:
        _check_indices(classfile)
    return classfile

def read_class_file(path, options=None):
    with open(path, 'rb') as f:
        return parse_class(f, options)

def is_class(data):
    return bytes(data[:4]) == b'\xCA\xFE\xBA\xBE'
