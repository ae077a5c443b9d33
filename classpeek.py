#!/usr/bin/env python3

import argparse
import io
import logging
import re
import sys
import zipfile

from java_attributes import (
    AnnotationElementValue,
    ArrayElementValue,
    Code,
    RuntimeInvisibleAnnotations,
    RuntimeInvisibleParameterAnnotations,
    RuntimeVisibleAnnotations,
    RuntimeVisibleParameterAnnotations,
)
from java_class import DEFAULT_OPTIONS, MAX_DEPTH_LIMIT, ReaderOptions, is_class, parse_class
from java_util import ClassFormatError

ZIP_MAGIC = b'PK\x03\x04'

# Add more flags when needed
CLASS_FLAGS = {
    0x0001: 'public',
    0x0010: 'final',
    0x0200: 'interface',
    0x0400: 'abstract',
    0x1000: 'synthetic',
    0x2000: 'annotation',
    0x4000: 'enum',
    0x8000: 'module',
}

ANNOTATION_ATTRIBUTES = {
    'RuntimeVisibleAnnotations',
    'RuntimeInvisibleAnnotations',
    'RuntimeVisibleParameterAnnotations',
    'RuntimeInvisibleParameterAnnotations',
}

ACC_PUBLIC = 0x0001
ACC_PROTECTED = 0x0004

API_IGNORED_PREFIXES = (
    'java.',
    'javax.',
    'com.sun.',
    'kotlin.',
    'kotlinx.',
    'org.jetbrains.annotations.',
)

_CLASS_TYPE = re.compile(r'L([^;]+);')

def pretty_flags(flags):
    return ' '.join(name for bit, name in CLASS_FLAGS.items() if flags & bit)

def iter_classes(input_path, verbose=False):
    with open(input_path, 'rb') as f:
        data = f.read()

    if data.startswith(ZIP_MAGIC):
        with io.BytesIO(data) as f, zipfile.ZipFile(f, 'r') as zin:
            for file in zin.infolist():
                if file.is_dir():
                    continue
                entry = zin.read(file)
                if not is_class(entry):
                    if verbose:
                        print(f'Skipping {file.filename}')
                    continue
                yield file.filename, entry
    else:
        yield input_path, data

def iter_attributes(classfile, options=None):
    """
    Every attribute record of the class with a label saying where it
    lives, including the attributes nested in Code.
    """
    yield 'class', classfile.attributes
    for kind, members in (('field', classfile.fields), ('method', classfile.methods)):
        for member in members:
            label = f'{kind} {classfile.member_name(member)}{classfile.member_descriptor(member)}'
            yield label, member.attributes
            for record in classfile.find_attributes('Code', member.attributes):
                try:
                    code = classfile.decode(record, options)
                except ClassFormatError:
                    # reported with the member's own attributes
                    continue
                yield f'{label} Code', code.attributes

def _nested_annotations(annotation):
    yield annotation
    for pair in annotation.elements:
        stack = [pair.value]
        while stack:
            value = stack.pop()
            if isinstance(value, AnnotationElementValue):
                yield from _nested_annotations(value.annotation)
            elif isinstance(value, ArrayElementValue):
                stack.extend(value.values)

def annotation_types(classfile, options=None):
    """
    Sorted type descriptors of all annotations used in the class,
    on the class itself, its members and their parameters.
    """
    found = set()
    pool = classfile.constant_pool
    for _, records in iter_attributes(classfile, options):
        for record in records:
            if classfile.attribute_name(record) not in ANNOTATION_ATTRIBUTES:
                continue
            value = classfile.decode(record, options)
            if isinstance(value, (RuntimeVisibleAnnotations, RuntimeInvisibleAnnotations)):
                groups = [value.annotations]
            elif isinstance(value, (RuntimeVisibleParameterAnnotations, RuntimeInvisibleParameterAnnotations)):
                groups = value.parameters
            else:
                continue
            for annotations in groups:
                for annotation in annotations:
                    for nested in _nested_annotations(annotation):
                        found.add(pool.utf8(nested.type_index))
    return sorted(found)

def dotted(internal_name):
    return internal_name.replace('/', '.')

def descriptor_classes(descriptor):
    """
    Dotted names of the class types in a field or method descriptor.
    Arrays count as their component type; primitives are skipped.
    """
    return [dotted(name) for name in _CLASS_TYPE.findall(descriptor)]

def _class_ref_names(internal_name):
    # array classes appear in the pool as descriptors
    if internal_name.startswith('['):
        return descriptor_classes(internal_name)
    return [dotted(internal_name)]

def _annotation_type_names(classfile, records, options):
    pool = classfile.constant_pool
    for record in records:
        if classfile.attribute_name(record) not in ANNOTATION_ATTRIBUTES:
            continue
        value = classfile.decode(record, options)
        if isinstance(value, (RuntimeVisibleAnnotations, RuntimeInvisibleAnnotations)):
            groups = [value.annotations]
        else:
            groups = value.parameters
        for annotations in groups:
            for annotation in annotations:
                yield from descriptor_classes(pool.utf8(annotation.type_index))

def api_classes(classfile, project_classes=(), options=None):
    """
    Sorted dotted names of the outside classes a public class exposes:
    its superclass and interfaces, its annotations, and the annotations,
    field types, parameter, return and exception types of its public and
    protected members. Platform classes and `project_classes` are left out.
    """
    if not classfile.access_flags & ACC_PUBLIC:
        return []
    pool = classfile.constant_pool
    own = set(project_classes) | {dotted(classfile.name)}
    found = set()

    def add(names):
        for name in names:
            if name not in own and not name.startswith(API_IGNORED_PREFIXES):
                found.add(name)

    if classfile.super_class:
        add(_class_ref_names(classfile.super_name))
    for name in classfile.interface_names:
        add(_class_ref_names(name))
    add(_annotation_type_names(classfile, classfile.attributes, options))

    for member in classfile.fields + classfile.methods:
        if not member.access_flags & (ACC_PUBLIC | ACC_PROTECTED):
            continue
        add(descriptor_classes(classfile.member_descriptor(member)))
        add(_annotation_type_names(classfile, member.attributes, options))
        for record in classfile.find_attributes('Exceptions', member.attributes):
            for index in classfile.decode(record, options).class_indices:
                add(_class_ref_names(pool.class_name(index)))
    return sorted(found)

def describe(classfile):
    lines = [
        f'Class {classfile.name} (version {classfile.major_version}.{classfile.minor_version})',
        f'  flags: {pretty_flags(classfile.access_flags)}',
        f'  super: {classfile.super_name}',
    ]
    if classfile.interfaces:
        lines.append(f'  interfaces: {", ".join(classfile.interface_names)}')
    lines.append(f'  constants: {len(classfile.constant_pool)}, fields: {len(classfile.fields)}, methods: {len(classfile.methods)}')
    lines.append(f'  attributes: {", ".join(classfile.attribute_name(r) for r in classfile.attributes)}')
    return lines

def dump_attributes(classfile, options):
    lines = []
    for label, records in iter_attributes(classfile, options):
        for record in records:
            try:
                value = classfile.decode(record, options)
            except ClassFormatError as e:
                lines.append(f'  {label}: #{record.name_index} FAILED: {e}')
                continue
            if isinstance(value, Code):
                value = f'Code(max_stack={value.max_stack}, max_locals={value.max_locals}, {len(value.code)} bytes)'
            lines.append(f'  {label}: {value}')
    return lines

def peek(input_path, decode=False, annotations=False, api=False, verbose=False, options=None):
    options = options or DEFAULT_OPTIONS
    failures = 0
    parsed = []
    for filename, data in iter_classes(input_path, verbose):
        if verbose:
            print(f'Reading {filename}')
        try:
            classfile = parse_class(data, options)
            parsed.append((filename, classfile, describe(classfile)))
        except ClassFormatError as e:
            print(f'{filename}: {e}', file=sys.stderr)
            failures += 1

    # classes of the jar itself are never reported as API classes
    project_classes = {dotted(classfile.name) for _, classfile, _ in parsed}

    for filename, classfile, summary in parsed:
        for line in summary:
            print(line)
        try:
            if decode:
                for line in dump_attributes(classfile, options):
                    print(line)
            if annotations:
                for descriptor in annotation_types(classfile, options):
                    print(f'  uses {descriptor}')
            if api:
                for name in api_classes(classfile, project_classes, options):
                    print(f'  api {name}')
        except ClassFormatError as e:
            print(f'{filename}: {e}', file=sys.stderr)
            failures += 1

    if verbose:
        print('Done.')
    return failures

def main(argv=None):
    parser = argparse.ArgumentParser(description=r'''
---------- Java class file inspector ----------
''', formatter_class=argparse.RawTextHelpFormatter)
    parser.add_argument('input', type=str, help='input class or jar file')
    parser.add_argument('-v', '--verbose', action='store_true', help='verbose output')
    parser.add_argument('--debug', action='store_true', help='log parser internals')
    parser.add_argument('--decode', action='store_true', help='decode every attribute')
    parser.add_argument('--annotations', action='store_true', help='list annotation types used')
    parser.add_argument('--api', action='store_true', help='list outside classes exposed by public API')
    parser.add_argument('--max-depth', type=int, default=DEFAULT_OPTIONS.max_depth,
                        help=f'maximum element value nesting (at most {MAX_DEPTH_LIMIT})')

    args = parser.parse_args(argv)
    if args.debug:
        logging.basicConfig(level=logging.DEBUG)

    try:
        options = ReaderOptions(max_depth=args.max_depth)
    except ValueError as e:
        parser.error(str(e))
    failures = peek(args.input, args.decode, args.annotations, args.api, args.verbose, options)
    return 1 if failures else 0

if __name__ == '__main__':
    sys.exit(main())
