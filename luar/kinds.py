"""
Type classifier.

Everything the translator and the proxies do is driven by two questions:

- classify(value): what kind of thing is this Python value, at runtime?
- describe(tp): what kind of value does this target annotation ask for?

Both answer with a Kind. describe() additionally returns the element, key,
value or field types a composite target needs (TypeInfo), and the module
exposes the field tables and method sets used by struct proxies.
"""

import asyncio
import collections
import collections.abc as cabc
import dataclasses
import functools
import inspect
import queue
import types
import typing
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union, get_args, get_origin, get_type_hints

import numpy as np
from pydantic import BaseModel


class Kind(str, Enum):
    """Value categories shared by runtime values and target types."""
    NIL = 'nil'
    BOOL = 'bool'
    INTEGER = 'integer'
    FLOAT = 'float'
    COMPLEX = 'complex'
    STRING = 'string'
    BYTES = 'byte-slice'
    SLICE = 'slice'
    ARRAY = 'array'
    MAP = 'map'
    STRUCT = 'struct'
    POINTER = 'pointer'
    INTERFACE = 'interface'
    FUNCTION = 'function'
    CHANNEL = 'channel'
    OTHER = 'other'


# Aggregates that cross into Lua as proxies
AGGREGATE_KINDS = frozenset({Kind.SLICE, Kind.ARRAY, Kind.MAP, Kind.STRUCT, Kind.POINTER})

_CHANNEL_TYPES = (queue.Queue, queue.SimpleQueue, asyncio.Queue)
_OTHER_TYPES = (
    types.ModuleType,
    types.GeneratorType,
    types.AsyncGeneratorType,
    types.CoroutineType,
    set,
    frozenset,
    type(Ellipsis),
    type(NotImplemented),
)
_SEQUENCE_ABCS = (cabc.Sequence, cabc.MutableSequence, cabc.Iterable, cabc.Collection)
_MAPPING_ABCS = (cabc.Mapping, cabc.MutableMapping)


def is_struct_type(tp: Any) -> bool:
    """True for dataclass and pydantic model classes."""
    if not isinstance(tp, type):
        return False
    return dataclasses.is_dataclass(tp) or issubclass(tp, BaseModel)


def classify(value: Any) -> Kind:
    """Classify a value by its dynamic type."""
    if value is None:
        return Kind.NIL
    if isinstance(value, (bool, np.bool_)):
        return Kind.BOOL
    if isinstance(value, (int, np.integer)):
        return Kind.INTEGER
    if isinstance(value, (float, np.floating)):
        return Kind.FLOAT
    if isinstance(value, (complex, np.complexfloating)):
        return Kind.COMPLEX
    if isinstance(value, str):
        return Kind.STRING
    if isinstance(value, (bytes, memoryview)):
        return Kind.BYTES
    if isinstance(value, (tuple, np.ndarray)):
        return Kind.ARRAY
    if isinstance(value, (list, bytearray, collections.deque)):
        return Kind.SLICE
    if isinstance(value, cabc.Mapping):
        return Kind.MAP
    if isinstance(value, type):
        # Classes are constructors
        return Kind.FUNCTION
    if is_struct_type(type(value)):
        return Kind.STRUCT
    if inspect.isroutine(value) or isinstance(value, functools.partial):
        return Kind.FUNCTION
    if isinstance(value, _CHANNEL_TYPES):
        return Kind.CHANNEL
    if isinstance(value, _OTHER_TYPES):
        return Kind.OTHER
    return Kind.POINTER


@dataclass(frozen=True)
class TypeInfo:
    """Classification of a target type.

    Attributes:
        kind: Category the target belongs to
        origin: Runtime class used to check and build values (list, dict, Test...)
        args: Type arguments (element type, key/value types, fixed tuple members)
        members: Union members, tried in order; empty for non-unions
    """
    kind: Kind
    origin: Any = None
    args: Tuple[Any, ...] = ()
    members: Tuple[Any, ...] = ()

    @property
    def is_union(self) -> bool:
        return bool(self.members)

    @property
    def is_fixed_tuple(self) -> bool:
        return self.kind is Kind.ARRAY and self.origin is tuple

    @property
    def elem(self) -> Any:
        """Element type of a slice or array target."""
        if self.kind in (Kind.SLICE, Kind.ARRAY) and self.args and not self.is_fixed_tuple:
            return self.args[0]
        return Any

    @property
    def key(self) -> Any:
        """Key type of a map target."""
        if self.kind is Kind.MAP and self.args:
            return self.args[0]
        return Any

    @property
    def value(self) -> Any:
        """Value type of a map target."""
        if self.kind is Kind.MAP and len(self.args) > 1:
            return self.args[1]
        return Any

    def accepts(self, value: Any) -> bool:
        """True if an existing Python value can be used as-is for this target."""
        if self.kind is Kind.INTERFACE:
            return True
        if self.is_union:
            return any(describe(m).accepts(value) for m in self.members)
        if isinstance(self.origin, type):
            return isinstance(value, self.origin)
        return False


_INTERFACE = TypeInfo(Kind.INTERFACE)


def _ndarray_scalar(args: Tuple[Any, ...]) -> Tuple[Any, ...]:
    """Pull the scalar type out of ndarray[shape, dtype[scalar]] arguments."""
    if len(args) == 2:
        scalar = get_args(args[1])
        if scalar and isinstance(scalar[0], type) and issubclass(scalar[0], np.generic):
            return (scalar[0],)
    return ()


def _describe(tp: Any) -> TypeInfo:
    if tp is Any or tp is object or tp is inspect.Parameter.empty:
        return _INTERFACE
    if isinstance(tp, (typing.TypeVar, str, typing.ForwardRef)):
        return _INTERFACE
    if tp is None or tp is type(None):
        return TypeInfo(Kind.NIL, type(None))

    origin = get_origin(tp)
    args = get_args(tp)

    if origin is typing.Annotated:
        return describe(args[0])
    if origin is Union or origin is types.UnionType:
        return TypeInfo(Kind.INTERFACE, members=args)
    if origin is typing.Literal or origin is typing.ClassVar:
        return _INTERFACE

    cls = origin if origin is not None else tp
    if not isinstance(cls, type):
        return _INTERFACE

    if cls is tuple:
        if not args or (len(args) == 2 and args[1] is Ellipsis):
            return TypeInfo(Kind.SLICE, tuple, args[:1])
        if args == ((),):
            return TypeInfo(Kind.ARRAY, tuple, ())
        return TypeInfo(Kind.ARRAY, tuple, args)
    if issubclass(cls, np.ndarray):
        return TypeInfo(Kind.ARRAY, np.ndarray, _ndarray_scalar(args))
    if issubclass(cls, (bool, np.bool_)):
        return TypeInfo(Kind.BOOL, cls)
    if issubclass(cls, (int, np.integer)):
        return TypeInfo(Kind.INTEGER, cls)
    if issubclass(cls, (float, np.floating)):
        return TypeInfo(Kind.FLOAT, cls)
    if issubclass(cls, (complex, np.complexfloating)):
        return TypeInfo(Kind.COMPLEX, cls)
    if issubclass(cls, str):
        return TypeInfo(Kind.STRING, cls)
    if issubclass(cls, (bytes, bytearray)):
        return TypeInfo(Kind.BYTES, cls)
    if issubclass(cls, (list, collections.deque)):
        return TypeInfo(Kind.SLICE, cls, args)
    if cls in _SEQUENCE_ABCS:
        return TypeInfo(Kind.SLICE, list, args)
    if issubclass(cls, dict):
        return TypeInfo(Kind.MAP, cls, args)
    if cls in _MAPPING_ABCS:
        return TypeInfo(Kind.MAP, dict, args)
    if cls is cabc.Callable:
        return TypeInfo(Kind.FUNCTION, None, args)
    if is_struct_type(cls):
        return TypeInfo(Kind.STRUCT, cls)
    if issubclass(cls, _CHANNEL_TYPES):
        return TypeInfo(Kind.CHANNEL, cls)
    if issubclass(cls, (set, frozenset, types.ModuleType)):
        return TypeInfo(Kind.OTHER, cls)
    return TypeInfo(Kind.POINTER, cls)


_describe_cached = functools.lru_cache(maxsize=512)(_describe)


def describe(tp: Any) -> TypeInfo:
    """Classify a target type annotation."""
    try:
        return _describe_cached(tp)
    except TypeError:
        # Unhashable annotation (e.g. Annotated with a dict payload)
        return _describe(tp)


def type_hints(obj: Any) -> Dict[str, Any]:
    """get_type_hints() that degrades to raw annotations instead of raising."""
    try:
        return get_type_hints(obj)
    except (NameError, TypeError, AttributeError):
        annotations = getattr(obj, '__annotations__', None) or {}
        return {k: v for k, v in annotations.items() if not isinstance(v, str)}


@dataclass(frozen=True)
class FieldInfo:
    """A settable, public field of a struct type."""
    name: str
    type: Any
    required: bool
    init: bool = True


@functools.lru_cache(maxsize=256)
def struct_fields(cls: type) -> Dict[str, FieldInfo]:
    """Field table for a dataclass, pydantic model or annotated plain class."""
    hints = type_hints(cls)

    if dataclasses.is_dataclass(cls):
        out = {}
        for f in dataclasses.fields(cls):
            missing = f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING
            out[f.name] = FieldInfo(f.name, hints.get(f.name, Any), missing and f.init, f.init)
        return out

    if issubclass(cls, BaseModel):
        return {
            name: FieldInfo(name, f.annotation if f.annotation is not None else Any, f.is_required())
            for name, f in cls.model_fields.items()
        }

    return {
        name: FieldInfo(name, tp, False, False)
        for name, tp in hints.items()
        if not name.startswith('_') and get_origin(tp) is not typing.ClassVar
    }


def find_field(cls: type, name: str) -> Optional[FieldInfo]:
    """Look up a field by exact name, then case-insensitively."""
    table = struct_fields(cls)
    if name in table:
        return table[name]
    lowered = name.lower()
    for field_name, info in table.items():
        if field_name.lower() == lowered:
            return info
    return None


@functools.lru_cache(maxsize=256)
def method_set(cls: type) -> frozenset:
    """Public method names of a class, without triggering descriptors."""
    names = set()
    for name in dir(cls):
        if name.startswith('_'):
            continue
        try:
            attr = inspect.getattr_static(cls, name)
        except AttributeError:
            continue
        if isinstance(attr, (staticmethod, classmethod)) or inspect.isroutine(attr):
            names.add(name)
    return frozenset(names)
