"""
Proxies - Python aggregates exposed to Lua by reference.

A proxy is an empty Lua table whose metatable routes every access back to
Python. The Python value travels in a Handle held in a weak-keyed table on the
Lua side, so the value lives exactly as long as Lua can reach the proxy.

Kinds and the metatable they share:
    slice      list, bytearray, deque, tuple (read-only), ndarray
    map        dict and other mappings
    struct     dataclass and pydantic model instances
    interface  any other object (methods and public attributes)

Each metatable is created once per state, on first use.

Slice indices are 1-based on the Lua side. Slices also answer to
append(...), slice(i, j) and cap().
"""

import collections
import functools
import itertools
from typing import Any, Dict

import numpy as np

from . import translate
from .adapter import FunctionAdapter, lua_protected
from .errors import ProxyAccessError
from .kinds import Kind, describe, method_set, struct_fields
from .logging import get_logger

log = get_logger('proxy')


class Handle:
    """What a proxy carries: the value, its kind and its declared type."""

    __slots__ = ('value', 'kind', 'type')

    def __init__(self, value: Any, kind: Kind, tp: Any = Any):
        self.value = value
        self.kind = kind
        self.type = tp

    def __repr__(self) -> str:
        return f"Handle({self.kind.value}, {type(self.value).__name__})"


_METATABLE_FOR = {
    Kind.SLICE: 'slice',
    Kind.ARRAY: 'slice',
    Kind.MAP: 'map',
    Kind.STRUCT: 'struct',
    Kind.POINTER: 'interface',
}


def _as_index(key: Any):
    """Integer slice index for a Lua key, None if the key is not integral."""
    if isinstance(key, bool):
        return None
    if isinstance(key, int):
        return key
    if isinstance(key, float) and key.is_integer():
        return int(key)
    return None


class ProxyFactory:
    """Creates proxies and owns the per-kind metatables of one state."""

    def __init__(self, state):
        self._state = state
        self._metatables: Dict[str, Any] = {}
        self._type_tokens: Dict[Any, int] = {}
        self._ops = {
            'slice': SliceOps(state),
            'map': MapOps(state),
            'struct': StructOps(state, declared=True),
            'interface': StructOps(state, declared=False),
        }

    def metatable(self, name: str) -> Any:
        """The metatable for a proxy kind, created on first use."""
        mt = self._metatables.get(name)
        if mt is None:
            ops = self._ops[name]
            mt = self._state.lib.metatable(
                name.encode('ascii'),
                ops.index,
                ops.newindex,
                ops.length if ops.has_length else None,
                ops.call,
                ops.tostring,
                ops.keys,
            )
            self._metatables[name] = mt
            log.debug("created %s metatable", name)
        return mt

    def proxy(self, value: Any, kind: Kind, tp: Any = Any) -> Any:
        """Return the proxy for value, reusing an existing one when identity caching is on."""
        name = _METATABLE_FOR[kind]
        key = None
        if self._state.options.proxy_identity:
            # One proxy per (object, declared type): the handle carries the
            # element types its metamethods convert with
            key = b'%d:%d' % (id(value), self._type_token(tp))
        return self._state.lib.proxy(self.metatable(name), Handle(value, kind, tp), key)

    def _type_token(self, tp: Any) -> int:
        try:
            return self._type_tokens.setdefault(tp, len(self._type_tokens) + 1)
        except TypeError:
            return -id(tp)

    def clear(self) -> None:
        self._metatables.clear()
        self._type_tokens.clear()


class ProxyOps:
    """Metamethod implementations shared by all proxies of one kind."""

    has_length = True

    def __init__(self, state):
        self._state = state

    @lua_protected
    def call(self, handle: Handle, *args):
        raise ProxyAccessError(f"cannot call a {handle.kind.value} proxy")

    @lua_protected
    def tostring(self, handle: Handle):
        return self._state.encode(str(handle.value))

    @lua_protected
    def length(self, handle: Handle):
        return len(handle.value)


class SliceOps(ProxyOps):
    """Sequences: 1-based indexing, bounds-checked writes, append/slice/cap."""

    def _position_type(self, handle: Handle, pos: int) -> Any:
        value = handle.value
        if isinstance(value, np.ndarray):
            return value.dtype.type if value.ndim == 1 else np.ndarray
        if isinstance(value, bytearray):
            return int
        info = describe(handle.type)
        if info.is_fixed_tuple:
            return info.args[pos] if pos < len(info.args) else Any
        return info.elem

    @lua_protected
    def index(self, handle: Handle, key: Any):
        seq = handle.value
        i = _as_index(key)
        if i is not None:
            if 1 <= i <= len(seq):
                return translate.to_lua(self._state, seq[i - 1], self._position_type(handle, i - 1))
            return None
        if key == b'append':
            return self._state.lib.wrap(functools.partial(self.append, handle))
        if key == b'slice':
            return self._state.lib.wrap(functools.partial(self.slice, handle))
        if key == b'cap':
            return self._state.lib.wrap(functools.partial(self.cap, handle))
        return None

    @lua_protected
    def newindex(self, handle: Handle, key: Any, lv: Any):
        seq = handle.value
        i = _as_index(key)
        if i is None:
            raise ProxyAccessError(f"slice index must be an integer, got Lua {translate.lua_type_name(key)}")
        if isinstance(seq, tuple):
            raise ProxyAccessError("cannot assign to a tuple element: tuples are read-only")
        if not 1 <= i <= len(seq):
            raise ProxyAccessError(f"index {i} out of range (length {len(seq)})")
        seq[i - 1] = translate.from_lua(self._state, lv, self._position_type(handle, i - 1))

    @lua_protected
    def keys(self, handle: Handle):
        return self._state.runtime.table(*range(1, len(handle.value) + 1))

    @lua_protected
    def append(self, handle: Handle, *values):
        seq = handle.value
        if isinstance(seq, (tuple, np.ndarray)):
            raise ProxyAccessError(f"cannot append to {type(seq).__name__}: fixed length")
        for lv in values:
            seq.append(translate.from_lua(self._state, lv, self._position_type(handle, len(seq))))
        return translate.to_lua(self._state, seq, handle.type)

    @lua_protected
    def slice(self, handle: Handle, i: Any = 1, j: Any = None):
        seq = handle.value
        n = len(seq)
        start = _as_index(i)
        end = n if j is None else _as_index(j)
        if start is None or end is None:
            raise ProxyAccessError("slice bounds must be integers")
        if not (1 <= start <= end + 1 and end <= n):
            raise ProxyAccessError(f"slice bounds [{start}, {end}] out of range (length {n})")
        if isinstance(seq, collections.deque):
            part = collections.deque(itertools.islice(seq, start - 1, end))
        else:
            part = seq[start - 1:end]
        return translate.to_lua(self._state, part, handle.type)

    @lua_protected
    def cap(self, handle: Handle):
        return len(handle.value)


class MapOps(ProxyOps):
    """Mappings: keys converted to the key type, assigning nil deletes."""

    has_length = False

    @lua_protected
    def index(self, handle: Handle, key: Any):
        info = describe(handle.type)
        try:
            value = handle.value.get(translate.from_lua(self._state, key, info.key))
        except TypeError:
            # A key of the wrong type (or an unhashable one) cannot be present
            return None
        return translate.to_lua(self._state, value, info.value)

    @lua_protected
    def newindex(self, handle: Handle, key: Any, lv: Any):
        info = describe(handle.type)
        k = translate.from_lua(self._state, key, info.key)
        if lv is None:
            handle.value.pop(k, None)
        else:
            handle.value[k] = translate.from_lua(self._state, lv, info.value)

    @lua_protected
    def keys(self, handle: Handle):
        info = describe(handle.type)
        # Snapshot: the map may change while Lua iterates
        lua_keys = [translate.to_lua(self._state, k, info.key) for k in list(handle.value)]
        return self._state.runtime.table(*[k for k in lua_keys if k is not None])


class StructOps(ProxyOps):
    """Structs and plain objects: fields, properties and bound methods by name.

    Names starting with an underscore are private and invisible to Lua.
    Methods come back as adapted functions bound to the object, so Lua calls
    them with dot notation: obj.GetName().
    """

    has_length = False

    def __init__(self, state, declared: bool):
        super().__init__(state)
        self._declared = declared

    def _name(self, key: Any):
        if isinstance(key, bytes):
            return self._state.decode(key)
        return None

    @lua_protected
    def index(self, handle: Handle, key: Any):
        obj = handle.value
        name = self._name(key)
        if name is None or name.startswith('_'):
            return None
        cls = type(obj)
        if name in method_set(cls):
            return self._state.adapt(getattr(obj, name), name=f"{cls.__name__}.{name}")
        field = struct_fields(cls).get(name)
        try:
            attr = getattr(obj, name)
        except AttributeError:
            return None
        return translate.to_lua(self._state, attr, field.type if field is not None else Any)

    @lua_protected
    def newindex(self, handle: Handle, key: Any, lv: Any):
        obj = handle.value
        cls = type(obj)
        name = self._name(key)
        if name is None:
            raise ProxyAccessError(f"field name must be a string, got Lua {translate.lua_type_name(key)}")
        if name.startswith('_'):
            raise ProxyAccessError(f"cannot set private field '{name}'")
        if name in method_set(cls):
            raise ProxyAccessError(f"cannot assign to method '{name}' of {cls.__name__}")
        field = struct_fields(cls).get(name)
        if field is None and not hasattr(obj, name):
            raise ProxyAccessError(f"{cls.__name__} has no field '{name}'")
        value = translate.from_lua(self._state, lv, field.type if field is not None else Any)
        try:
            setattr(obj, name, value)
        except (AttributeError, TypeError, ValueError) as e:
            raise ProxyAccessError(f"field '{name}' of {cls.__name__} is read-only") from e

    @lua_protected
    def call(self, handle: Handle, *args):
        obj = handle.value
        if not callable(obj):
            raise ProxyAccessError(f"cannot call {type(obj).__name__} proxy: not callable")
        return FunctionAdapter(self._state, obj).invoke(args)

    @lua_protected
    def keys(self, handle: Handle):
        obj = handle.value
        names = list(struct_fields(type(obj)))
        if not self._declared:
            names.extend(
                name for name, value in getattr(obj, '__dict__', {}).items()
                if not name.startswith('_') and name not in names and not callable(value)
            )
        return self._state.runtime.table(*[self._state.encode(n) for n in names if not n.startswith('_')])
