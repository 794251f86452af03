"""
LuaObject - Python-side handles to Lua values.

A LuaObject pins a Lua value (usually a table or function) in the state's pin
table so it stays alive while Python holds the handle. The pin is released
when the object is closed or garbage collected; collection only queues the
release, which the state performs at its next call into Lua.

Usage:
    config = new_lua_object(state, -1)
    config.get('options.tags.strong')       # nested lookup, nil-safe
    config.set('options.leave', False)
    for key, value in config:               # pairs()
        ...

    gsub = new_lua_object_from_name(state, 'string.gsub')
    gsub.call('hello $NAME', '%$(%u+)', {'NAME': 'Dolly'})
"""

import weakref
from typing import Any, Iterator, List, Optional, Tuple, get_args, get_origin

from . import translate
from .errors import PathError, ScriptError
from .kinds import Kind, TypeInfo
from .logging import get_logger

log = get_logger('luaobject')


def _release(state, key: int) -> None:
    state.release_later(key)


class LuaObject:
    """A pinned reference to a Lua value."""

    def __init__(self, state, key: int):
        self._state = state
        self.key = key
        self._finalizer = weakref.finalize(self, _release, state, key)

    @classmethod
    def pin(cls, state, lua_value: Any) -> 'LuaObject':
        """Pin a Lua value and return a handle to it."""
        key = state.lib.pin(lua_value)
        log.trace("pinned Lua %s as #%d", translate.lua_type_name(lua_value), key)
        return cls(state, key)

    @property
    def state(self):
        return self._state

    def lua_value(self) -> Any:
        """The pinned Lua value."""
        return self._state.lib.fetch(self.key)

    @property
    def type(self) -> str:
        """Lua type name of the referenced value."""
        return translate.lua_type_name(self.lua_value())

    def push(self) -> None:
        """Push the referenced value onto the state's stack."""
        self._state.push(self.lua_value())

    def close(self) -> None:
        """Release the pin now instead of at garbage collection."""
        if self._finalizer.detach() is not None and not self._state.closed:
            self._state.lib.unpin(self.key)

    def __enter__(self) -> 'LuaObject':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        if self._state.closed:
            return f"<LuaObject #{self.key} (closed state)>"
        return f"<LuaObject #{self.key} {self.type}>"

    # =========================================================================
    # Field access
    # =========================================================================

    def _segments(self, path: str) -> List[bytes]:
        return [self._state.encode(segment) for segment in path.split('.')]

    def _lookup(self, *keys: Any) -> Any:
        results = self._state.invoke(self._state.lib.lookup, self.lua_value(), *keys)
        return results[0] if results else None

    def get(self, path: str, target: Any = Any) -> Any:
        """
        Look up a dotted path ('options.tags.strong') and convert the result.

        A path that runs through a missing or non-table intermediate yields
        None instead of raising.
        """
        return translate.from_lua(self._state, self._lookup(*self._segments(path)), target)

    def geti(self, index: int, target: Any = Any) -> Any:
        """Look up an integer key."""
        return translate.from_lua(self._state, self._lookup(index), target)

    def get_object(self, path: str) -> 'LuaObject':
        """Like get(), but return the value as a new LuaObject."""
        return LuaObject.pin(self._state, self._lookup(*self._segments(path)))

    def set(self, path: str, value: Any) -> None:
        """
        Assign through a dotted path.

        Raises:
            PathError: If the object or an intermediate segment is not a table
        """
        state = self._state
        *parents, last = path.split('.')
        parent = self.lua_value()
        if translate.lua_type_name(parent) != 'table':
            raise PathError(path, '')
        for segment in parents:
            results = state.invoke(state.lib.lookup, parent, state.encode(segment))
            parent = results[0] if results else None
            if translate.lua_type_name(parent) != 'table':
                raise PathError(path, segment)
        state.invoke(state.lib.setfield, parent, state.encode(last), translate.to_lua(state, value))

    # =========================================================================
    # Calls
    # =========================================================================

    def call_raw(self, *args: Any) -> List[Any]:
        """Call the value with Python arguments (deep-copied) and return raw Lua results."""
        state = self._state
        lua_args = [translate.to_lua(state, a, copy=True) for a in args]
        return state.invoke(self.lua_value(), *lua_args)

    def call(self, *args: Any) -> Any:
        """
        Call the value and return its first result (None if there is none).

        Lists, tuples, dicts and structs are passed as fresh Lua tables.

        Raises:
            ScriptError: If the call raised a Lua error
        """
        results = self.call_raw(*args)
        return translate.from_lua(self._state, results[0]) if results else None

    def call_multi(self, *args: Any) -> Tuple[Any, ...]:
        """Call the value and return all of its results."""
        return tuple(translate.from_lua(self._state, r) for r in self.call_raw(*args))

    def __call__(self, *args: Any) -> Any:
        return self.call(*args)

    # =========================================================================
    # Iteration
    # =========================================================================

    def iter(self) -> 'LuaIter':
        """Iterator over the referenced table, in pairs() order."""
        return LuaIter(self)

    def __iter__(self) -> Iterator[Tuple[Any, Any]]:
        return self.iter()


class LuaIter:
    """
    pairs() over a LuaObject.

    Either drive it explicitly:
        it = obj.iter()
        while it.next():
            print(it.key, it.value)

    or use it as a Python iterator of (key, value) tuples.
    """

    def __init__(self, obj: LuaObject):
        self._state = obj.state
        value = obj.lua_value()
        # pairs() on a non-table only fails once the loop advances
        if translate.lua_type_name(value) != 'table':
            raise ScriptError(f"cannot iterate over a Lua {translate.lua_type_name(value)}")
        results = self._state.invoke(self._state.lib.pairs, value)
        results += [None] * (3 - len(results))
        self._next, self._table, self._control = results[:3]
        self._done = False
        self.key: Any = None
        self.value: Any = None

    def next(self) -> bool:
        """Advance; returns False once the table is exhausted."""
        if self._done:
            return False
        results = self._state.invoke(self._next, self._table, self._control)
        if not results or results[0] is None:
            self._done = True
            self.key = self.value = None
            return False
        self._control = results[0]
        self.key = translate.from_lua(self._state, results[0])
        self.value = translate.from_lua(self._state, results[1] if len(results) > 1 else None)
        return True

    def __iter__(self) -> 'LuaIter':
        return self

    def __next__(self) -> Tuple[Any, Any]:
        if not self.next():
            raise StopIteration
        return self.key, self.value


class LuaCallable:
    """A Lua function seen from Python as an ordinary callable.

    Arguments are deep-copied into Lua. The first result is converted to the
    declared return type of the Callable annotation, if there was one; a tuple
    return type collects several results.
    """

    def __init__(self, lua_object: LuaObject, info: Optional[TypeInfo] = None):
        self.lua_object = lua_object
        self._returns: Any = Any
        if info is not None and info.kind is Kind.FUNCTION and info.args:
            self._returns = info.args[-1]

    def __call__(self, *args: Any) -> Any:
        state = self.lua_object.state
        results = self.lua_object.call_raw(*args)
        returns = self._returns
        members = get_args(returns)
        if get_origin(returns) is tuple and members and members[-1] is not Ellipsis:
            results += [None] * (len(members) - len(results))
            return tuple(translate.from_lua(state, r, t) for r, t in zip(results, members))
        return translate.from_lua(state, results[0] if results else None, returns)

    def __repr__(self) -> str:
        return f"<LuaCallable #{self.lua_object.key}>"


def new_lua_object(state, index: int) -> LuaObject:
    """Pin the value at a stack index."""
    return LuaObject.pin(state, state.value_at(index))


def new_lua_object_from_name(state, name: str) -> LuaObject:
    """Pin the value found at a dotted global name ('string.gsub'); nil if absent."""
    segments = [state.encode(s) for s in name.split('.')]
    results = state.invoke(state.lib.lookup, state.globals(), *segments)
    return LuaObject.pin(state, results[0] if results else None)


def new_lua_object_from_value(state, value: Any) -> LuaObject:
    """Deep-copy a Python value into Lua and pin the result."""
    return LuaObject.pin(state, translate.to_lua(state, value, copy=True))
