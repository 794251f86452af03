"""
Public entry points for moving values between Python and Lua, plus the
Lua-facing helper table installed as `luar` in every state.

Python side:
    register(state, '', {'sum': sum_floats})        # globals
    register(state, 'gu', {'keys': keys})           # gu.keys
    copy_table_to_map(state, None, -1)              # dict[str, Any]
    copy_table_to_slice(state, List[int], -1)

Lua side:
    luar.map2table(m)     copy a map proxy into a plain table
    luar.slice2table(s)   copy a slice proxy into a plain table
    luar.unproxify(p)     copy any proxy into plain tables, recursively
    luar.type(p)          proxy kind and Python type name
    luar.method(p, name)  a bound method of a proxied object
    luar.null             placeholder for None inside sequences
"""

from typing import Any, Dict, List

from . import translate
from .adapter import lua_protected
from .errors import ConversionError, LuarError, ProxyAccessError
from .kinds import Kind, classify, method_set
from .logging import get_logger

log = get_logger('api')


def register(state, namespace: str, mapping: Dict[str, Any]) -> None:
    """
    Make Python values visible to Lua.

    Args:
        state: Target State
        namespace: Global table to put the values in ('' for the globals
                   themselves); created if missing
        mapping: Name -> value; callables are adapted, other values are
                 translated as by host_to_lua
    """
    globals_table = state.globals()
    if namespace:
        key = state.encode(namespace)
        target = state.invoke(state.lib.lookup, globals_table, key)[0]
        if target is None:
            target = state.runtime.table()
            state.invoke(state.lib.setfield, globals_table, key, target)
        elif translate.lua_type_name(target) != 'table':
            raise LuarError(
                f"cannot register into '{namespace}': global is a {translate.lua_type_name(target)}"
            )
    else:
        target = globals_table

    for name, value in mapping.items():
        qualified = f"{namespace}.{name}" if namespace else name
        if classify(value) is Kind.FUNCTION:
            lua_value = state.adapt(value, name=qualified)
        else:
            lua_value = translate.to_lua(state, value)
        state.invoke(state.lib.setfield, target, state.encode(name), lua_value)
        log.debug("registered %s", qualified)


def _table_at(state, index: int) -> Any:
    lv = state.value_at(index)
    if translate.lua_type_name(lv) != 'table':
        raise ConversionError(
            f"expected a table at stack index {index}, got {translate.lua_type_name(lv)}"
        )
    return lv


def copy_table_to_map(state, target: Any = None, index: int = -1) -> Any:
    """Convert the table at a stack index to a mapping (dict[str, Any] by default)."""
    return translate.from_lua(state, _table_at(state, index), target if target is not None else Dict[str, Any])


def copy_table_to_slice(state, target: Any = None, index: int = -1) -> Any:
    """Convert the table at a stack index to a sequence (list[Any] by default)."""
    return translate.from_lua(state, _table_at(state, index), target if target is not None else List[Any])


class LuarAPI:
    """
    The `luar` table: helpers Lua scripts use to inspect and unwrap proxies.

    Plain Lua values passed where a proxy is expected are returned unchanged,
    so the helpers are safe to apply twice.
    """

    def __init__(self, state):
        self._state = state

    def register_api(self, namespace) -> None:
        """Install the helpers on the given Lua table."""
        wrap = self._state.lib.wrap
        namespace[b'map2table'] = wrap(self.map2table)
        namespace[b'slice2table'] = wrap(self.slice2table)
        namespace[b'unproxify'] = wrap(self.unproxify)
        namespace[b'type'] = wrap(self.type_of)
        namespace[b'method'] = wrap(self.method)
        namespace[b'null'] = self._state.null

    def _copy(self, value: Any, kinds, helper: str) -> Any:
        handle = self._state.handle_of(value)
        if handle is None:
            return value
        if handle.kind is Kind.NIL:
            return None
        if handle.kind not in kinds:
            raise ProxyAccessError(f"{helper}: expected {kinds[0].value} proxy, got {handle.kind.value}")
        return translate.to_table(self._state, handle.value, handle.type)

    @lua_protected
    def map2table(self, value: Any = None):
        return self._copy(value, (Kind.MAP,), 'map2table')

    @lua_protected
    def slice2table(self, value: Any = None):
        return self._copy(value, (Kind.SLICE, Kind.ARRAY), 'slice2table')

    @lua_protected
    def unproxify(self, value: Any = None):
        handle = self._state.handle_of(value)
        if handle is not None and handle.kind is Kind.POINTER:
            return value
        return self._copy(value, (Kind.SLICE, Kind.ARRAY, Kind.MAP, Kind.STRUCT), 'unproxify')

    @lua_protected
    def type_of(self, value: Any = None):
        encode = self._state.encode
        handle = self._state.handle_of(value)
        if handle is None:
            return encode(translate.lua_type_name(value))
        return encode(handle.kind.value), encode(type(handle.value).__name__)

    @lua_protected
    def method(self, value: Any = None, name: Any = None):
        handle = self._state.handle_of(value)
        if handle is None or handle.kind not in (Kind.STRUCT, Kind.POINTER):
            raise ProxyAccessError("method: expected a struct or object proxy")
        if not isinstance(name, bytes):
            raise ProxyAccessError("method: name must be a string")
        obj = handle.value
        method_name = self._state.decode(name)
        if method_name not in method_set(type(obj)):
            raise ProxyAccessError(f"{type(obj).__name__} has no method '{method_name}'")
        return self._state.adapt(getattr(obj, method_name), name=f"{type(obj).__name__}.{method_name}")
