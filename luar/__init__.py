"""
luar - bidirectional Python <-> Lua bridge.

Python functions become Lua functions with argument and result conversion,
Python aggregates appear in Lua as live proxies, and Lua tables and functions
come back as Python values or as LuaObject handles.

Quick start:
    from luar import init, register

    with init() as state:
        register(state, '', {'greet': lambda name: f'hi {name}'})
        state.do_string("assert(greet('bob') == 'hi bob')")
"""

from .api import LuarAPI, copy_table_to_map, copy_table_to_slice, register
from .errors import (
    ConversionError,
    LuarError,
    PathError,
    ProxyAccessError,
    ScriptError,
    StateClosedError,
)
from .kinds import Kind
from .logging import configure_logging, get_logger
from .luaobject import (
    LuaCallable,
    LuaIter,
    LuaObject,
    new_lua_object,
    new_lua_object_from_name,
    new_lua_object_from_value,
)
from .options import Options
from .state import State, init
from .translate import host_to_lua, lua_to_host

__all__ = [
    # State
    'State',
    'Options',
    'init',
    # Values
    'Kind',
    'register',
    'host_to_lua',
    'lua_to_host',
    'copy_table_to_map',
    'copy_table_to_slice',
    # Lua references
    'LuaObject',
    'LuaIter',
    'LuaCallable',
    'new_lua_object',
    'new_lua_object_from_name',
    'new_lua_object_from_value',
    # Lua-side helpers
    'LuarAPI',
    # Errors
    'LuarError',
    'ScriptError',
    'ConversionError',
    'ProxyAccessError',
    'PathError',
    'StateClosedError',
    # Logging
    'configure_logging',
    'get_logger',
]
