"""
Lua State - interpreter handle, host value stack and bridge bootstrap.

The state:
1. Creates the lupa runtime (strings cross as raw bytes; luar owns the codec)
2. Runs the bootstrap chunk that builds the Lua half of the bridge: proxy
   construction, the per-kind metatable factory, the pin table used by
   LuaObject, and protected call helpers
3. Installs the Lua-facing helper table (luar.map2table, luar.type, ...)
4. Models the Lua C API value stack on the host side, so chunk results and
   translated values can be addressed by stack index (1-based from the bottom,
   negative from the top)

A state is not thread-safe; callers serialize access. Re-entrant calls
(Python -> Lua -> Python -> Lua) are fine.
"""

from typing import Any, List, Optional

import lupa
from lupa import LuaRuntime

from .adapter import adapt_function
from .api import LuarAPI
from .errors import ScriptError, StateClosedError
from .kinds import Kind
from .logging import get_logger
from .options import Options
from .proxy import Handle, ProxyFactory
from .translate import lua_type_name

log = get_logger('state')


# Lua half of the bridge. Receives the traceback flag as its only argument and
# returns the helper table used by the Python side.
_BOOTSTRAP = r"""
local with_traceback = ...
local setmetatable, select, error, type, tostring = setmetatable, select, error, type, tostring
local xpcall, load, pairs = xpcall, load, pairs
local traceback = debug and debug.traceback

local handles = setmetatable({}, {__mode = 'k'})   -- proxy -> Handle
local proxies = setmetatable({}, {__mode = 'v'})   -- id(value) -> proxy
local pinned = {}                                  -- pin key -> value
local last_key = 0

local lib = {}

local function check(ok, ...)
  if not ok then error((...), 0) end
  return ...
end

local function pack(...)
  return {n = select('#', ...), ...}
end

local function handler(err)
  if type(err) ~= 'string' then err = tostring(err) end
  if with_traceback and traceback then return traceback(err, 2) end
  return err
end

function lib.wrap(fn)
  return function(...) return check(fn(...)) end
end

function lib.metatable(kind, index, newindex, len, call, tostr, keys)
  local mt = {__name = 'luar.' .. kind}
  mt.__index = function(p, k) return check(index(handles[p], k)) end
  mt.__newindex = function(p, k, v) check(newindex(handles[p], k, v)) end
  if len ~= nil then
    mt.__len = function(p) return check(len(handles[p])) end
  end
  mt.__call = function(p, ...) return check(call(handles[p], ...)) end
  mt.__tostring = function(p) return check(tostr(handles[p])) end
  mt.__pairs = function(p)
    local h = handles[p]
    local ks = check(keys(h))
    local i = 0
    return function()
      i = i + 1
      local k = ks[i]
      if k ~= nil then return k, check(index(h, k)) end
    end, p, nil
  end
  if kind == 'slice' then mt.__ipairs = mt.__pairs end
  return mt
end

function lib.proxy(mt, h, id)
  local p
  if id ~= nil then p = proxies[id] end
  if p == nil then
    p = setmetatable({}, mt)
    handles[p] = h
    if id ~= nil then proxies[id] = p end
  end
  return p
end

function lib.make_null(h)
  local null = setmetatable({}, {
    __name = 'luar.null',
    __tostring = function() return 'null' end,
    __newindex = function() error('luar.null is read-only', 2) end,
  })
  handles[null] = h
  return null
end

function lib.handle(v)
  if type(v) == 'table' then return handles[v] end
  return nil
end

function lib.pin(v)
  last_key = last_key + 1
  pinned[last_key] = v
  return last_key
end

function lib.unpin(key)
  pinned[key] = nil
end

function lib.fetch(key)
  return pinned[key]
end

function lib.call(f, ...)
  return pack(xpcall(f, handler, ...))
end

function lib.run(code, chunkname)
  local f, err = load(code, chunkname)
  if f == nil then return pack(false, err) end
  return pack(xpcall(f, handler))
end

function lib.lookup(root, ...)
  local v = root
  for i = 1, select('#', ...) do
    if type(v) ~= 'table' then return nil end
    v = v[(select(i, ...))]
  end
  return v
end

function lib.setfield(t, k, v)
  t[k] = v
end

lib.pairs = pairs

return lib
"""

_LIB_FUNCTIONS = (
    'wrap', 'metatable', 'proxy', 'make_null', 'handle', 'pin', 'unpin', 'fetch',
    'call', 'run', 'lookup', 'setfield', 'pairs',
)


class LuaLib:
    """The bootstrap helpers, pulled out of the Lua table once."""

    def __init__(self, table):
        for name in _LIB_FUNCTIONS:
            setattr(self, name, table[name.encode('ascii')])


class State:
    """
    A Lua interpreter plus everything the bridge keeps per interpreter.

    Usage:
        with init() as state:
            register(state, '', {'sum': sum_floats})
            state.do_string("assert(sum{1, 2} == 3)")

            state.do_string("return {answer = 42}")
            config = copy_table_to_map(state, None, -1)
    """

    def __init__(self, options: Optional[Options] = None):
        self.options = options or Options()
        self.closed = False
        self._stack: List[Any] = []
        self._released: List[int] = []

        # Strings cross as bytes (encoding=None); luar encodes and decodes with
        # the configured codec so arbitrary byte strings survive the trip.
        self._lua = LuaRuntime(
            encoding=None,
            unpack_returned_tuples=True,
            register_eval=self.options.register_eval,
            register_builtins=self.options.register_builtins,
        )
        self._lib = LuaLib(self._lua.execute(_BOOTSTRAP, self.options.traceback))

        self.proxies = ProxyFactory(self)
        self.null = self._lib.make_null(Handle(None, Kind.NIL, None))

        self._api = LuarAPI(self)
        self._setup_namespace()
        log.debug("state created (namespace=%s)", self.options.namespace)

    def _setup_namespace(self) -> None:
        """Create the Lua-facing helper table and let the API fill it."""
        namespace = self._lua.table()
        self._lua.globals()[self.encode(self.options.namespace)] = namespace
        self._api.register_api(namespace)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def runtime(self) -> LuaRuntime:
        """The underlying lupa runtime."""
        if self.closed:
            raise StateClosedError("Lua state is closed")
        return self._lua

    @property
    def lib(self) -> LuaLib:
        """Bootstrap helper functions."""
        if self.closed:
            raise StateClosedError("Lua state is closed")
        return self._lib

    def close(self) -> None:
        """Close the state. Every proxy, pinned value and LuaObject dies with it."""
        if self.closed:
            return
        self.closed = True
        self._stack.clear()
        self._released.clear()
        self.proxies.clear()
        self.null = None
        self._lib = None
        self._lua = None
        log.debug("state closed")

    def __enter__(self) -> 'State':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # =========================================================================
    # Codec
    # =========================================================================

    def encode(self, text: str) -> bytes:
        """Encode a Python string as Lua string bytes."""
        return text.encode(self.options.encoding, self.options.encoding_errors)

    def decode(self, data: bytes) -> str:
        """Decode Lua string bytes to a Python string."""
        return data.decode(self.options.encoding, self.options.encoding_errors)

    # =========================================================================
    # Host value stack
    # =========================================================================

    def _position(self, index: int) -> Optional[int]:
        top = len(self._stack)
        if index > 0:
            pos = index - 1
        elif index < 0:
            pos = top + index
        else:
            return None
        return pos if 0 <= pos < top else None

    def get_top(self) -> int:
        """Number of values on the stack."""
        return len(self._stack)

    def set_top(self, index: int) -> None:
        """Grow (with nils) or shrink the stack; negative counts from the top."""
        top = len(self._stack)
        new_top = index if index >= 0 else top + index + 1
        if new_top < 0:
            raise IndexError(f"invalid new top {index} (top is {top})")
        if new_top < top:
            del self._stack[new_top:]
        else:
            self._stack.extend([None] * (new_top - top))

    def push(self, lua_value: Any) -> None:
        """Push a value already in Lua form (see translate.to_lua)."""
        self._stack.append(lua_value)

    def pop(self, n: int = 1) -> None:
        """Pop n values."""
        self.set_top(-n - 1)

    def value_at(self, index: int) -> Any:
        """The Lua value at a stack index."""
        pos = self._position(index)
        if pos is None:
            raise IndexError(f"stack index {index} out of range (top is {len(self._stack)})")
        return self._stack[pos]

    def lua_type(self, index: int) -> str:
        """Lua type name at a stack index, 'none' for an invalid index."""
        pos = self._position(index)
        if pos is None:
            return 'none'
        return lua_type_name(self._stack[pos])

    def is_table(self, index: int) -> bool:
        return self.lua_type(index) == 'table'

    def is_nil(self, index: int) -> bool:
        return self.lua_type(index) in ('nil', 'none')

    # =========================================================================
    # Execution
    # =========================================================================

    def globals(self):
        """The Lua global table."""
        return self.runtime.globals()

    def do_string(self, code: str, chunkname: Optional[str] = None) -> int:
        """Compile and run a chunk, pushing its results onto the stack.

        Args:
            code: Lua source
            chunkname: Name used in error messages (defaults to the source itself)

        Returns:
            Number of values the chunk returned (and that were pushed)

        Raises:
            ScriptError: On syntax or runtime errors
        """
        log.lua_script('do_string', code)
        self._flush_released()
        name = self.encode(chunkname) if chunkname is not None else None
        results = self._unpack(self.lib.run(self.encode(code), name), code)
        self._stack.extend(results)
        return len(results)

    def invoke(self, fn: Any, *args: Any) -> List[Any]:
        """Call a Lua value in protected mode with arguments already in Lua form.

        Returns:
            All results, as lupa hands them to Python

        Raises:
            ScriptError: If the call raised a Lua error
        """
        self._flush_released()
        return self._unpack(self.lib.call(fn, *args))

    def _unpack(self, packed, chunk: Optional[str] = None) -> List[Any]:
        n = packed[b'n']
        values = [packed[i] for i in range(2, n + 1)]
        if not packed[1]:
            message = values[0] if values else None
            if isinstance(message, bytes):
                message = self.decode(message)
            raise ScriptError(str(message), chunk)
        return values

    # =========================================================================
    # Bridge services used by translate / proxy / luaobject
    # =========================================================================

    def adapt(self, fn: Any, name: Optional[str] = None) -> Any:
        """Wrap a Python callable as a Lua function."""
        return adapt_function(self, fn, name)

    def handle_of(self, lua_value: Any) -> Optional[Handle]:
        """The Handle behind a proxy (or luar.null), None for anything else."""
        if lupa.lua_type(lua_value) != 'table':
            return None
        return self.lib.handle(lua_value)

    def release_later(self, key: int) -> None:
        """Queue a pin key for release at the next safe point."""
        if not self.closed:
            self._released.append(key)

    def _flush_released(self) -> None:
        while self._released:
            self._lib.unpin(self._released.pop())


def init(options: Optional[Options] = None, **overrides: Any) -> State:
    """Create a new Lua state.

    Args:
        options: Full options record (defaults to Options())
        **overrides: Individual option fields, applied on top of `options`

    Returns:
        A ready State; close it with State.close() or use it as a context manager
    """
    if overrides:
        base = options.model_dump() if options is not None else {}
        options = Options(**{**base, **overrides})
    return State(options)
