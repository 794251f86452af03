"""
Exception hierarchy for the Lua bridge.

Every error raised by luar derives from LuarError so callers can catch the
whole family at once:

- ScriptError: Lua failed to compile or raised at runtime
- ConversionError: a value cannot be translated to the requested type
- ProxyAccessError: illegal operation on a proxied Python value
- PathError: assignment through a dotted path whose intermediate is missing
- StateClosedError: the Lua state was used after close()
"""

from typing import Optional


class LuarError(Exception):
    """Base class for all bridge errors."""


class ScriptError(LuarError):
    """Raised when a Lua chunk or Lua call fails.

    Carries Lua's own error message; for errors raised by Python code called
    from Lua this is the text of the original exception.
    """

    def __init__(self, message: str, chunk: Optional[str] = None):
        self.chunk = chunk
        super().__init__(message)


class ConversionError(LuarError, TypeError):
    """Raised when a value cannot be converted between Lua and Python."""


class ProxyAccessError(LuarError):
    """Raised for out-of-range writes, read-only fields and bad calls on proxies."""


class PathError(LuarError, LookupError):
    """Raised when a dotted path cannot be followed for assignment."""

    def __init__(self, path: str, segment: str):
        self.path = path
        self.segment = segment
        super().__init__(f"'{segment}' is not a table in path '{path}'")


class StateClosedError(LuarError, RuntimeError):
    """Raised when a closed Lua state is used."""
