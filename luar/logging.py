"""
luar Logging

Module-keyed loggers with per-module levels and special tracing for the
Python <-> Lua boundary.

Usage:
    from luar.logging import get_logger

    log = get_logger('adapter')
    log.debug("Adapting %s", fn)
    log.lua_call("fun2", 42, b'hello')   # Only when call tracing is on
    log.lua_script("do_string", code)    # Only when script logging is on

Configuration:
    Environment variables:
        LUAR_LOG_LEVEL=DEBUG          # Global default level
        LUAR_LOG_ADAPTER=TRACE        # Module-specific level
        LUAR_LOG_LUA_CALLS=1          # Trace every adapted call from Lua
        LUAR_LOG_LUA_SCRIPTS=1        # Log chunks run by do_string

    Or programmatically:
        from luar.logging import configure_logging
        configure_logging(level='DEBUG', modules={'proxy': 'TRACE'})
"""

import os
import sys
import traceback
from enum import IntEnum
from functools import lru_cache
from typing import Any, Dict, Optional


class LogLevel(IntEnum):
    """Log levels matching Python's logging module."""
    TRACE = 5      # Even more verbose than DEBUG
    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40
    CRITICAL = 50
    OFF = 100      # Disable logging


_config: Dict[str, Any] = {
    'default_level': LogLevel.WARNING,
    'module_levels': {},
    'lua_calls': False,      # Trace adapted host calls made from Lua
    'lua_scripts': False,    # Log chunks executed by do_string
}


def _format_message(module: str, level: str, msg: str) -> str:
    """Format a log message."""
    return f"[luar.{module}] {level}: {msg}"


def _level_from_string(level_str: str) -> LogLevel:
    """Convert string to LogLevel."""
    mapping = {
        'TRACE': LogLevel.TRACE,
        'DEBUG': LogLevel.DEBUG,
        'INFO': LogLevel.INFO,
        'WARNING': LogLevel.WARNING,
        'WARN': LogLevel.WARNING,
        'ERROR': LogLevel.ERROR,
        'CRITICAL': LogLevel.CRITICAL,
        'OFF': LogLevel.OFF,
    }
    return mapping.get(level_str.upper(), LogLevel.WARNING)


def _env_flag(name: str) -> bool:
    return os.environ.get(name, '').lower() in ('1', 'true', 'yes', 'on')


def configure_logging(
    level: str = 'WARNING',
    modules: Optional[Dict[str, str]] = None,
    lua_calls: bool = False,
    lua_scripts: bool = False,
) -> None:
    """
    Configure the logging system.

    Args:
        level: Default log level for all modules
        modules: Dict of module_name -> level for per-module configuration
        lua_calls: Trace host functions invoked from Lua (arguments and results)
        lua_scripts: Log each chunk executed through State.do_string
    """
    _config['default_level'] = _level_from_string(level)

    if modules:
        for mod, mod_level in modules.items():
            _config['module_levels'][mod] = _level_from_string(mod_level)

    _config['lua_calls'] = lua_calls
    _config['lua_scripts'] = lua_scripts


def _load_env_config() -> None:
    """Load configuration from LUAR_LOG_* environment variables."""
    if 'LUAR_LOG_LEVEL' in os.environ:
        _config['default_level'] = _level_from_string(os.environ['LUAR_LOG_LEVEL'])

    # Module-specific levels (LUAR_LOG_PROXY=DEBUG -> proxy: DEBUG)
    reserved = ('LUAR_LOG_LEVEL', 'LUAR_LOG_LUA_CALLS', 'LUAR_LOG_LUA_SCRIPTS')
    for key, value in os.environ.items():
        if key.startswith('LUAR_LOG_') and key not in reserved:
            module_name = key[9:].lower()
            _config['module_levels'][module_name] = _level_from_string(value)

    _config['lua_calls'] = _env_flag('LUAR_LOG_LUA_CALLS')
    _config['lua_scripts'] = _env_flag('LUAR_LOG_LUA_SCRIPTS')


# Load env config on import
_load_env_config()


class LuarLogger:
    """
    Logger for a specific module.

    Provides standard log levels plus special methods for boundary tracing.
    """

    def __init__(self, module: str):
        self.module = module
        self._module_key = module.lower().replace('.', '_').replace('/', '_')

    @property
    def level(self) -> LogLevel:
        """Get effective log level for this module."""
        if self._module_key in _config['module_levels']:
            return _config['module_levels'][self._module_key]
        return _config['default_level']

    def is_enabled_for(self, level: LogLevel) -> bool:
        """Check if message at given level should be logged."""
        return level >= self.level

    def _log(self, level: LogLevel, level_name: str, msg: str, *args) -> None:
        if not self.is_enabled_for(level):
            return

        if args:
            try:
                msg = msg % args
            except (TypeError, ValueError):
                msg = f"{msg} {args}"

        self._emit(level_name, msg)

    def _emit(self, level_name: str, msg: str) -> None:
        print(_format_message(self.module, level_name, msg), file=sys.stderr)

    def trace(self, msg: str, *args) -> None:
        """Log at TRACE level (very verbose)."""
        self._log(LogLevel.TRACE, 'TRACE', msg, *args)

    def debug(self, msg: str, *args) -> None:
        """Log at DEBUG level."""
        self._log(LogLevel.DEBUG, 'DEBUG', msg, *args)

    def info(self, msg: str, *args) -> None:
        """Log at INFO level."""
        self._log(LogLevel.INFO, 'INFO', msg, *args)

    def warning(self, msg: str, *args) -> None:
        """Log at WARNING level."""
        self._log(LogLevel.WARNING, 'WARN', msg, *args)

    def warn(self, msg: str, *args) -> None:
        """Alias for warning()."""
        self.warning(msg, *args)

    def error(self, msg: str, *args) -> None:
        """Log at ERROR level."""
        self._log(LogLevel.ERROR, 'ERROR', msg, *args)

    def critical(self, msg: str, *args) -> None:
        """Log at CRITICAL level."""
        self._log(LogLevel.CRITICAL, 'CRIT', msg, *args)

    def log_traceback(self, exc: BaseException, level: LogLevel = LogLevel.DEBUG) -> None:
        """
        Log a traceback for an exception.

        Args:
            exc: Exception to log
            level: Level to log the traceback lines at
        """
        if not self.is_enabled_for(level):
            return

        for line in traceback.format_exception(type(exc), exc, exc.__traceback__):
            for part in line.rstrip().split('\n'):
                if part.strip():
                    self._log(level, 'TRACE', part)

    # Boundary tracing

    def lua_call(self, fn_name: str, *args) -> None:
        """
        Log a host function call made from Lua.

        Only logs if lua_calls tracing is enabled; the module level does not
        apply.
        """
        if not _config['lua_calls']:
            return

        args_str = ', '.join(repr(a) for a in args)
        self._emit('LUA→', f"{fn_name}({args_str})")

    def lua_result(self, fn_name: str, result: Any) -> None:
        """
        Log the result of a host function call made from Lua.

        Only logs if lua_calls tracing is enabled.
        """
        if not _config['lua_calls']:
            return

        self._emit('LUA←', f"{fn_name} = {result!r}")

    def lua_script(self, action: str, code: str) -> None:
        """
        Log Lua chunk execution.

        Only logs if lua_scripts tracing is enabled.

        Args:
            action: What's happening (do_string, call, ...)
            code: The chunk, truncated to its first line
        """
        if not _config['lua_scripts']:
            return

        first_line = code.strip().split('\n', 1)[0]
        self._emit('LUA', f"{action}: {first_line[:80]}")


@lru_cache(maxsize=64)
def get_logger(module: str) -> LuarLogger:
    """
    Get a logger for the specified module.

    Loggers are cached, so calling get_logger('foo') multiple times
    returns the same logger instance.

    Args:
        module: Module name (e.g., 'state', 'proxy', 'adapter')

    Returns:
        LuarLogger instance for the module
    """
    return LuarLogger(module)


def enable_all_logging() -> None:
    """Enable DEBUG level for all modules and all boundary tracing."""
    configure_logging(
        level='DEBUG',
        lua_calls=True,
        lua_scripts=True,
    )


def disable_logging() -> None:
    """Disable all logging."""
    _config['default_level'] = LogLevel.OFF
    _config['lua_calls'] = False
    _config['lua_scripts'] = False
