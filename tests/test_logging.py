"""
Logging tests - levels, environment configuration and boundary tracing.

Run with: pytest tests/test_logging.py -v
"""

import pytest

from luar import register
from luar import logging as luar_logging
from luar.logging import LogLevel, configure_logging, disable_logging, get_logger


@pytest.fixture(autouse=True)
def restore_config():
    saved = dict(luar_logging._config)
    saved['module_levels'] = dict(saved['module_levels'])
    yield
    luar_logging._config.clear()
    luar_logging._config.update(saved)


class TestLevels:
    """Default and per-module levels."""

    def test_default_is_warning(self, capsys):
        configure_logging()
        log = get_logger('unit')
        log.info("quiet")
        log.warning("loud %d", 1)
        err = capsys.readouterr().err
        assert 'quiet' not in err
        assert '[luar.unit] WARN: loud 1' in err

    def test_module_level_override(self, capsys):
        configure_logging(level='ERROR', modules={'chatty': 'TRACE'})
        get_logger('chatty').trace("t")
        get_logger('other').warning("w")
        err = capsys.readouterr().err
        assert '[luar.chatty] TRACE: t' in err
        assert 'other' not in err

    def test_unknown_level_falls_back_to_warning(self):
        configure_logging(level='LOUD')
        assert get_logger('unit').level is LogLevel.WARNING

    def test_bad_format_args_do_not_raise(self, capsys):
        configure_logging(level='DEBUG')
        get_logger('unit').debug("%d items", 'many')
        assert 'items' in capsys.readouterr().err

    def test_disable(self, capsys):
        disable_logging()
        get_logger('unit').critical("x")
        assert capsys.readouterr().err == ''

    def test_loggers_are_cached(self):
        assert get_logger('same') is get_logger('same')


class TestEnvironment:
    """LUAR_LOG_* variables."""

    def test_env_config(self, monkeypatch):
        monkeypatch.setenv('LUAR_LOG_LEVEL', 'ERROR')
        monkeypatch.setenv('LUAR_LOG_PROXY', 'DEBUG')
        monkeypatch.setenv('LUAR_LOG_LUA_CALLS', '1')
        luar_logging._load_env_config()
        assert get_logger('proxy').level is LogLevel.DEBUG
        assert get_logger('state').level is LogLevel.ERROR
        assert luar_logging._config['lua_calls'] is True
        assert luar_logging._config['lua_scripts'] is False


class TestBoundaryTracing:
    """Tracing of calls crossing between Lua and Python."""

    def test_lua_calls_traced(self, state, capsys):
        configure_logging(lua_calls=True)
        register(state, '', {'double': lambda x: x * 2})
        state.do_string("double(21)")
        err = capsys.readouterr().err
        assert 'double(21)' in err
        assert 'double = 42' in err

    def test_lua_calls_silent_by_default(self, state, capsys):
        configure_logging()
        register(state, '', {'double': lambda x: x * 2})
        state.do_string("double(21)")
        assert 'double' not in capsys.readouterr().err

    def test_tracing_ignores_module_level(self, state, capsys):
        configure_logging(level='ERROR', lua_calls=True, lua_scripts=True)
        register(state, '', {'double': lambda x: x * 2})
        state.do_string("double(5)")
        err = capsys.readouterr().err
        assert '[luar.adapter] LUA→: double(5)' in err
        assert '[luar.state] LUA: do_string: double(5)' in err

    def test_tracing_enabled_from_environment(self, state, capsys, monkeypatch):
        monkeypatch.delenv('LUAR_LOG_LEVEL', raising=False)
        monkeypatch.setenv('LUAR_LOG_LUA_CALLS', '1')
        configure_logging()
        luar_logging._load_env_config()
        register(state, '', {'double': lambda x: x * 2})
        state.do_string("double(3)")
        assert 'double(3)' in capsys.readouterr().err

    def test_scripts_logged_first_line_only(self, state, capsys):
        configure_logging(lua_scripts=True)
        state.do_string("x = 1\ny = 2")
        err = capsys.readouterr().err
        assert 'do_string: x = 1' in err
        assert 'y = 2' not in err
