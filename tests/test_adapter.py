"""
Function adapter tests - Python callables invoked from Lua.

Run with: pytest tests/test_adapter.py -v
"""

from dataclasses import dataclass
from functools import partial
from typing import Callable, List, Optional, Tuple

import pytest
from pydantic import BaseModel

from luar import ScriptError, register
from luar.adapter import signature_of


@dataclass
class Pair:
    left: int
    right: int


class Item(BaseModel):
    name: str
    qty: int = 1


def greet(name: str, punctuation: str = '!') -> str:
    return f"hi {name}{punctuation}"


def nothing() -> None:
    pass


def untyped(a, b):
    return a, b


def divide(a: float, b: float) -> Tuple[Optional[float], Optional[Exception]]:
    if b == 0:
        return None, ZeroDivisionError('division by zero')
    return a / b, None


def joined(sep: str, *parts: str) -> str:
    return sep.join(parts)


def total(*rows: List[int]) -> int:
    return sum(sum(r) for r in rows)


def boom() -> int:
    raise RuntimeError('kaboom')


def apply(fn: Callable[[int], int], x: int) -> int:
    return fn(x)


def keyword_only(a: int, *, scale: int = 10) -> int:
    return a * scale


class TestArguments:
    """Argument conversion and arity."""

    @pytest.fixture(autouse=True)
    def functions(self, state):
        register(state, '', {
            'greet': greet,
            'joined': joined,
            'total': total,
            'keyword_only': keyword_only,
            'Pair': Pair,
            'Item': Item,
            'untyped': untyped,
        })

    def test_defaults_fill_missing_arguments(self, state):
        state.do_string("""
            assert(greet('bob') == 'hi bob!')
            assert(greet('bob', '?') == 'hi bob?')
        """)

    def test_missing_required_argument_is_zero(self, state):
        state.do_string("assert(greet() == 'hi !')")

    def test_too_many_arguments(self, state):
        with pytest.raises(ScriptError, match="at most 2 arguments"):
            state.do_string("greet('a', 'b', 'c')")

    def test_variadic_strings(self, state):
        state.do_string("""
            assert(joined('-', 'a', 'b', 'c') == 'a-b-c')
            assert(joined('-') == '')
            assert(joined('-', {'x', 'y'}) == 'x-y')
        """)

    def test_variadic_of_lists_is_not_expanded(self, state):
        state.do_string("""
            assert(total({1, 2}) == 3)
            assert(total({1, 2}, {3}) == 6)
        """)

    def test_variadic_argument_error_names_position(self, state):
        state.do_string("""
            local ok, err = pcall(joined, '-', 'a', {})
            assert(not ok)
            assert(err:find('bad argument #3', 1, true), err)
        """)

    def test_keyword_only_defaults(self, state):
        state.do_string("""
            assert(keyword_only(2) == 20)
            assert(keyword_only(2, 3) == 6)
        """)

    def test_dataclass_constructor(self, state):
        state.do_string("""
            local p = Pair(1, 2)
            assert(p.left == 1 and p.right == 2)
            assert(luar.type(p) == 'struct')
        """)

    def test_pydantic_constructor(self, state):
        state.do_string("""
            local item = Item('bolt', 5)
            assert(item.name == 'bolt' and item.qty == 5)
            assert(Item('nut').qty == 1)
        """)

    def test_untyped_passthrough(self, state):
        state.do_string("""
            local a, b = untyped('x', {1, 2})
            assert(a == 'x')
            assert(b[2] == 2)
        """)


class TestResults:
    """How return values reach Lua."""

    def test_none_returns_nothing(self, state):
        register(state, '', {'nothing': nothing})
        state.do_string("assert(select('#', nothing()) == 0)")

    def test_error_convention(self, state):
        register(state, '', {'divide': divide})
        state.do_string("""
            local v, err = divide(6, 3)
            assert(v == 2 and err == nil)
            v, err = divide(1, 0)
            assert(v == nil and err == 'division by zero')
        """)

    def test_unannotated_tuple_is_multi_return(self, state):
        register(state, '', {'untyped': untyped})
        state.do_string("""
            local a, b = untyped(1, 2)
            assert(a == 1 and b == 2)
        """)

    def test_exception_becomes_lua_error(self, state):
        register(state, '', {'boom': boom})
        state.do_string("""
            local ok, err = pcall(boom)
            assert(not ok and err == 'kaboom')
        """)

    def test_uncaught_exception_surfaces_as_script_error(self, state):
        register(state, '', {'boom': boom})
        with pytest.raises(ScriptError, match='kaboom'):
            state.do_string("boom()")

    def test_lambda_and_partial(self, state):
        register(state, '', {
            'double': lambda x: x * 2,
            'add5': partial(lambda a, b: a + b, 5),
        })
        state.do_string("assert(double(4) == 8 and add5(1) == 6)")


class TestCallbacks:
    """Lua functions passed to Python."""

    def test_lua_function_as_callable(self, state):
        register(state, '', {'apply': apply})
        state.do_string("assert(apply(function(x) return x + 1 end, 41) == 42)")

    def test_callback_error_propagates(self, state):
        register(state, '', {'apply': apply})
        with pytest.raises(ScriptError, match='inner'):
            state.do_string("apply(function(x) error('inner') end, 1)")

    def test_reentrant_calls(self, state):
        register(state, '', {'apply': apply})
        state.do_string("""
            local r = apply(function(x)
                return apply(function(y) return y * 3 end, x) + 1
            end, 2)
            assert(r == 7)
        """)


class TestSignature:
    """signature_of() on its own."""

    def test_multi_return(self):
        sig = signature_of(divide)
        assert sig.multi is True
        assert sig.error_last is True
        assert [p.name for p in sig.params] == ['a', 'b']

    def test_returns_none(self):
        assert signature_of(nothing).returns_none is True

    def test_unannotated(self):
        sig = signature_of(untyped)
        assert sig.multi is None
        assert sig.returns_none is False

    def test_variadic(self):
        sig = signature_of(joined)
        assert sig.variadic is True
        assert sig.variadic_type is str

    def test_class_constructor(self):
        sig = signature_of(Pair)
        assert sig.results == (Pair,)
        assert [p.name for p in sig.params] == ['left', 'right']

    def test_builtin_without_signature(self):
        sig = signature_of(print)
        assert sig.variadic is True
