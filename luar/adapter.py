"""
Function adapter - Python callables exposed to Lua.

An adapted callable is a Lua function that:
1. Converts each Lua argument to the declared parameter type
   (missing arguments take the parameter default, or the type's zero value)
2. Collects surplus arguments into *args, converting each to its element
   type; a single plain table in that position is expanded instead
3. Calls the Python function
4. Pushes the result(s) back: a tuple return annotation (or an unannotated
   tuple) means multiple results; None from a function declared to return
   None means no results

Every exception raised along the way becomes a Lua error carrying its text,
so nothing propagates through the Lua C stack.

Error convention: when the last declared result is an exception type, a
non-None exception turns the results into (nil, ..., message), and None is
returned to Lua as a trailing nil.
"""

import functools
import inspect
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, get_args, get_origin

import lupa

from . import translate
from .errors import ConversionError
from .kinds import AGGREGATE_KINDS, Kind, describe, type_hints
from .logging import LogLevel, get_logger

log = get_logger('adapter')


def error_text(exc: BaseException) -> str:
    """The message a Python exception carries into Lua."""
    return str(exc) or type(exc).__name__


def lua_protected(method: Callable) -> Callable:
    """
    Decorator for methods Lua calls through the bootstrap's check() wrapper.

    Returns (True, *results) on success and (False, message) on any
    exception. The Lua side turns the latter into error(message).
    """
    @functools.wraps(method)
    def wrapper(self, *args):
        try:
            result = method(self, *args)
        except Exception as e:
            log.debug("%s raised %s: %s", method.__qualname__, type(e).__name__, e)
            log.log_traceback(e, LogLevel.TRACE)
            return False, self._state.encode(error_text(e))
        if isinstance(result, tuple):
            return (True,) + result
        return True, result
    return wrapper


def _callable_name(fn: Any) -> str:
    return (
        getattr(fn, '__qualname__', None)
        or getattr(fn, '__name__', None)
        or type(fn).__name__
    )


def _is_exception_type(tp: Any) -> bool:
    info = describe(tp)
    members = info.members or (tp,)
    return any(isinstance(m, type) and issubclass(m, BaseException) for m in members)


@dataclass
class Param:
    name: str
    type: Any
    has_default: bool
    keyword: bool = False


@dataclass
class Signature:
    """What the adapter needs to know about a callable.

    Attributes:
        params: Parameters filled from positional Lua arguments, in order
        extra_keywords: Keyword-only parameters Lua cannot reach (defaulted)
        variadic: Whether the callable takes *args
        variadic_type: Element type of *args
        results: Declared result types
        multi: True for a tuple annotation, False for a single result,
               None when the return is unannotated
        returns_none: Declared to return None
        error_last: Last declared result is an exception type
    """
    params: List[Param] = field(default_factory=list)
    extra_keywords: List[Param] = field(default_factory=list)
    variadic: bool = False
    variadic_type: Any = Any
    results: Tuple[Any, ...] = ()
    multi: Optional[bool] = None
    returns_none: bool = False
    error_last: bool = False


def _annotation(p: inspect.Parameter, hints: Dict[str, Any]) -> Any:
    if p.name in hints:
        return hints[p.name]
    if p.annotation is inspect.Parameter.empty or isinstance(p.annotation, str):
        return Any
    return p.annotation


def signature_of(fn: Any) -> Signature:
    """Describe a callable's parameters and results for adaptation."""
    try:
        sig = inspect.signature(fn)
    except (TypeError, ValueError):
        # Builtins without introspection data: pass everything through
        return Signature(variadic=True)

    is_class = isinstance(fn, type)
    hints = type_hints(fn.__init__ if is_class else fn)

    positional: List[Param] = []
    keyword_only: List[Param] = []
    variadic = False
    variadic_type: Any = Any
    for p in sig.parameters.values():
        tp = _annotation(p, hints)
        has_default = p.default is not inspect.Parameter.empty
        if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD):
            positional.append(Param(p.name, tp, has_default))
        elif p.kind is p.KEYWORD_ONLY:
            keyword_only.append(Param(p.name, tp, has_default, keyword=True))
        elif p.kind is p.VAR_POSITIONAL:
            variadic = True
            variadic_type = tp

    out = Signature(variadic=variadic, variadic_type=variadic_type)
    # Lua has no keywords: keyword-only parameters continue the positional
    # list unless *args would swallow them
    if variadic:
        out.params = positional
        out.extra_keywords = keyword_only
    else:
        out.params = positional + keyword_only

    if is_class:
        ret = fn
    else:
        ret = hints.get('return', sig.return_annotation)

    if ret is inspect.Signature.empty or isinstance(ret, str):
        return out
    if ret is None or ret is type(None):
        out.returns_none = True
        return out

    args = get_args(ret)
    if get_origin(ret) is tuple and args and args != ((),) and not (len(args) == 2 and args[1] is Ellipsis):
        out.multi = True
        out.results = args
        out.error_last = _is_exception_type(args[-1])
    else:
        out.multi = False
        out.results = (ret,)
    return out


class FunctionAdapter:
    """
    Lua-callable wrapper around one Python callable.

    Lua receives it through state.lib.wrap(), which turns the (ok, ...)
    protocol of __call__ into results or a Lua error.
    """

    def __init__(self, state, fn: Any, name: Optional[str] = None):
        self._state = state
        self.fn = fn
        self.name = name or _callable_name(fn)
        self.signature = signature_of(fn)

    def __repr__(self) -> str:
        return f"FunctionAdapter({self.name})"

    def _convert(self, lv: Any, tp: Any, position: int) -> Any:
        try:
            return translate.from_lua(self._state, lv, tp)
        except ConversionError as e:
            raise ConversionError(f"bad argument #{position} to '{self.name}' ({e})") from e

    def bind(self, lua_args: Tuple[Any, ...]) -> Tuple[list, dict]:
        """Convert Lua arguments into positional and keyword Python arguments."""
        sig = self.signature
        n = len(lua_args)
        if n > len(sig.params) and not sig.variadic:
            raise ConversionError(
                f"'{self.name}' takes at most {len(sig.params)} arguments ({n} given)"
            )

        args: list = []
        kwargs: dict = {}
        for i, p in enumerate(sig.params):
            if i < n:
                value = self._convert(lua_args[i], p.type, i + 1)
            elif p.has_default:
                continue
            else:
                value = translate.zero_value(p.type)
            if p.keyword:
                kwargs[p.name] = value
            else:
                args.append(value)

        for p in sig.extra_keywords:
            if not p.has_default:
                kwargs[p.name] = translate.zero_value(p.type)

        rest = lua_args[len(sig.params):]
        if sig.variadic and rest:
            args.extend(self._bind_variadic(rest, len(sig.params)))
        return args, kwargs

    def _bind_variadic(self, rest: Tuple[Any, ...], offset: int) -> List[Any]:
        elem = self.signature.variadic_type
        elem_kind = describe(elem).kind
        if (
            len(rest) == 1
            and lupa.lua_type(rest[0]) == 'table'
            and self._state.handle_of(rest[0]) is None
            and elem_kind not in AGGREGATE_KINDS
            and elem_kind is not Kind.INTERFACE
        ):
            # f{1, 2, 3} for f(*xs): expand the table
            return self._convert(rest[0], List[elem], offset + 1)
        return [self._convert(lv, elem, offset + i + 1) for i, lv in enumerate(rest)]

    def push_results(self, result: Any) -> Tuple[Any, ...]:
        """Translate the Python result into the tuple of values Lua receives."""
        sig = self.signature
        state = self._state

        if sig.multi or (sig.multi is None and isinstance(result, tuple)):
            values = list(result)
            types = list(sig.results) if sig.multi else []
            types += [Any] * (len(values) - len(types))
            error_last = sig.error_last or bool(values and isinstance(values[-1], BaseException))
            if error_last and values[-1] is not None:
                message = state.encode(error_text(values[-1]))
                return (None,) * (len(values) - 1) + (message,)
            return tuple(translate.to_lua(state, v, t) for v, t in zip(values, types))

        if result is None and (sig.returns_none or sig.multi is None):
            return ()
        return (translate.to_lua(state, result, sig.results[0] if sig.results else Any),)

    def invoke(self, lua_args: Tuple[Any, ...]) -> Tuple[Any, ...]:
        """Run the call; raises on conversion errors and on exceptions from fn."""
        log.lua_call(self.name, *lua_args)
        args, kwargs = self.bind(lua_args)
        result = self.fn(*args, **kwargs)
        log.lua_result(self.name, result)
        return self.push_results(result)

    @lua_protected
    def __call__(self, *lua_args):
        return self.invoke(lua_args)


def adapt_function(state, fn: Any, name: Optional[str] = None) -> Any:
    """Wrap a Python callable as a Lua function."""
    return state.lib.wrap(FunctionAdapter(state, fn, name))
