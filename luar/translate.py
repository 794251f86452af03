"""
Value translator between Python and Lua.

to_lua():   Python value -> Lua value (scalars by value, aggregates as proxies
            unless a deep copy is asked for, callables as adapted functions)
from_lua(): Lua value -> Python value shaped by a target annotation

Conversions are target-driven: the same Lua table becomes a list, a dict, a
dataclass or a tuple depending on what the receiving side declares. With no
declaration (Any) the natural mapping applies: strings to str, numbers to
int/float, sequence tables to lists, other tables to dict[str, Any].

Numeric narrowing into a declared type is checked. Fractional values into
integer targets and out-of-range values into fixed-width numpy types raise
ConversionError, unless Options.narrowing is 'truncate'.
"""

import math
from typing import Any, Dict, List, Optional

import lupa
import numpy as np

from . import luaobject
from .errors import ConversionError
from .kinds import AGGREGATE_KINDS, Kind, TypeInfo, classify, describe, find_field, struct_fields
from .logging import get_logger

log = get_logger('translate')

LUA_INT_MIN = -2 ** 63
LUA_INT_MAX = 2 ** 63 - 1

_MISSING = object()
_IN_PROGRESS = object()


# =============================================================================
# Helpers
# =============================================================================

def canonical_number(x: Any) -> str:
    """Format a Lua number the way it is stringified in keys and strings."""
    if isinstance(x, int):
        return str(x)
    return '%.14g' % x


def lua_type_name(lv: Any) -> str:
    """Lua's type() of a value as lupa hands it to Python."""
    if lv is None:
        return 'nil'
    if isinstance(lv, bool):
        return 'boolean'
    if isinstance(lv, (int, float)):
        return 'number'
    if isinstance(lv, bytes):
        return 'string'
    return lupa.lua_type(lv) or 'userdata'


def type_name(tp: Any) -> str:
    """Readable name of a target annotation for error messages."""
    if isinstance(tp, type):
        return tp.__name__
    return repr(tp).replace('typing.', '')


def _mismatch(lv: Any, tp: Any) -> ConversionError:
    return ConversionError(f"cannot convert Lua {lua_type_name(lv)} to {type_name(tp)}")


def _type_key(tp: Any) -> Any:
    try:
        hash(tp)
    except TypeError:
        return id(tp)
    return tp


# =============================================================================
# Python -> Lua
# =============================================================================

def _push_integer(state, value: int) -> Any:
    if state.options.integers_as_floats or not LUA_INT_MIN <= value <= LUA_INT_MAX:
        try:
            return float(value)
        except OverflowError:
            raise ConversionError(f"integer {value} is too large for a Lua number") from None
    return value


def to_lua(state, value: Any, tp: Any = Any, copy: bool = False, memo: Optional[Dict] = None) -> Any:
    """
    Convert a Python value to its Lua form.

    Args:
        state: Owning State
        value: Python value
        tp: Declared type of the value, used for element conversions later on
        copy: Deep-copy lists, tuples, dicts and structs into plain tables
              instead of proxying them
        memo: Deep copy memo (id -> table), shared across one copy

    Returns:
        Something lupa can hand to Lua: None, bool, int, float, bytes, a Lua
        object, or a proxy table
    """
    if isinstance(value, luaobject.LuaObject):
        return value.lua_value()
    if isinstance(value, luaobject.LuaCallable):
        return value.lua_object.lua_value()
    if lupa.lua_type(value) is not None:
        return value

    kind = classify(value)
    if kind is Kind.NIL:
        return None
    if kind is Kind.BOOL:
        return bool(value)
    if kind is Kind.INTEGER:
        return _push_integer(state, int(value))
    if kind is Kind.FLOAT:
        return float(value)
    if kind is Kind.STRING:
        return state.encode(value)
    if kind is Kind.BYTES:
        return bytes(value)
    if kind is Kind.FUNCTION:
        return state.adapt(value)
    if kind in AGGREGATE_KINDS:
        if copy and kind is not Kind.POINTER:
            if isinstance(value, bytearray):
                return bytes(value)
            return to_table(state, value, tp, memo)
        return state.proxies.proxy(value, kind, tp)
    raise ConversionError(f"cannot convert {type(value).__name__} ({kind.value}) to a Lua value")


def _copy_item(state, item: Any, tp: Any, memo: Dict, in_sequence: bool) -> Any:
    if item is None:
        return state.null if in_sequence else None
    return to_lua(state, item, tp, copy=True, memo=memo)


def to_table(state, value: Any, tp: Any = Any, memo: Optional[Dict] = None) -> Any:
    """
    Deep-copy a list, tuple, ndarray, mapping or struct into a fresh Lua table.

    Shared and cyclic references map to the same table. None inside a sequence
    becomes luar.null so the sequence keeps its length.
    """
    if memo is None:
        memo = {}
    key = id(value)
    if key in memo:
        return memo[key][1]

    log.trace("copying %s into a table", type(value).__name__)
    table = state.runtime.table()
    # Keep the value alive so its id stays unique for the whole copy
    memo[key] = (value, table)
    info = describe(tp)
    kind = classify(value)

    if kind in (Kind.SLICE, Kind.ARRAY):
        for i, item in enumerate(value):
            if info.is_fixed_tuple:
                item_tp = info.args[i] if i < len(info.args) else Any
            else:
                item_tp = info.elem
            table[i + 1] = _copy_item(state, item, item_tp, memo, True)
    elif kind is Kind.MAP:
        for k, v in value.items():
            lk = _copy_item(state, k, info.key, memo, False)
            if lk is None or (isinstance(lk, float) and math.isnan(lk)):
                raise ConversionError(f"cannot use {k!r} as a Lua table key")
            lv = _copy_item(state, v, info.value, memo, False)
            if lv is not None:
                table[lk] = lv
    elif kind is Kind.STRUCT:
        for name, field in struct_fields(type(value)).items():
            if name.startswith('_'):
                continue
            lv = _copy_item(state, getattr(value, name), field.type, memo, False)
            if lv is not None:
                table[state.encode(name)] = lv
    else:
        raise ConversionError(f"cannot copy {type(value).__name__} into a Lua table")
    return table


def host_to_lua(state, value: Any) -> None:
    """Translate a Python value and push it onto the state's stack."""
    state.push(to_lua(state, value))


# =============================================================================
# Lua -> Python
# =============================================================================

class _Memo:
    """Tables already materialised during one conversion, keyed by Lua identity.

    A table may be requested as several target types (the same table as a
    list[int] and as a tuple), so results are stored per (table, type).
    """

    def __init__(self, state):
        self._state = state
        self._seen = None
        self._slots: List[Dict[Any, Any]] = []

    def get(self, table: Any, tp: Any) -> Any:
        if self._seen is None:
            return _MISSING
        slot = self._seen[table]
        if slot is None:
            return _MISSING
        return self._slots[slot - 1].get(_type_key(tp), _MISSING)

    def put(self, table: Any, tp: Any, value: Any) -> None:
        if self._seen is None:
            self._seen = self._state.runtime.table()
        slot = self._seen[table]
        if slot is None:
            self._slots.append({})
            slot = len(self._slots)
            self._seen[table] = slot
        self._slots[slot - 1][_type_key(tp)] = value


def narrow(state, x: Any, info: TypeInfo) -> Any:
    """Fit a Lua number into a numeric target type."""
    target = info.origin
    truncate = state.options.narrowing == 'truncate'

    try:
        if info.kind is Kind.INTEGER:
            if isinstance(x, float):
                if not math.isfinite(x):
                    raise ConversionError(f"number {x!r} has no {target.__name__} representation")
                if not x.is_integer() and not truncate:
                    raise ConversionError(f"number {canonical_number(x)} is not an integer")
                x = int(x)
            if issubclass(target, np.integer):
                bounds = np.iinfo(target)
                lo, hi = int(bounds.min), int(bounds.max)
                if not lo <= x <= hi:
                    if not truncate:
                        raise ConversionError(f"number {x} overflows {target.__name__}")
                    x = (x - lo) % (hi - lo + 1) + lo
                return target(x)
            return x if target is int else target(x)

        if info.kind is Kind.FLOAT:
            f = float(x)
            if issubclass(target, np.floating):
                limit = float(np.finfo(target).max)
                if math.isfinite(f) and abs(f) > limit:
                    if not truncate:
                        raise ConversionError(f"number {canonical_number(f)} overflows {target.__name__}")
                    f = math.copysign(limit, f)
                return target(f)
            return f if target is float else target(f)

        return target(x)
    except ConversionError:
        raise
    except (ValueError, TypeError, OverflowError) as e:
        raise ConversionError(f"cannot convert {canonical_number(x)} to {target.__name__}: {e}") from e


def zero_value(tp: Any) -> Any:
    """The zero value of a target type (what a nil converts to)."""
    info = describe(tp)
    if info.is_union:
        return None
    kind = info.kind
    try:
        if kind is Kind.BOOL:
            return info.origin(False)
        if kind in (Kind.INTEGER, Kind.FLOAT, Kind.COMPLEX):
            return info.origin(0)
        if kind in (Kind.STRING, Kind.BYTES, Kind.SLICE, Kind.MAP):
            return info.origin()
        if kind is Kind.ARRAY:
            if info.is_fixed_tuple:
                return tuple(zero_value(a) for a in info.args)
            return np.zeros(0, dtype=info.args[0] if info.args else float)
        if kind is Kind.STRUCT:
            return build_struct(info.origin, {})
    except (TypeError, ValueError):
        # IntEnum without a 0 member and the like
        return None
    return None


def build_struct(cls: type, values: Dict[str, Any]) -> Any:
    """Construct a struct, zero-filling required fields that were not given."""
    fields = struct_fields(cls)
    init_kwargs = {}
    late = {}
    for name, field in fields.items():
        if name in values:
            (init_kwargs if field.init else late)[name] = values[name]
        elif field.required:
            init_kwargs[name] = zero_value(field.type)
    try:
        obj = cls(**init_kwargs)
        for name, v in late.items():
            setattr(obj, name, v)
    except (TypeError, ValueError, AttributeError) as e:
        raise ConversionError(f"cannot build {cls.__name__}: {e}") from e
    return obj


def _string_key(state, k: Any) -> str:
    if isinstance(k, bytes):
        return state.decode(k)
    if isinstance(k, bool):
        return 'true' if k else 'false'
    if isinstance(k, (int, float)):
        return canonical_number(k)
    raise ConversionError(f"cannot use a Lua {lua_type_name(k)} as a string key")


def _sequence(entries: List[tuple]) -> List[Any]:
    """Values at keys 1..n, where n is the first missing integer key minus one."""
    by_index = {k: v for k, v in entries if isinstance(k, int) and not isinstance(k, bool)}
    out = []
    while len(out) + 1 in by_index:
        out.append(by_index[len(out) + 1])
    return out


def _is_sequence(entries: List[tuple]) -> bool:
    keys = [k for k, _ in entries]
    if not all(isinstance(k, int) and not isinstance(k, bool) for k in keys):
        return False
    return sorted(keys) == list(range(1, len(keys) + 1))


def _natural(state, table: Any, tp: Any, memo: _Memo) -> Any:
    entries = list(table.items())
    if entries and _is_sequence(entries):
        out: List[Any] = []
        memo.put(table, tp, out)
        out.extend(from_lua(state, v, Any, memo) for v in _sequence(entries))
        return out
    result: Dict[str, Any] = {}
    memo.put(table, tp, result)
    for k, v in entries:
        result[_string_key(state, k)] = from_lua(state, v, Any, memo)
    return result


def _table_to_sequence(state, table: Any, info: TypeInfo, tp: Any, memo: _Memo) -> Any:
    entries = list(table.items())

    if info.is_fixed_tuple:
        by_index = dict(_indexed(entries))
        items = tuple(
            from_lua(state, by_index.get(i + 1), member, memo)
            for i, member in enumerate(info.args)
        )
        memo.put(table, tp, items)
        return items

    values = _sequence(entries)
    if info.origin is np.ndarray:
        scalar = info.args[0] if info.args else Any
        items = [from_lua(state, v, scalar, memo) for v in values]
        try:
            result = np.array(items, dtype=scalar if info.args else None)
        except (ValueError, TypeError) as e:
            raise ConversionError(f"cannot build ndarray: {e}") from e
        memo.put(table, tp, result)
        return result

    if info.origin is list:
        out: List[Any] = []
        memo.put(table, tp, out)
        out.extend(from_lua(state, v, info.elem, memo) for v in values)
        return out

    result = info.origin(from_lua(state, v, info.elem, memo) for v in values)
    memo.put(table, tp, result)
    return result


def _indexed(entries: List[tuple]):
    for k, v in entries:
        if isinstance(k, int) and not isinstance(k, bool):
            yield k, v


def _table_to_map(state, table: Any, info: TypeInfo, tp: Any, memo: _Memo) -> Any:
    result = info.origin()
    memo.put(table, tp, result)
    string_keys = describe(info.key).kind is Kind.STRING
    for k, v in table.items():
        key = _string_key(state, k) if string_keys else from_lua(state, k, info.key, memo)
        value = from_lua(state, v, info.value, memo)
        try:
            result[key] = value
        except TypeError as e:
            raise ConversionError(f"cannot use {type(key).__name__} as a dict key") from e
    return result


def _table_to_struct(state, table: Any, info: TypeInfo, tp: Any, memo: _Memo) -> Any:
    cls = info.origin
    memo.put(table, tp, _IN_PROGRESS)
    values = {}
    for k, v in table.items():
        if not isinstance(k, bytes):
            raise ConversionError(f"{cls.__name__} field names must be strings, got Lua {lua_type_name(k)}")
        name = state.decode(k)
        field = find_field(cls, name)
        if field is None:
            raise ConversionError(f"{cls.__name__} has no field '{name}'")
        values[field.name] = from_lua(state, v, field.type, memo)
    obj = build_struct(cls, values)
    memo.put(table, tp, obj)
    return obj


def _from_table(state, table: Any, info: TypeInfo, tp: Any, memo: _Memo) -> Any:
    cached = memo.get(table, tp)
    if cached is _IN_PROGRESS:
        raise ConversionError(f"cyclic table cannot be converted to {type_name(tp)}")
    if cached is not _MISSING:
        return cached

    kind = info.kind
    if kind is Kind.INTERFACE:
        return _natural(state, table, tp, memo)
    if kind in (Kind.SLICE, Kind.ARRAY):
        return _table_to_sequence(state, table, info, tp, memo)
    if kind is Kind.MAP:
        return _table_to_map(state, table, info, tp, memo)
    if kind is Kind.STRUCT:
        return _table_to_struct(state, table, info, tp, memo)
    raise _mismatch(table, tp)


def _from_proxy(handle: Any, info: TypeInfo, tp: Any) -> Any:
    value = handle.value
    if handle.kind is Kind.NIL:
        return zero_value(tp)
    if info.accepts(value):
        return value
    # Same shape, different container class (a list proxy passed as a tuple)
    source = classify(value)
    if info.kind in (Kind.SLICE, Kind.ARRAY) and source in (Kind.SLICE, Kind.ARRAY) and not info.is_fixed_tuple:
        if info.origin is np.ndarray:
            return np.asarray(value)
        return info.origin(value)
    if info.kind is Kind.MAP and source is Kind.MAP:
        return info.origin(value)
    if info.kind is Kind.BYTES and isinstance(value, (bytes, bytearray, memoryview)):
        return info.origin(value)
    if info.kind is Kind.FUNCTION and callable(value):
        return value
    raise ConversionError(f"cannot use {type(value).__name__} proxy as {type_name(tp)}")


def _from_scalar(state, lv: Any, info: TypeInfo, tp: Any) -> Any:
    kind = info.kind
    if isinstance(lv, bool):
        if kind is Kind.INTERFACE:
            return lv
        if kind is Kind.BOOL:
            return info.origin(lv)
        raise _mismatch(lv, tp)

    if isinstance(lv, (int, float)):
        if kind is Kind.INTERFACE:
            return lv
        if kind in (Kind.INTEGER, Kind.FLOAT, Kind.COMPLEX):
            return narrow(state, lv, info)
        if kind is Kind.STRING:
            return info.origin(canonical_number(lv))
        if kind is Kind.BYTES:
            return info.origin(canonical_number(lv).encode('ascii'))
        raise _mismatch(lv, tp)

    if isinstance(lv, bytes):
        if kind in (Kind.INTERFACE, Kind.STRING):
            text = state.decode(lv)
            return text if kind is Kind.INTERFACE else info.origin(text)
        if kind is Kind.BYTES:
            return info.origin(lv)
        raise _mismatch(lv, tp)

    # A Python object that was passed into Lua as-is and came back
    if info.accepts(lv):
        return lv
    raise ConversionError(f"cannot use {type(lv).__name__} as {type_name(tp)}")


def _from_union(state, lv: Any, info: TypeInfo, tp: Any, memo: Optional[_Memo]) -> Any:
    if lv is None:
        return None
    errors = []
    for member in info.members:
        if member is type(None):
            continue
        try:
            return from_lua(state, lv, member, memo)
        except ConversionError as e:
            errors.append(str(e))
    raise ConversionError(f"cannot convert Lua {lua_type_name(lv)} to {type_name(tp)}: " + '; '.join(errors))


def from_lua(state, lv: Any, tp: Any = Any, memo: Optional[_Memo] = None) -> Any:
    """
    Convert a Lua value (as lupa returns it) to a Python value of type tp.

    Args:
        state: Owning State
        lv: Lua value
        tp: Target annotation; Any selects the natural mapping
        memo: Cycle memo shared across one conversion

    Raises:
        ConversionError: If the value cannot be represented as tp
    """
    info = describe(tp)
    if info.is_union:
        return _from_union(state, lv, info, tp, memo)
    if isinstance(tp, type) and issubclass(tp, luaobject.LuaObject):
        return luaobject.LuaObject.pin(state, lv)
    if lv is None:
        return zero_value(tp)

    ltype = lupa.lua_type(lv)
    if ltype == 'table':
        handle = state.handle_of(lv)
        if handle is not None:
            return _from_proxy(handle, info, tp)
        return _from_table(state, lv, info, tp, memo or _Memo(state))
    if ltype == 'function':
        if info.kind in (Kind.FUNCTION, Kind.INTERFACE):
            return luaobject.LuaCallable(luaobject.LuaObject.pin(state, lv), info)
        raise _mismatch(lv, tp)
    if ltype is not None:
        if info.kind is Kind.INTERFACE:
            return luaobject.LuaObject.pin(state, lv)
        raise _mismatch(lv, tp)
    return _from_scalar(state, lv, info, tp)


def lua_to_host(state, index: int, target: Any = Any) -> Any:
    """Convert the value at a stack index to a Python value of type target."""
    return from_lua(state, state.value_at(index), target)
