"""
End-to-end bridge scenarios.

Each test registers Python functions, runs a Lua script that exercises them,
and relies on Lua assert() to check the result from the Lua side.

Run with: pytest tests/test_scenarios.py -v
"""

from dataclasses import dataclass
from typing import Any, BinaryIO, Dict, List, Optional, Tuple

import pytest

from conftest import same_items
from luar import (
    ScriptError,
    copy_table_to_map,
    new_lua_object,
    new_lua_object_from_name,
    new_lua_object_from_value,
    register,
)


# =============================================================================
# Functions and types exposed to Lua
# =============================================================================

def fun2(x: float, a: str) -> Tuple[float, str]:
    return x, a


def sum_floats(args: List[float]) -> float:
    return sum(args)


def sumv(*args: float) -> float:
    return sum(args)


def squares(args: List[int]) -> Dict[str, int]:
    """[10, 20] -> {'0': 100, '1': 400}"""
    return {str(i): v * v for i, v in enumerate(args)}


def keys(m: Dict[str, Any]) -> List[str]:
    return list(m)


def values(m: Dict[str, Any]) -> List[Any]:
    return list(m.values())


@dataclass
class Person:
    Name: str
    Age: int

    def GetName(self) -> str:
        return self.Name


def new_test(name: str, age: int) -> Person:
    return Person(name, age)


def unpacks_test(t: Person) -> Tuple[str, int]:
    return t.Name, t.Age


def byte_buffer(size: int) -> bytearray:
    return bytearray(size)


def bytes_to_string(bb: bytes) -> str:
    return bb.decode('utf-8')


def os_open(path: str) -> Tuple[Optional[BinaryIO], Optional[Exception]]:
    try:
        return open(path, 'rb'), None
    except OSError as e:
        return None, e


CONFIG = """
return {
  baggins = true,
  age = 24,
  name = 'dumbo' ,
  marked = {1,2},
  options = {
      leave = true,
      cancel = 'always',
      tags = {strong=true,foolish=true},
  }
}
"""

LIBS = """
Libs = {}
function Libs.fun(s,i,t,m)
    assert(s == 'hello')
    assert(i == 42)
    assert(type(t) == 'table' and t[1] == 42)
    assert(type(m) == 'table' and m.name == 'Joe')
    return 'ok'
end
"""


# =============================================================================
# Calling Python from Lua
# =============================================================================

class TestCallingPython:
    """Registered Python functions called from scripts."""

    @pytest.fixture(autouse=True)
    def functions(self, state):
        register(state, '', {
            'fun2': fun2,
            'sum': sum_floats,
            'sumv': sumv,
            'squares': squares,
        })
        register(state, 'gu', {
            'keys': keys,
            'values': values,
        })

    def test_multi_return_and_slice_conversion(self, state):
        state.do_string("""
            local x,a = fun2(42,'hello')
            assert(x == 42 and a == 'hello')
            assert(sum{1,10,100} == 111)
        """)

    def test_variadic_call(self, state):
        state.do_string("""
            assert(sumv(1,10,100) == 111)
            assert(sumv() == 0)
            assert(sumv{1,2,3} == 6)
        """)

    def test_map_proxy_and_map2table(self, state):
        state.do_string("""
            local r = squares{10,20,30,40}
            assert(r['0'] == 100 and r['1'] == 400)
            r = luar.map2table(r)
            assert(type(r) == 'table' and r['1'] == 400)
            assert(getmetatable(r) == nil)
        """)

    def test_namespaced_functions(self, state):
        state.do_string("""
            local T = {one=1,two=2}
            local k = gu.keys(T)
            assert((k[1]=='one' and k[2]=='two') or (k[2]=='one' and k[1]=='two'))
            local v = gu.values(T)
            assert(v[1]==1 or v[2]==1)
            v = luar.slice2table(v)
            assert((v[1]==1 and v[2]==2) or (v[2]==1 and v[1]==2))
        """)

    def test_wrong_argument_type_is_a_lua_error(self, state):
        state.do_string("""
            local ok, err = pcall(sum, 'not a table')
            assert(not ok)
            assert(err:find("bad argument #1 to 'sum'"), err)
        """)


# =============================================================================
# Structs and objects
# =============================================================================

class TestCallingStructs:
    """Struct proxies: fields, methods with dot syntax, tables as structs."""

    @pytest.fixture(autouse=True)
    def functions(self, state):
        register(state, '', {
            'NewTest': new_test,
            'NewTestV': new_test,
            'UnpacksTest': unpacks_test,
            'OsOpen': os_open,
            'byteBuffer': byte_buffer,
            'bytesToString': bytes_to_string,
        })

    def test_field_access_and_method(self, state):
        state.do_string("""
            local t = NewTest('Alice',16)
            assert(t.Name == 'Alice' and t.Age == 16)
            t.Name = 'Caterpillar'
            assert(t.GetName() == 'Caterpillar')
            t = NewTestV("Alfred",24)
            assert(t.GetName() == 'Alfred')
            assert(t.Age == 24)
        """)

    def test_lua_write_visible_in_python(self, state):
        alice = Person('Alice', 16)
        register(state, '', {'alice': alice})
        state.do_string("alice.Name = 'Caterpillar'; alice.Age = 17")
        assert alice.Name == 'Caterpillar'
        assert alice.Age == 17

    def test_table_to_struct_argument(self, state):
        state.do_string("""
            local n,a = UnpacksTest{Name='Bob',Age=22}
            assert(n == 'Bob' and a == 22)
        """)

    def test_methods_on_objects(self, state, tmp_path):
        path = tmp_path / 'source.txt'
        path.write_bytes(b'package luar\n' + b'x' * 200)
        register(state, '', {'path': str(path)})
        state.do_string("""
            local f,err = OsOpen(path)
            assert(f, err)
            local buff = byteBuffer(100)
            assert(#buff == 100)
            local k = f.readinto(buff)
            assert(k == 100)
            local s = bytesToString(buff)
            assert(s:match '^package luar')
            f.close()
        """)

    def test_error_return_convention(self, state, tmp_path):
        register(state, '', {'path': str(tmp_path / 'missing.txt')})
        state.do_string("""
            local f,err = OsOpen(path)
            assert(f == nil)
            assert(type(err) == 'string' and err:find('missing.txt'), err)
        """)


# =============================================================================
# Lua as a configuration language
# =============================================================================

class TestParsingConfig:
    """Reading a table returned by a script."""

    def test_copy_table_to_map(self, state):
        state.do_string(CONFIG)
        assert state.is_table(-1)
        m = copy_table_to_map(state, None, -1)
        assert m['baggins'] is True
        assert m['name'] == 'dumbo'
        marked = m['marked']
        assert isinstance(marked, list)
        assert len(marked) == 2
        assert marked[0] == 1.0
        assert marked[1] == 2.0
        assert m['options']['leave'] is True

    def test_lua_object_navigation(self, state):
        state.do_string(CONFIG)
        lo = new_lua_object(state, -1)
        assert lo.get('baggins') is True
        assert lo.get('name') == 'dumbo'
        opts = lo.get_object('options')
        assert opts.get('leave') is True
        assert lo.get('options.leave') is True
        assert lo.get('options.tags.strong') is True
        assert lo.get('options.tags.extra.flakey') is None
        markd = lo.get_object('marked')
        assert markd.geti(1) == 1.0

    def test_lua_object_iteration(self, state):
        state.do_string(CONFIG)
        lo = new_lua_object(state, -1)
        it = lo.iter()
        found = []
        while it.next():
            found.append(it.key)
        assert same_items(found, ['baggins', 'options', 'marked', 'age', 'name'])


# =============================================================================
# Calling Lua from Python
# =============================================================================

class TestCallingLua:
    """LuaObject.call with deep-copied arguments."""

    def test_gsub_with_table_argument(self, state):
        gsub = new_lua_object_from_name(state, 'string.gsub')
        replacements = new_lua_object_from_value(state, {
            'NAME': 'Dolly',
            'HOME': 'where you belong',
        })
        res = gsub.call('hello $NAME go $HOME', '%$(%u+)', replacements)
        assert res == 'hello Dolly go where you belong'

    def test_gsub_with_dict_argument(self, state):
        gsub = new_lua_object_from_name(state, 'string.gsub')
        res = gsub.call('hello $NAME', '%$(%u+)', {'NAME': 'Dolly'})
        assert res == 'hello Dolly'

    def test_dotted_function_with_container_arguments(self, state):
        state.do_string(LIBS)
        fun = new_lua_object_from_name(state, 'Libs.fun')
        res = fun.call('hello', 42, [42, 66, 104], {'name': 'Joe'})
        assert res == 'ok'

    def test_lua_error_surfaces_as_script_error(self, state):
        state.do_string(LIBS)
        fun = new_lua_object_from_name(state, 'Libs.fun')
        with pytest.raises(ScriptError, match='assertion failed'):
            fun.call('goodbye', 42, [42], {'name': 'Joe'})
