"""Pytest fixtures shared by the luar tests."""
from collections import Counter

import pytest

from luar import init


@pytest.fixture
def state():
    """A fresh Lua state, closed after the test."""
    st = init()
    yield st
    st.close()


def same_items(a, b) -> bool:
    """Order-insensitive comparison of two sequences."""
    return Counter(a) == Counter(b)
