"""Configuration record for a Lua state."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class Options(BaseModel):
    """
    Settings applied when a State is created.

    Options are immutable once the state exists; create a new state to change
    them.

    Examples:
        >>> opts = Options(narrowing='truncate')
        >>> state = init(opts)
        >>> state = init(traceback=True)  # keyword overrides also work
    """
    encoding: str = Field(default='utf-8', description="Codec for str <-> Lua string")
    encoding_errors: str = Field(
        default='surrogateescape',
        description="Codec error handler; surrogateescape lets arbitrary bytes round-trip",
    )
    namespace: str = Field(default='luar', description="Global name of the Lua helper table")
    narrowing: Literal['error', 'truncate'] = Field(
        default='error',
        description="What to do when a Lua number does not fit the target numeric type",
    )
    integers_as_floats: bool = Field(
        default=False, description="Push Python ints as Lua floats instead of integers"
    )
    proxy_identity: bool = Field(
        default=True, description="Reuse one proxy per live Python object"
    )
    traceback: bool = Field(
        default=False, description="Append a Lua traceback to script error messages"
    )
    register_eval: bool = Field(default=False, description="Expose python.eval() to Lua")
    register_builtins: bool = Field(default=False, description="Expose python.builtins to Lua")

    model_config = ConfigDict(frozen=True, extra='forbid')
