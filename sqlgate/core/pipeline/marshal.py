import logging
import math
from typing import Any, List, Sequence

from sqlgate.core.exceptions import ParameterTypeError, ValueConversionError

# -----------------------------------------------------------------------------
# MARSHAL MODULE - Value conversion
# Purpose: Turn SQLite column values into JSON scalars and JSON scalars into bindable parameters
# -----------------------------------------------------------------------------

logger = logging.getLogger(__name__)

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1


class RawText:
    """
    Bytes of a TEXT column that did not decode as UTF-8.

    Produced by decode_text so the bad column reaches to_json instead of
    failing the whole fetch.
    """

    __slots__ = ("data",)

    def __init__(self, data: bytes):
        self.data = data

    def __repr__(self):
        return f"RawText({self.data!r})"


def decode_text(data: bytes):
    """text_factory for the driver connection."""
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return RawText(data)


def render_blob(value: bytes) -> str:
    """
    Debug rendering of a blob: "[de, ad, be, ef]".

    Bytes are lowercase hex without zero padding. This is for humans reading
    results, it cannot be decoded back into the original bytes.
    """
    return "[" + ", ".join(format(byte, "x") for byte in bytes(value)) + "]"


def to_json(value: Any) -> Any:
    """Convert one column value into a JSON scalar."""
    if value is None:
        return None

    if isinstance(value, bool):
        return int(value)

    if isinstance(value, int):
        return value

    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueConversionError(f"non-finite float {value!r} has no JSON form")
        return value

    if isinstance(value, str):
        return value

    if isinstance(value, RawText):
        try:
            return value.data.decode("utf-8")
        except UnicodeDecodeError as error:
            raise ValueConversionError(f"text column is not valid UTF-8: {error}")

    if isinstance(value, (bytes, bytearray, memoryview)):
        return render_blob(value)

    raise ValueConversionError(f"unsupported column type {type(value).__name__}")


def to_parameter(value: Any) -> Any:
    """Convert one JSON scalar into a value SQLite can bind."""
    if value is None:
        return value

    if isinstance(value, str):
        try:
            value.encode("utf-8")
        except UnicodeEncodeError as error:
            raise ParameterTypeError(f"string is not valid UTF-8: {error}")
        return value

    # JSON booleans bind the way SQLite stores them
    if isinstance(value, bool):
        return int(value)

    if isinstance(value, int):
        if not INT64_MIN <= value <= INT64_MAX:
            raise ParameterTypeError(f"integer {value} does not fit in 64 bits")
        return value

    if isinstance(value, float):
        if not math.isfinite(value):
            raise ParameterTypeError(f"non-finite float {value!r} cannot be bound")
        return value

    raise ParameterTypeError(
        f"{type(value).__name__} is not a scalar and cannot be bound as a parameter"
    )


def to_parameters(values: Sequence[Any]) -> tuple:
    return tuple(to_parameter(value) for value in values)


def materialize_row(row: Sequence[Any]) -> List[Any]:
    """
    Convert every column of a result row.

    A column that fails to convert is dropped from the row; the rest of the
    row is kept.
    """
    converted = []
    for index, value in enumerate(row):
        try:
            converted.append(to_json(value))
        except ValueConversionError as error:
            logger.warning(f"Couldn't convert column {index} to a JSON value: {error}")
            continue
    return converted
