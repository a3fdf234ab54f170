"""Turning parse failures into a byte offset and a readable excerpt."""

import json
import re
from typing import Any

from pydantic import ValidationError

EXCERPT_RADIUS = 40


def byte_offset(text: str, char_index: int) -> int:
    return len(text[:char_index].encode("utf-8"))


_decoder = json.JSONDecoder()
_WHITESPACE = re.compile(r"[ \t\n\r]*")


def _skip_ws(text: str, index: int) -> int:
    return _WHITESPACE.match(text, index).end()


def _value_end(text: str, index: int) -> int:
    _, end = _decoder.raw_decode(text, index)
    return end


def _array_item(text: str, index: int, position: int) -> int | None:
    """Index where item `position` of the array starting at `index` begins."""
    if text[index] != "[":
        return None
    index = _skip_ws(text, index + 1)
    if text[index] == "]":
        return None
    for _ in range(position):
        index = _skip_ws(text, _value_end(text, index))
        if text[index] != ",":
            return None
        index = _skip_ws(text, index + 1)
    return index


def _object_member(text: str, index: int, key: str) -> tuple[int, int] | None:
    """(key index, value index) of member `key` in the object starting at `index`."""
    if text[index] != "{":
        return None
    index = _skip_ws(text, index + 1)
    while text[index] == '"':
        key_index = index
        name, index = _decoder.raw_decode(text, index)
        index = _skip_ws(text, index)
        if text[index] != ":":
            return None
        index = _skip_ws(text, index + 1)
        if name == key:
            return key_index, index
        index = _skip_ws(text, _value_end(text, index))
        if text[index] == ",":
            index = _skip_ws(text, index + 1)
    return None


def locate_loc(text: str, loc: tuple[Any, ...]) -> int | None:
    """Character index of the member a pydantic error location points at.

    Follows `loc` through the JSON text: an int selects an array item, a str an
    object member. Returns the index of the last key (or item) on the path, or
    None when the path does not exist in the text, e.g. for a missing field.
    """
    index = _skip_ws(text, 0)
    found = None
    try:
        for part in loc:
            if isinstance(part, int):
                index = _array_item(text, index, part)
                if index is None:
                    return None
                found = index
            else:
                member = _object_member(text, index, str(part))
                if member is None:
                    return None
                found, index = member
    except (IndexError, json.JSONDecodeError):
        return None
    return found


def excerpt(text: str, char_index: int, radius: int = EXCERPT_RADIUS) -> str:
    """Slice of `text` around `char_index` with a caret line underneath."""
    begin = max(0, char_index - radius)
    end = min(len(text), char_index + radius)
    snippet = text[begin:end].replace("\n", " ").replace("\r", " ")
    return f"{snippet}\n{' ' * (char_index - begin)}^"


def describe_json_error(text: str, error: json.JSONDecodeError) -> tuple[int, str, str]:
    """(byte offset, detail, excerpt) for a JSON syntax error."""
    return byte_offset(text, error.pos), error.msg, excerpt(text, error.pos)


def describe_validation_error(text: str, error: ValidationError) -> tuple[int | None, str, str | None]:
    """(byte offset, detail, excerpt) for a schema mismatch, using the first error."""
    first = error.errors()[0]
    path = ".".join(str(part) for part in first["loc"]) or "<root>"
    detail = f"{path}: {first['msg']}"
    index = locate_loc(text, tuple(first["loc"]))
    if index is None:
        return None, detail, None
    return byte_offset(text, index), detail, excerpt(text, index)
