"""Upload information and its JSON form as stored in the ``.info`` object."""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

__all__ = ["FileInfo", "file_info_from_json"]

_HEX = "0123456789abcdef"


def _encode_string(value: str) -> str:
    out = ['"']
    for ch in value:
        code = ord(ch)
        if ch == '"':
            out.append('\\"')
        elif ch == "\\":
            out.append("\\\\")
        elif ch == "\n":
            out.append("\\n")
        elif ch == "\r":
            out.append("\\r")
        elif ch == "\t":
            out.append("\\t")
        elif code < 0x20 or ch in "<>&":
            out.append("\\u00" + _HEX[code >> 4] + _HEX[code & 0xF])
        elif ch in "\u2028\u2029":
            out.append(f"\\u{code:04x}")
        elif 0xD800 <= code <= 0xDFFF:
            out.append("\\ufffd")
        else:
            out.append(ch)
    out.append('"')
    return "".join(out)


def _encode(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return _encode_string(value)
    if isinstance(value, dict):
        items = (f"{_encode_string(k)}:{_encode(value[k])}" for k in sorted(value))
        return "{" + ",".join(items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_encode(item) for item in value) + "]"
    raise TypeError(f"cannot encode value of type {type(value).__name__}")


@dataclass
class FileInfo:
    """General information about an upload: size, offset, metadata and storage."""

    id: str = ""
    size: int = 0
    size_is_deferred: bool = False
    offset: int = 0
    meta_data: dict[str, str] | None = None
    is_partial: bool = False
    is_final: bool = False
    partial_uploads: list[str] | None = None
    storage: dict[str, str] | None = None

    def to_json(self) -> bytes:
        """Encode the info as compact UTF-8 JSON with sorted map keys."""
        fields = [
            ("ID", self.id),
            ("Size", self.size),
            ("SizeIsDeferred", self.size_is_deferred),
            ("Offset", self.offset),
            ("MetaData", self.meta_data),
            ("IsPartial", self.is_partial),
            ("IsFinal", self.is_final),
            ("PartialUploads", self.partial_uploads),
            ("Storage", self.storage),
        ]
        body = ",".join(f"{_encode_string(name)}:{_encode(value)}" for name, value in fields)
        return ("{" + body + "}").encode("utf-8")


def _as_str(name: str, value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError(f"field {name} must be a string")
    return value


def _as_int(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"field {name} must be an integer")
    return value


def _as_bool(name: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"field {name} must be a boolean")
    return value


def _as_str_map(name: str, value: Any) -> dict[str, str]:
    if not isinstance(value, dict) or not all(isinstance(v, str) for v in value.values()):
        raise ValueError(f"field {name} must be an object of strings")
    return dict(value)


def _as_str_list(name: str, value: Any) -> list[str]:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValueError(f"field {name} must be an array of strings")
    return list(value)


_FIELDS: dict[str, tuple[str, Callable[[str, Any], Any]]] = {
    "ID": ("id", _as_str),
    "Size": ("size", _as_int),
    "SizeIsDeferred": ("size_is_deferred", _as_bool),
    "Offset": ("offset", _as_int),
    "MetaData": ("meta_data", _as_str_map),
    "IsPartial": ("is_partial", _as_bool),
    "IsFinal": ("is_final", _as_bool),
    "PartialUploads": ("partial_uploads", _as_str_list),
    "Storage": ("storage", _as_str_map),
}
_FOLDED = {name.lower(): name for name in _FIELDS}
_NULLABLE = {"MetaData", "PartialUploads", "Storage"}


def file_info_from_json(data: bytes | str) -> FileInfo:
    """Decode a :class:`FileInfo` from JSON.

    Key names match case-insensitively, unknown keys are ignored and missing
    keys keep their defaults. Raises :class:`ValueError` on malformed input.
    """
    try:
        document = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValueError(f"invalid file info JSON: {exc}") from exc
    if not isinstance(document, dict):
        raise ValueError("file info JSON must be an object")

    info = FileInfo()
    for key, value in document.items():
        name = key if key in _FIELDS else _FOLDED.get(key.lower())
        if name is None:
            continue
        attr, convert = _FIELDS[name]
        if value is None:
            if name in _NULLABLE:
                setattr(info, attr, None)
            continue
        setattr(info, attr, convert(name, value))
    return info