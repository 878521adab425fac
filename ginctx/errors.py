"""Errors attached to a request context, with their JSON and text forms."""

from __future__ import annotations

import dataclasses
import enum
import json
from collections.abc import Mapping
from typing import Any


class ErrorType(enum.IntFlag):
    """Bit flags that classify an :class:`Error`."""

    PRIVATE = 1 << 0
    PUBLIC = 1 << 1
    RENDER = 1 << 62
    BIND = 1 << 63
    ANY = (1 << 64) - 1


def _is_struct(value: Any) -> bool:
    return dataclasses.is_dataclass(value) and not isinstance(value, type)


def _normalize(value: Any) -> Any:
    """Turn a value into plain JSON-ready data, sorting mapping keys."""
    if isinstance(value, Error):
        return _normalize(value.to_json())
    if isinstance(value, ErrorMsgs):
        return _normalize(value.to_json())
    if isinstance(value, Mapping):
        return {str(k): _normalize(value[k]) for k in sorted(value, key=str)}
    if _is_struct(value):
        return {
            f.name: _normalize(getattr(value, f.name))
            for f in dataclasses.fields(value)
        }
    if isinstance(value, (list, tuple)):
        return [_normalize(item) for item in value]
    if isinstance(value, BaseException):
        return str(value)
    return value


def dumps_json(value: Any) -> str:
    """Encode compact JSON with HTML-sensitive characters escaped."""
    text = json.dumps(_normalize(value), separators=(",", ":"), ensure_ascii=False)
    return (
        text.replace("<", "\\u003c")
        .replace(">", "\\u003e")
        .replace("&", "\\u0026")
        .replace("\u2028", "\\u2028")
        .replace("\u2029", "\\u2029")
    )


def format_value(value: Any) -> str:
    """Render a value in the plain default text style used in error listings."""
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Mapping):
        items = " ".join(
            f"{format_value(k)}:{format_value(value[k])}"
            for k in sorted(value, key=str)
        )
        return f"map[{items}]"
    if _is_struct(value):
        parts = " ".join(
            format_value(getattr(value, f.name)) for f in dataclasses.fields(value)
        )
        return "{" + parts + "}"
    if isinstance(value, (list, tuple)):
        return "[" + " ".join(format_value(item) for item in value) + "]"
    return str(value)


class Error(Exception):
    """An error with a type classification and optional metadata."""

    def __init__(self, err: BaseException, type: ErrorType = ErrorType.PRIVATE,
                 meta: Any = None) -> None:
        super().__init__(err)
        self.err = err
        self.type = ErrorType(type)
        self.meta = meta
        if isinstance(err, BaseException):
            self.__cause__ = err

    def set_type(self, flags: ErrorType) -> Error:
        """Set the error's type and return the error."""
        self.type = ErrorType(flags)
        return self

    def set_meta(self, data: Any) -> Error:
        """Set the error's metadata and return the error."""
        self.meta = data
        return self

    def to_json(self) -> Any:
        """Return the JSON-ready representation of this error."""
        data: dict[str, Any] = {}
        if self.meta is not None:
            if _is_struct(self.meta):
                return self.meta
            if isinstance(self.meta, Mapping):
                for key, value in self.meta.items():
                    data[str(key)] = value
            else:
                data["meta"] = self.meta
        data.setdefault("error", str(self))
        return data

    def marshal_json(self) -> str:
        """Encode the error as a JSON document."""
        return dumps_json(self.to_json())

    def is_type(self, flags: ErrorType) -> bool:
        """Tell whether the error has any of the given type flags."""
        return (int(self.type) & int(flags)) > 0

    def __str__(self) -> str:
        return str(self.err)

    def __repr__(self) -> str:
        return f"Error(err={self.err!r}, type={self.type!r}, meta={self.meta!r})"


class ErrorMsgs(list):
    """An ordered list of :class:`Error` objects."""

    def by_type(self, typ: ErrorType) -> ErrorMsgs:
        """Return the errors that have any of the given type flags."""
        if not self:
            return ErrorMsgs()
        if typ == ErrorType.ANY:
            return self
        return ErrorMsgs(msg for msg in self if msg.is_type(typ))

    def last(self) -> Error | None:
        """Return the last error, or None when there is none."""
        return self[-1] if self else None

    def errors(self) -> list[str]:
        """Return the message of every error."""
        return [str(msg) for msg in self]

    def to_json(self) -> Any:
        """Return None, a single error's JSON, or a list of them."""
        if not self:
            return None
        if len(self) == 1:
            return self[0].to_json()
        return [msg.to_json() for msg in self]

    def marshal_json(self) -> str:
        """Encode the errors as a JSON document."""
        return dumps_json(self.to_json())

    def __str__(self) -> str:
        lines = []
        for number, msg in enumerate(self, start=1):
            lines.append(f"Error #{number:02d}: {msg.err}\n")
            if msg.meta is not None:
                lines.append(f"     Meta: {format_value(msg.meta)}\n")
        return "".join(lines)