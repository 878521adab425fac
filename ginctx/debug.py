"""Debug-mode logging of routes, templates, warnings and errors."""

from __future__ import annotations

import dataclasses
import os
import platform
import re
import sys
from collections.abc import Callable, Iterable, Sequence
from typing import Any, TextIO

_MIN_SUPPORTED_MINOR = 10
_PREFIX = "[GIN-debug] "
_UINT64_MAX = (1 << 64) - 1


@dataclasses.dataclass
class _Settings:
    debugging: bool
    writer: TextIO | None = None
    error_writer: TextIO | None = None
    printer: Callable[..., Any] | None = None
    route_printer: Callable[[str, str, str, int], Any] | None = None


_settings = _Settings(debugging=os.environ.get("GIN_MODE", "debug") in ("", "debug"))


def _out() -> TextIO:
    return _settings.writer if _settings.writer is not None else sys.stdout


def _err_out() -> TextIO:
    return _settings.error_writer if _settings.error_writer is not None else sys.stderr


def is_debugging() -> bool:
    """Tell whether debug mode is on."""
    return _settings.debugging


def set_debug_mode(enabled: bool) -> None:
    """Turn debug mode on or off."""
    _settings.debugging = bool(enabled)


def set_output(writer: TextIO | None = None, error_writer: TextIO | None = None) -> None:
    """Set the streams for debug output; None means standard output / error."""
    _settings.writer = writer
    _settings.error_writer = error_writer


def set_printer(func: Callable[..., Any] | None) -> None:
    """Replace the debug printer; it is called with (format, *args)."""
    _settings.printer = func


def set_route_printer(func: Callable[[str, str, str, int], Any] | None) -> None:
    """Replace the route printer; called with (method, path, handler_name, count)."""
    _settings.route_printer = func


def name_of_function(func: Any) -> str:
    """Return the dotted name of a callable."""
    if func is None:
        return ""
    qualname = getattr(func, "__qualname__", None)
    module = getattr(func, "__module__", None)
    if qualname is None:
        qualname = type(func).__qualname__
        module = type(func).__module__
    return f"{module}.{qualname}" if module else qualname


def debug_print(format: str, *args: Any) -> None:
    """Write a debug line when debug mode is on."""
    if not is_debugging():
        return
    if _settings.printer is not None:
        _settings.printer(format, *args)
        return
    if not format.endswith("\n"):
        format += "\n"
    text = format % args if args else format
    _out().write(_PREFIX + text)


def debug_print_route(method: str, path: str, handlers: Sequence[Any]) -> None:
    """Log a registered route with its last handler and handler count."""
    if not is_debugging():
        return
    count = len(handlers)
    handler_name = name_of_function(handlers[-1] if handlers else None)
    if _settings.route_printer is None:
        debug_print("%-6s %-25s --> %s (%d handlers)\n", method, path, handler_name, count)
    else:
        _settings.route_printer(method, path, handler_name, count)


def debug_print_load_template(names: Iterable[str]) -> None:
    """Log the names of loaded templates."""
    if not is_debugging():
        return
    names = list(names)
    listing = "".join(f"\t- {name}\n" for name in names)
    debug_print("Loaded HTML Templates (%d): \n%s\n", len(names), listing)


def debug_print_error(err: BaseException | None) -> None:
    """Log an error to the error stream when debug mode is on."""
    if err is not None and is_debugging():
        _err_out().write(f"{_PREFIX}[ERROR] {err}\n")


def get_min_ver(v: str) -> int:
    """Return the minor number of a version string such as 'go1.2.3' or '3.12.1'."""
    first = v.find(".")
    last = v.rfind(".")
    part = v[first + 1:] if first == last else v[first + 1:last]
    if not re.fullmatch(r"[0-9]+", part):
        raise ValueError(f"invalid minor version {part!r} in {v!r}")
    number = int(part)
    if number > _UINT64_MAX:
        raise ValueError(f"minor version out of range in {v!r}")
    return number


def debug_print_warning_default() -> None:
    """Warn about an old interpreter and about the default middleware."""
    try:
        minor = get_min_ver(platform.python_version())
    except ValueError:
        minor = None
    if minor is not None and minor < _MIN_SUPPORTED_MINOR:
        debug_print(f"[WARNING] Now ginctx requires Python 3.{_MIN_SUPPORTED_MINOR}+.\n\n")
    debug_print(
        "[WARNING] Creating an Engine instance with the Logger and Recovery "
        "middleware already attached.\n\n"
    )


def debug_print_warning_new() -> None:
    """Warn that debug mode is on."""
    debug_print(
        '[WARNING] Running in "debug" mode. Switch to "release" mode in production.\n'
        " - using env:\texport GIN_MODE=release\n"
        " - using code:\tset_debug_mode(False)\n\n"
    )


def debug_print_warning_set_html_template() -> None:
    """Warn that setting the HTML template is not thread-safe."""
    debug_print(
        "[WARNING] Since set_html_template() is NOT thread-safe. It should only be called\n"
        "at initialization. ie. before any route is registered or the router is "
        "listening in a socket:\n\n"
        "\trouter = Engine()\n"
        "\trouter.set_html_template(template)  # << good place\n\n"
    )