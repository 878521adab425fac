"""The per-request context: flow control, stored values, input access and rendering."""

from __future__ import annotations

import dataclasses
import datetime
import enum
import html
import json
import mimetypes
import os
import posixpath
import shutil
import threading
from collections.abc import Callable
from http import HTTPStatus
from typing import Any
from urllib.parse import quote_plus, unquote_plus, urlsplit

from ginctx.debug import name_of_function
from ginctx.errors import Error, ErrorMsgs, ErrorType, dumps_json
from ginctx.request import DEFAULT_MAX_MEMORY, MissingFileError, MultipartForm, Request, UploadedFile
from ginctx.response import ResponseWriter, SameSite, format_cookie

MIME_JSON = "application/json"
MIME_HTML = "text/html"
MIME_XML = "application/xml"
MIME_XML2 = "text/xml"
MIME_PLAIN = "text/plain"
MIME_POST_FORM = "application/x-www-form-urlencoded"
MIME_MULTIPART_POST_FORM = "multipart/form-data"
MIME_YAML = "application/x-yaml"
MIME_YAML2 = "application/yaml"
MIME_TOML = "application/toml"

BODY_BYTES_KEY = "_gin-gonic/gin/bodybyteskey"
CONTEXT_KEY = "_gin-gonic/gin/contextkey"

ABORT_INDEX = 127 >> 1

_JSON_CT = "application/json; charset=utf-8"


class ContextKeyType(enum.Enum):
    """Keys for which :meth:`Context.value` returns special objects."""

    REQUEST = 0


CONTEXT_REQUEST_KEY = ContextKeyType.REQUEST

Handler = Callable[["Context"], Any]


@dataclasses.dataclass
class Param:
    """A single URL parameter."""

    key: str = ""
    value: str = ""


class Params(list):
    """An ordered list of URL parameters."""

    def by_name(self, name: str) -> str:
        """Return the value of the first parameter with the name, or ''."""
        return self.get(name)[0]

    def get(self, name: str) -> tuple[str, bool]:
        """Return (value, found) for the first parameter with the name."""
        for param in self:
            if param.key == name:
                return param.value, True
        return "", False


def body_allowed_for_status(status: int) -> bool:
    """Tell whether a response with this status may carry a body."""
    if 100 <= status <= 199:
        return False
    return status not in (204, 304)


def _filter_flags(content: str) -> str:
    for i, ch in enumerate(content):
        if ch in " ;":
            return content[:i]
    return content


def _parse_accept(header: str) -> list[str]:
    out = []
    for part in header.split(","):
        value = part.split(";", 1)[0].strip()
        if value:
            out.append(value)
    return out


def _split_host_port(addr: str) -> str | None:
    if addr.startswith("["):
        end = addr.find("]")
        if end < 0 or not addr[end + 1:].startswith(":"):
            return None
        host = addr[1:end]
    else:
        host, colon, _ = addr.rpartition(":")
        if not colon or ":" in host:
            return None
    return host


_JS_ESCAPES = {"\\": "\\\\", "'": "\\'", '"': '\\"', "<": "\\u003C", ">": "\\u003E",
               "&": "\\u0026", "=": "\\u003D"}


def _js_escape(text: str) -> str:
    out = []
    for ch in text:
        if ch in _JS_ESCAPES:
            out.append(_JS_ESCAPES[ch])
        elif ord(ch) < 0x20:
            out.append(f"\\u{ord(ch):04X}")
        else:
            out.append(ch)
    return "".join(out)


def _escape_quotes(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')


class Context:
    """State shared by the handlers serving one request."""

    def __init__(self, request: Request | None = None, writer: ResponseWriter | None = None,
                 max_multipart_memory: int = DEFAULT_MAX_MEMORY) -> None:
        self.request = request
        self.writer = writer if writer is not None else ResponseWriter()
        self.max_multipart_memory = max_multipart_memory
        self._lock = threading.RLock()
        self.params = Params()
        self.handlers: list[Handler | None] = []
        self.index = -1
        self.full_path = ""
        self.keys: dict[str, Any] | None = None
        self.errors = ErrorMsgs()
        self.accepted: list[str] | None = None
        self._query_cache: dict[str, list[str]] | None = None
        self._form_cache: dict[str, list[str]] | None = None
        self.same_site: SameSite | int = 0

    def reset(self) -> None:
        """Clear per-request state so the context can be reused."""
        self.params = Params()
        self.handlers = []
        self.index = -1
        self.full_path = ""
        self.keys = None
        self.errors = ErrorMsgs()
        self.accepted = None
        self._query_cache = None
        self._form_cache = None
        self.same_site = 0

    def copy(self) -> Context:
        """Return a copy safe to use outside the request's scope."""
        cp = Context(self.request, ResponseWriter(), self.max_multipart_memory)
        cp.index = ABORT_INDEX
        cp.full_path = self.full_path
        with self._lock:
            cp.keys = dict(self.keys or {})
        cp.params = Params(Param(p.key, p.value) for p in self.params)
        return cp

    def handler_name(self) -> str:
        """Return the name of the main (last) handler."""
        return name_of_function(self.handler())

    def handler_names(self) -> list[str]:
        """Return the names of all registered handlers."""
        return [name_of_function(h) for h in self.handlers if h is not None]

    def handler(self) -> Handler | None:
        """Return the main (last) handler."""
        return self.handlers[-1] if self.handlers else None

    def next(self) -> None:
        """Run the pending handlers in the chain."""
        self.index += 1
        while self.index < len(self.handlers):
            handler = self.handlers[self.index]
            if handler is not None:
                handler(self)
            self.index += 1

    def is_aborted(self) -> bool:
        """Tell whether the chain was aborted."""
        return self.index >= ABORT_INDEX

    def abort(self) -> None:
        """Prevent pending handlers from being called."""
        self.index = ABORT_INDEX

    def abort_with_status(self, code: int) -> None:
        """Abort and write the headers with the status code."""
        self.status(code)
        self.writer.write_header_now()
        self.abort()

    def abort_with_status_json(self, code: int, obj: Any) -> None:
        """Abort and render the object as JSON."""
        self.abort()
        self.json(code, obj)

    def abort_with_error(self, code: int, err: BaseException) -> Error:
        """Abort with the status code and attach the error."""
        self.abort_with_status(code)
        return self.error(err)

    def error(self, err: BaseException | None) -> Error:
        """Attach an error to the context and return it as an :class:`Error`."""
        if err is None:
            raise ValueError("err is nil")
        parsed = err if isinstance(err, Error) else Error(err, ErrorType.PRIVATE)
        self.errors.append(parsed)
        return parsed

    def set(self, key: str, value: Any) -> None:
        """Store a value for this request."""
        with self._lock:
            if self.keys is None:
                self.keys = {}
            self.keys[key] = value

    def get(self, key: str) -> tuple[Any, bool]:
        """Return (value, exists) for the key."""
        with self._lock:
            if self.keys is None or key not in self.keys:
                return None, False
            return self.keys[key], True

    def must_get(self, key: str) -> Any:
        """Return the value for the key or raise KeyError."""
        value, exists = self.get(key)
        if not exists:
            raise KeyError(f'Key "{key}" does not exist')
        return value

    def _typed(self, key: str, types: type | tuple[type, ...], zero: Any,
               exclude: type | None = None) -> Any:
        value, _ = self.get(key)
        if isinstance(value, types) and not (exclude and isinstance(value, exclude)):
            return value
        return zero

    def get_string(self, key: str) -> str:
        """Return the value as a string, or ''."""
        return self._typed(key, str, "")

    def get_bool(self, key: str) -> bool:
        """Return the value as a bool, or False."""
        return self._typed(key, bool, False)

    def get_int(self, key: str) -> int:
        """Return the value as an int, or 0."""
        return self._typed(key, int, 0, exclude=bool)

    def get_float(self, key: str) -> float:
        """Return the value as a float, or 0.0."""
        return self._typed(key, float, 0.0)

    def get_time(self, key: str) -> datetime.datetime | None:
        """Return the value as a datetime, or None."""
        return self._typed(key, datetime.datetime, None)

    def get_duration(self, key: str) -> datetime.timedelta:
        """Return the value as a timedelta, or a zero duration."""
        return self._typed(key, datetime.timedelta, datetime.timedelta(0))

    def get_string_list(self, key: str) -> list[str]:
        """Return the value as a list of strings, or an empty list."""
        value = self._typed(key, list, [])
        return value if all(isinstance(v, str) for v in value) else []

    def get_dict(self, key: str) -> dict:
        """Return the value as a dict, or an empty dict."""
        return self._typed(key, dict, {})

    def param(self, key: str) -> str:
        """Return the value of the URL parameter."""
        return self.params.by_name(key)

    def add_param(self, key: str, value: str) -> None:
        """Append a URL parameter."""
        self.params.append(Param(key, value))

    def _queries(self) -> dict[str, list[str]]:
        if self._query_cache is None:
            self._query_cache = self.request.query() if self.request is not None else {}
        return self._query_cache

    def query(self, key: str) -> str:
        """Return the first query value for the key, or ''."""
        return self.get_query(key)[0]

    def default_query(self, key: str, default: str) -> str:
        """Return the first query value for the key, or the default."""
        value, ok = self.get_query(key)
        return value if ok else default

    def get_query(self, key: str) -> tuple[str, bool]:
        """Return (first value, exists) for the query key."""
        values, ok = self.get_query_array(key)
        return (values[0], True) if ok else ("", False)

    def query_array(self, key: str) -> list[str]:
        """Return all query values for the key."""
        return self.get_query_array(key)[0]

    def get_query_array(self, key: str) -> tuple[list[str], bool]:
        """Return (values, exists) for the query key."""
        cache = self._queries()
        if key in cache:
            return list(cache[key]), True
        return [], False

    def query_map(self, key: str) -> dict[str, str]:
        """Return the map encoded as key[sub]=value in the query."""
        return self.get_query_map(key)[0]

    def get_query_map(self, key: str) -> tuple[dict[str, str], bool]:
        """Return (map, exists) for key[sub]=value entries in the query."""
        return self._map_of(self._queries(), key)

    def _forms(self) -> dict[str, list[str]]:
        if self._form_cache is None:
            self._form_cache = self.request.post_form(self.max_multipart_memory)
        return self._form_cache

    def post_form(self, key: str) -> str:
        """Return the first form value for the key, or ''."""
        return self.get_post_form(key)[0]

    def default_post_form(self, key: str, default: str) -> str:
        """Return the first form value for the key, or the default."""
        value, ok = self.get_post_form(key)
        return value if ok else default

    def get_post_form(self, key: str) -> tuple[str, bool]:
        """Return (first value, exists) for the form key."""
        values, ok = self.get_post_form_array(key)
        return (values[0], True) if ok else ("", False)

    def post_form_array(self, key: str) -> list[str]:
        """Return all form values for the key."""
        return self.get_post_form_array(key)[0]

    def get_post_form_array(self, key: str) -> tuple[list[str], bool]:
        """Return (values, exists) for the form key."""
        cache = self._forms()
        if key in cache:
            return list(cache[key]), True
        return [], False

    def post_form_map(self, key: str) -> dict[str, str]:
        """Return the map encoded as key[sub]=value in the form."""
        return self.get_post_form_map(key)[0]

    def get_post_form_map(self, key: str) -> tuple[dict[str, str], bool]:
        """Return (map, exists) for key[sub]=value entries in the form."""
        return self._map_of(self._forms(), key)

    @staticmethod
    def _map_of(values: dict[str, list[str]], key: str) -> tuple[dict[str, str], bool]:
        dicts: dict[str, str] = {}
        exists = False
        for name, items in values.items():
            i = name.find("[")
            if i >= 1 and name[:i] == key:
                j = name[i + 1:].find("]")
                if j >= 1:
                    exists = True
                    dicts[name[i + 1:i + 1 + j]] = items[0]
        return dicts, exists

    def form_file(self, name: str) -> UploadedFile:
        """Return the first uploaded file for the form key."""
        files = self.multipart_form().file.get(name)
        if not files:
            raise MissingFileError("http: no such file")
        return files[0]

    def multipart_form(self) -> MultipartForm:
        """Return the parsed multipart form."""
        return self.request.multipart_form(self.max_multipart_memory)

    def save_uploaded_file(self, file: UploadedFile, dst: str, perm: int = 0o750) -> None:
        """Write an uploaded file to dst, creating its directory with perm."""
        with file.open() as src:
            directory = os.path.dirname(dst) or "."
            os.makedirs(directory, mode=perm, exist_ok=True)
            os.chmod(directory, perm)
            with open(dst, "wb") as out:
                shutil.copyfileobj(src, out)

    def remote_ip(self) -> str:
        """Return the IP part of the request's remote address, or ''."""
        host = _split_host_port(self.request.remote_addr.strip())
        return host if host is not None else ""

    def content_type(self) -> str:
        """Return the request's media type without parameters."""
        return _filter_flags(self.get_header("Content-Type"))

    def is_websocket(self) -> bool:
        """Tell whether the request asks for a websocket upgrade."""
        return ("upgrade" in self.get_header("Connection").lower()
                and self.get_header("Upgrade").lower() == "websocket")

    def status(self, code: int) -> None:
        """Set the response status code."""
        self.writer.write_header(code)

    def header(self, key: str, value: str) -> None:
        """Set a response header, or delete it when value is ''."""
        if value == "":
            self.writer.headers.delete(key)
        else:
            self.writer.headers.set(key, value)

    def get_header(self, key: str) -> str:
        """Return a request header value."""
        return self.request.headers.get(key)

    def get_raw_data(self) -> bytes:
        """Read the whole request body."""
        return self.request.read_body()

    def set_same_site(self, same_site: SameSite | int) -> None:
        """Set the SameSite mode for cookies set afterwards."""
        self.same_site = same_site

    def set_cookie(self, name: str, value: str, max_age: int, path: str, domain: str,
                   secure: bool, http_only: bool) -> None:
        """Add a Set-Cookie header to the response."""
        line = format_cookie(name, quote_plus(value), max_age, path or "/", domain,
                             self.same_site, secure, http_only)
        if line:
            self.writer.headers.add("Set-Cookie", line)

    def cookie(self, name: str) -> str:
        """Return the unescaped value of the named request cookie."""
        return unquote_plus(self.request.cookie(name))

    def _render(self, code: int, content_type: str | None, body: Callable[[], bytes]) -> None:
        self.status(code)
        if content_type and "Content-Type" not in self.writer.headers:
            self.writer.headers.set("Content-Type", content_type)
        if not body_allowed_for_status(code):
            self.writer.write_header_now()
            return
        try:
            data = body()
        except Exception as exc:  # rendering failures are attached, not raised
            self.error(exc)
            self.abort()
            return
        self.writer.write(data)

    def json(self, code: int, obj: Any) -> None:
        """Render obj as compact JSON with HTML characters escaped."""
        self._render(code, _JSON_CT, lambda: dumps_json(obj).encode())

    def indented_json(self, code: int, obj: Any) -> None:
        """Render obj as JSON indented by four spaces."""
        def body() -> bytes:
            text = json.dumps(json.loads(dumps_json(obj)), indent=4, ensure_ascii=False)
            return (text.replace("<", "\\u003c").replace(">", "\\u003e")
                    .replace("&", "\\u0026")).encode()
        self._render(code, _JSON_CT, body)

    def pure_json(self, code: int, obj: Any) -> None:
        """Render obj as JSON without escaping HTML characters."""
        def body() -> bytes:
            plain = json.loads(dumps_json(obj))
            return (json.dumps(plain, separators=(",", ":"), ensure_ascii=False) + "\n").encode()
        self._render(code, _JSON_CT, body)

    def ascii_json(self, code: int, obj: Any) -> None:
        """Render obj as JSON with non-ASCII characters escaped."""
        def body() -> bytes:
            return "".join(ch if ord(ch) < 128 else f"\\u{ord(ch):04x}"
                           for ch in dumps_json(obj)).encode()
        self._render(code, MIME_JSON, body)

    def jsonp(self, code: int, obj: Any) -> None:
        """Render obj as JSONP when a callback query is given, else as JSON."""
        callback = self.default_query("callback", "")
        if not callback:
            self.json(code, obj)
            return
        self._render(code, "application/javascript; charset=utf-8",
                     lambda: f"{_js_escape(callback)}({dumps_json(obj)});".encode())

    def string(self, code: int, format: str, *args: Any) -> None:
        """Render a %-formatted string as text/plain."""
        self._render(code, "text/plain; charset=utf-8",
                     lambda: (format % args if args else format).encode())

    def data(self, code: int, content_type: str, data: bytes) -> None:
        """Render raw bytes with the given content type."""
        self._render(code, content_type, lambda: bytes(data))

    def redirect(self, code: int, location: str) -> None:
        """Send a redirect to location; code must be 201 or 300-308."""
        if (code < 300 or code > 308) and code != 201:
            raise ValueError(f"Cannot redirect with status code {code}")
        if not urlsplit(location).scheme and not location.startswith("/"):
            old = self.request.path or "/"
            joined = posixpath.dirname(old) + "/" + location
            cleaned = posixpath.normpath(joined)
            if location.endswith("/") and not cleaned.endswith("/"):
                cleaned += "/"
            location = cleaned
        headers = self.writer.headers
        had_type = "Content-Type" in headers
        headers.set("Location", location)
        method = self.request.method
        if not had_type and method in ("GET", "HEAD"):
            headers.set("Content-Type", "text/html; charset=utf-8")
        self.writer.write_header(code)
        if not had_type and method == "GET":
            phrase = HTTPStatus(code).phrase
            self.writer.write_string(f'<a href="{html.escape(location)}">{phrase}</a>.\n\n')

    def file_attachment(self, path: str, filename: str) -> None:
        """Send the file at path as a download named filename."""
        if filename.isascii():
            disposition = f'attachment; filename="{_escape_quotes(filename)}"'
        else:
            disposition = "attachment; filename*=UTF-8''" + quote_plus(filename)
        self.writer.headers.set("Content-Disposition", disposition)
        try:
            with open(path, "rb") as handle:
                content = handle.read()
        except OSError:
            self.writer.headers.delete("Content-Disposition")
            self.writer.headers.set("Content-Type", "text/plain; charset=utf-8")
            self.writer.write_header(404)
            self.writer.write_string("404 page not found\n")
            return
        if "Content-Type" not in self.writer.headers:
            guessed = mimetypes.guess_type(path)[0] or "application/octet-stream"
            self.writer.headers.set("Content-Type", guessed)
        self.writer.headers.set("Content-Length", str(len(content)))
        self.writer.write(content)

    def stream(self, step: Callable[[ResponseWriter], bool]) -> bool:
        """Call step until it returns False; return True if the client went away."""
        while True:
            if self.writer.client_gone:
                return True
            keep_open = step(self.writer)
            self.writer.flush()
            if not keep_open:
                return False

    def negotiate_format(self, *args: str) -> str:
        """Return the first offered format that the Accept header allows, or ''."""
        if not args:
            raise ValueError("you must provide at least one offer")
        if self.accepted is None:
            self.accepted = _parse_accept(self.get_header("Accept"))
        if not self.accepted:
            return args[0]
        for accepted in self.accepted:
            for offer in args:
                i = 0
                while i < len(accepted) and i < len(offer):
                    if accepted[i] == "*" or offer[i] == "*":
                        return offer
                    if accepted[i] != offer[i]:
                        break
                    i += 1
                if i == len(accepted):
                    return offer
        return ""

    def set_accepted(self, *args: str) -> None:
        """Set the accepted formats explicitly."""
        self.accepted = list(args)

    def value(self, key: Any) -> Any:
        """Return the request, this context, or a stored value for key."""
        if key is CONTEXT_REQUEST_KEY:
            return self.request
        if key == CONTEXT_KEY:
            return self
        if isinstance(key, str):
            value, exists = self.get(key)
            if exists:
                return value
        return None