"""An incoming HTTP request: headers, query, body, forms, uploads and cookies."""

from __future__ import annotations

import dataclasses
import io
import posixpath
import re
import tempfile
from collections.abc import Iterable, Iterator, Mapping
from typing import Any, BinaryIO, Union
from urllib.parse import parse_qs, urlsplit

from ginctx.debug import debug_print

DEFAULT_MAX_MEMORY = 32 << 20
_MAX_FORM_SIZE = 10 << 20
_EXTRA_VALUE_BYTES = 10 << 20
_FORM_METHODS = frozenset({"POST", "PUT", "PATCH"})

_TOKEN_CHARS = frozenset(
    "!#$%&'*+-.^_`|~"
    "0123456789"
    "abcdefghijklmnopqrstuvwxyz"
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
)
_PARAM = re.compile(r';\s*([^\s=;]+)\s*=\s*("(?:[^"\\]|\\.)*"|[^;]*)')

HeaderInit = Union[Mapping[str, Any], Iterable[tuple[str, Any]], None]


def _is_token(text: str) -> bool:
    return bool(text) and all(ch in _TOKEN_CHARS for ch in text)


def canonical_header_key(key: str) -> str:
    """Return the canonical form of a header name, e.g. 'X-Forwarded-For'."""
    if not _is_token(key):
        return key
    return "-".join(part[:1].upper() + part[1:].lower() for part in key.split("-"))


def _parse_media_type(value: str) -> tuple[str, dict[str, str]]:
    """Split a header value such as a Content-Type into its type and parameters."""
    media, _, rest = value.partition(";")
    params: dict[str, str] = {}
    for match in _PARAM.finditer(";" + rest):
        raw = match.group(2).strip()
        if len(raw) >= 2 and raw.startswith('"') and raw.endswith('"'):
            raw = re.sub(r"\\(.)", r"\1", raw[1:-1])
        params[match.group(1).lower()] = raw
    return media.strip().lower(), params


class Headers:
    """A case-insensitive, multi-valued collection of header fields."""

    def __init__(self, initial: HeaderInit = None) -> None:
        self._fields: dict[str, list[str]] = {}
        if initial is None:
            return
        pairs = initial.items() if isinstance(initial, Mapping) else initial
        for key, value in pairs:
            if isinstance(value, (list, tuple)):
                for item in value:
                    self.add(key, item)
            else:
                self.add(key, value)

    def get(self, key: str) -> str:
        """Return the first value for the key, or an empty string."""
        values = self._fields.get(canonical_header_key(key))
        return values[0] if values else ""

    def get_all(self, key: str) -> list[str]:
        """Return every value for the key."""
        return list(self._fields.get(canonical_header_key(key), ()))

    def set(self, key: str, value: str) -> None:
        """Replace the values for the key with a single value."""
        self._fields[canonical_header_key(key)] = [str(value)]

    def add(self, key: str, value: str) -> None:
        """Append a value to the key."""
        self._fields.setdefault(canonical_header_key(key), []).append(str(value))

    def delete(self, key: str) -> None:
        """Remove all values for the key."""
        self._fields.pop(canonical_header_key(key), None)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and canonical_header_key(key) in self._fields

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def items(self) -> Iterator[tuple[str, list[str]]]:
        """Yield each canonical key with a copy of its values."""
        for key, values in self._fields.items():
            yield key, list(values)

    def copy(self) -> Headers:
        """Return an independent copy."""
        return Headers(self.items())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Headers):
            return NotImplemented
        return self._fields == other._fields

    def __repr__(self) -> str:
        return f"Headers({self._fields!r})"


class NotMultipartError(ValueError):
    """The request body is not multipart/form-data."""


class NoCookieError(LookupError):
    """The named cookie is not present in the request."""


class MissingFileError(LookupError):
    """The named file is not present in the multipart form."""


@dataclasses.dataclass
class UploadedFile:
    """A file part of a multipart form, held in memory or in a temporary file."""

    filename: str
    headers: Headers = dataclasses.field(default_factory=Headers)
    size: int = 0
    content: bytes | None = None
    tmpfile: str | None = None

    def open(self) -> BinaryIO:
        """Open the file's content for reading."""
        if self.content is not None:
            return io.BytesIO(self.content)
        if not self.tmpfile:
            raise FileNotFoundError(f"no content stored for uploaded file {self.filename!r}")
        return open(self.tmpfile, "rb")


@dataclasses.dataclass
class MultipartForm:
    """A parsed multipart form: plain values and uploaded files by field name."""

    value: dict[str, list[str]] = dataclasses.field(default_factory=dict)
    file: dict[str, list[UploadedFile]] = dataclasses.field(default_factory=dict)


def _split_part(part: bytes) -> tuple[Headers, bytes]:
    if part.startswith(b"\r\n"):
        return Headers(), part[2:]
    if part.startswith(b"\n"):
        return Headers(), part[1:]
    for separator in (b"\r\n\r\n", b"\n\n"):
        index = part.find(separator)
        if index >= 0:
            head, content = part[:index], part[index + len(separator):]
            break
    else:
        raise ValueError("multipart: malformed MIME header: missing blank line")
    headers = Headers()
    for line in head.decode("utf-8", "replace").splitlines():
        name, colon, value = line.partition(":")
        if not colon or not name.strip():
            raise ValueError(f"malformed MIME header line: {line}")
        headers.add(name.strip(), value.strip())
    return headers, content


def _store_file(content: bytes) -> str:
    with tempfile.NamedTemporaryFile(prefix="multipart-", delete=False) as out:
        out.write(content)
        return out.name


def _parse_multipart(data: bytes, boundary: str, max_memory: int) -> MultipartForm:
    dash = b"--" + boundary.encode("latin-1")
    start = data.find(dash)
    if start < 0:
        raise ValueError("multipart: NextPart: EOF")
    delimiter = re.compile(rb"\r?\n" + re.escape(dash))
    form = MultipartForm()
    value_budget = max_memory + _EXTRA_VALUE_BYTES
    file_budget = max_memory
    pos = start + len(dash)
    while not data.startswith(b"--", pos):
        line_end = data.find(b"\n", pos)
        if line_end < 0:
            raise ValueError("multipart: NextPart: EOF")
        if data[pos:line_end].strip(b" \t\r"):
            raise ValueError("multipart: malformed boundary line")
        part_start = line_end + 1
        match = delimiter.search(data, part_start)
        if match is None:
            raise ValueError("multipart: NextPart: EOF")
        headers, content = _split_part(data[part_start:match.start()])
        pos = match.end()

        disposition, params = _parse_media_type(headers.get("Content-Disposition"))
        name = params.get("name", "") if disposition == "form-data" else ""
        if not name:
            continue
        filename = params.get("filename", "")
        if not filename:
            value_budget -= len(content)
            if value_budget < 0:
                raise ValueError("multipart: message too large")
            form.value.setdefault(name, []).append(content.decode("utf-8", "replace"))
            continue
        upload = UploadedFile(
            filename=posixpath.basename(filename.rstrip("/")) or filename,
            headers=headers,
            size=len(content),
        )
        if len(content) > file_budget:
            upload.tmpfile = _store_file(content)
        else:
            upload.content = content
            file_budget -= len(content)
        form.file.setdefault(name, []).append(upload)
    return form


def _parse_cookie_value(raw: str) -> str | None:
    if len(raw) >= 2 and raw.startswith('"') and raw.endswith('"'):
        raw = raw[1:-1]
    for ch in raw:
        if not (0x20 < ord(ch) < 0x7F) or ch in '";\\':
            return None
    return raw


class Request:
    """An HTTP request as seen by handlers."""

    def __init__(
        self,
        method: str = "GET",
        url: str | None = "/",
        body: bytes | str | BinaryIO | None = None,
        headers: Headers | HeaderInit = None,
        remote_addr: str = "",
    ) -> None:
        self.method = (method or "GET").upper()
        self.url = url
        if url is None:
            self.path, self.raw_query, self.host = "", "", ""
        else:
            parts = urlsplit(url)
            self.path, self.raw_query, self.host = parts.path, parts.query, parts.netloc
        if isinstance(body, (bytes, bytearray)):
            body = io.BytesIO(bytes(body))
        elif isinstance(body, str):
            body = io.BytesIO(body.encode("utf-8"))
        self.body: BinaryIO | None = body
        self.headers = headers if isinstance(headers, Headers) else Headers(headers)
        self.remote_addr = remote_addr
        self._post_form: dict[str, list[str]] | None = None
        self._multipart: MultipartForm | None = None

    def __repr__(self) -> str:
        return f"Request({self.method!r}, {self.url!r})"

    def query(self) -> dict[str, list[str]]:
        """Parse the URL's query string into lists of values per key."""
        if not self.raw_query:
            return {}
        return parse_qs(self.raw_query, keep_blank_values=True)

    def read_body(self) -> bytes:
        """Read the rest of the body; the body is consumed."""
        if self.body is None:
            raise ValueError("cannot read nil body")
        return self.body.read()

    def _is_multipart(self) -> bool:
        media, _ = _parse_media_type(self.headers.get("Content-Type"))
        return media == "multipart/form-data"

    def _parse_post_body(self) -> dict[str, list[str]]:
        if self.method not in _FORM_METHODS:
            return {}
        media, _ = _parse_media_type(self.headers.get("Content-Type") or "application/octet-stream")
        if media != "application/x-www-form-urlencoded":
            return {}
        if self.body is None:
            raise ValueError("missing form body")
        data = self.body.read(_MAX_FORM_SIZE + 1)
        if len(data) > _MAX_FORM_SIZE:
            raise ValueError("http: POST too large")
        return parse_qs(data.decode("utf-8", "replace"), keep_blank_values=True)

    def _ensure_post_form(self) -> dict[str, list[str]]:
        if self._post_form is None:
            self._post_form = {}
            try:
                self._post_form.update(self._parse_post_body())
            except ValueError as exc:
                debug_print("error on parse multipart form array: %s", exc)
        return self._post_form

    def post_form(self, max_memory: int = DEFAULT_MAX_MEMORY) -> dict[str, list[str]]:
        """Return the form values sent in the body, urlencoded or multipart.

        Parse problems are reported through debug output and leave the
        values gathered so far.
        """
        values = self._ensure_post_form()
        if self._multipart is None and self._is_multipart():
            try:
                self.multipart_form(max_memory)
            except ValueError as exc:
                debug_print("error on parse multipart form array: %s", exc)
        return values

    def multipart_form(self, max_memory: int = DEFAULT_MAX_MEMORY) -> MultipartForm:
        """Parse the body as multipart/form-data, keeping up to max_memory of files in memory."""
        if self._multipart is not None:
            return self._multipart
        media, params = _parse_media_type(self.headers.get("Content-Type"))
        if media != "multipart/form-data":
            raise NotMultipartError("request Content-Type isn't multipart/form-data")
        if self.body is None:
            raise ValueError("missing form body")
        boundary = params.get("boundary")
        if not boundary:
            raise ValueError("no multipart boundary param in Content-Type")
        values = self._ensure_post_form()
        form = _parse_multipart(self.body.read(), boundary, max_memory)
        for key, items in form.value.items():
            values.setdefault(key, []).extend(items)
        self._multipart = form
        return form

    def cookie(self, name: str) -> str:
        """Return the raw value of the named cookie."""
        for line in self.headers.get_all("Cookie"):
            for part in line.strip().split(";"):
                part = part.strip()
                if not part:
                    continue
                key, _, raw = part.partition("=")
                key = key.strip()
                if not _is_token(key) or key != name:
                    continue
                value = _parse_cookie_value(raw)
                if value is not None:
                    return value
        raise NoCookieError("http: named cookie not present")