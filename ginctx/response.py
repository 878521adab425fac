"""The response side of a request: status, headers, body and cookies."""

from __future__ import annotations

import enum
import ipaddress

from ginctx.debug import debug_print
from ginctx.request import Headers

_TOKEN_CHARS = frozenset(
    "!#$%&'*+-.^_`|~"
    "0123456789"
    "abcdefghijklmnopqrstuvwxyz"
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
)

NOT_WRITTEN = -1
DEFAULT_STATUS = 200


class SameSite(enum.IntEnum):
    """The SameSite attribute of a cookie."""

    DEFAULT = 1
    LAX = 2
    STRICT = 3
    NONE = 4


def _is_cookie_name(name: str) -> bool:
    return bool(name) and all(ch in _TOKEN_CHARS for ch in name)


def _is_cookie_domain_name(domain: str) -> bool:
    if not domain or len(domain) > 255:
        return False
    if domain.startswith("."):
        domain = domain[1:]
    last = "."
    has_letter = False
    part_len = 0
    for ch in domain:
        if ch.isascii() and ch.isalpha():
            has_letter = True
            part_len += 1
        elif ch.isascii() and ch.isdigit():
            part_len += 1
        elif ch == "-":
            if last == ".":
                return False
            part_len += 1
        elif ch == ".":
            if last in ".-" or part_len == 0 or part_len > 63:
                return False
            part_len = 0
        else:
            return False
        last = ch
    if last == "-" or part_len > 63:
        return False
    return has_letter


def _is_valid_cookie_domain(domain: str) -> bool:
    if _is_cookie_domain_name(domain):
        return True
    try:
        ipaddress.ip_address(domain)
    except ValueError:
        return False
    return ":" not in domain


def _sanitize_cookie_value(value: str) -> str:
    cleaned = "".join(
        ch for ch in value if 0x20 <= ord(ch) < 0x7F and ch not in '";\\'
    )
    if " " in cleaned or "," in cleaned:
        return f'"{cleaned}"'
    return cleaned


def _sanitize_cookie_path(path: str) -> str:
    return "".join(ch for ch in path if 0x20 <= ord(ch) < 0x7F and ch != ";")


def format_cookie(
    name: str,
    value: str,
    max_age: int = 0,
    path: str = "",
    domain: str = "",
    same_site: SameSite | int | None = None,
    secure: bool = False,
    http_only: bool = False,
) -> str:
    """Serialize a cookie for a Set-Cookie header; return '' for an invalid name."""
    if not _is_cookie_name(name):
        return ""
    parts = [f"{name}={_sanitize_cookie_value(value)}"]
    if path:
        parts.append(f"Path={_sanitize_cookie_path(path)}")
    if domain:
        if _is_valid_cookie_domain(domain):
            parts.append(f"Domain={domain[1:] if domain.startswith('.') else domain}")
        else:
            debug_print("invalid cookie Domain %r; dropping domain attribute", domain)
    if max_age > 0:
        parts.append(f"Max-Age={max_age}")
    elif max_age < 0:
        parts.append("Max-Age=0")
    if http_only:
        parts.append("HttpOnly")
    if secure:
        parts.append("Secure")
    if same_site:
        mode = SameSite(same_site)
        if mode is SameSite.LAX:
            parts.append("SameSite=Lax")
        elif mode is SameSite.STRICT:
            parts.append("SameSite=Strict")
        elif mode is SameSite.NONE:
            parts.append("SameSite=None")
    return "; ".join(parts)


class ResponseWriter:
    """Collects the status, headers and body of a response.

    The status may change until the headers are written; once written,
    a snapshot of the headers is kept as what was sent.
    """

    def __init__(self) -> None:
        self.headers = Headers()
        self.status = DEFAULT_STATUS
        self.size = NOT_WRITTEN
        self.code: int | None = None
        self.sent_headers: Headers | None = None
        self.flushed = False
        self.client_gone = False
        self._body = bytearray()

    @property
    def written(self) -> bool:
        """Tell whether the headers have been written."""
        return self.size != NOT_WRITTEN

    @property
    def body(self) -> bytes:
        """The bytes written so far."""
        return bytes(self._body)

    def write_header(self, code: int) -> None:
        """Set the status code to send, unless the headers are already written."""
        if code <= 0 or code == self.status:
            return
        if self.written:
            debug_print(
                "[WARNING] Headers were already written. Wanted to override status code %d with %d",
                self.status,
                code,
            )
            return
        self.status = code

    def write_header_now(self) -> None:
        """Write the status and headers if they have not been written."""
        if self.written:
            return
        self.size = 0
        self.code = self.status
        self.sent_headers = self.headers.copy()

    def write(self, data: bytes) -> int:
        """Write bytes to the body, writing the headers first; return the count."""
        self.write_header_now()
        self._body.extend(data)
        self.size += len(data)
        return len(data)

    def write_string(self, s: str) -> int:
        """Write a string to the body as UTF-8; return the byte count."""
        return self.write(s.encode("utf-8"))

    def flush(self) -> None:
        """Send what has been written so far."""
        self.write_header_now()
        self.flushed = True

    def close(self) -> None:
        """Mark the client as gone."""
        self.client_gone = True