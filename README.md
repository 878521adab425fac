# ginctx

`ginctx` gives an HTTP handler chain one object per request: the
`Context`. Middleware and handlers share it to pass values along, read
path parameters, query strings, forms, cookies and uploaded files,
collect errors, negotiate a response format and write the response.

It has no dependencies outside the standard library.

## Modules

- `ginctx.context`: `Context`, `Param`, `Params`,
  `body_allowed_for_status`, the `MIME_*` constants and the keys
  `CONTEXT_KEY`, `CONTEXT_REQUEST_KEY` and `BODY_BYTES_KEY`.
- `ginctx.request`: `Request`, `Headers`, `UploadedFile`,
  `MultipartForm`, and the errors `NotMultipartError`,
  `NoCookieError` and `MissingFileError`.
- `ginctx.response`: `ResponseWriter`, `SameSite` and `format_cookie`.
- `ginctx.errors`: `Error`, `ErrorType` and `ErrorMsgs`, the error list
  that a context collects.
- `ginctx.debug`: the debug-mode switch and the `[GIN-debug]` printers.

## A request from start to finish

```python
from ginctx.context import Context
from ginctx.request import Request
from ginctx.response import ResponseWriter

request = Request(
    "GET",
    "/users?id=42&fields[name]=1",
    b"",
    {"Accept": "application/json"},
    "10.0.0.7:51234",
)
writer = ResponseWriter()
ctx = Context(request, writer, 32 << 20)

ctx.query("id")                   # "42"
ctx.default_query("page", "1")    # "1"
ctx.query_map("fields")           # {"name": "1"}
ctx.remote_ip()                   # "10.0.0.7"

ctx.set("user", "gopher")
ctx.get_string("user")            # "gopher"

fmt = ctx.negotiate_format("application/json", "application/xml")
ctx.json(200, {"id": ctx.query("id"), "format": fmt})

writer.status                     # 200
writer.headers.get("Content-Type")  # "application/json; charset=utf-8"
writer.body                       # b'{"format":"application/json","id":"42"}'
```

The `ResponseWriter` collects the response in memory: `status`,
`headers`, `body`, and, once the head is written, `code` and a snapshot
of the headers in `sent_headers`.

## Handler chains

A context runs the callables in its `handlers` list in order. A
middleware calls `next()` to run the rest of the chain inside itself,
and `abort()`, `abort_with_status(code)`,
`abort_with_status_json(code, obj)` or `abort_with_error(code, err)` to
stop the handlers still waiting. `is_aborted()` says whether that has
happened. `handler()`, `handler_name()` and `handler_names()` describe
the chain, `reset()` clears the per-request state, and `copy()` gives a
detached context, with its own values, parameters and writer, that is
safe to keep after the request is over.

## Values shared between handlers

`set(key, value)` stores a value for the rest of the request;
`get(key)` returns `(value, exists)`, and `must_get(key)` raises
`KeyError` when the key is missing. The typed getters return a default
when the key is missing or holds a value of another type:

| getter            | default               |
|-------------------|-----------------------|
| `get_string`      | `""`                  |
| `get_bool`        | `False`               |
| `get_int`         | `0` (a bool is not taken as an int) |
| `get_float`       | `0.0`                 |
| `get_time`        | `None`                |
| `get_duration`    | `timedelta(0)`        |
| `get_string_list` | `[]` (also when an item is not a string) |
| `get_dict`        | `{}`                  |

`value(key)` returns the request for `CONTEXT_REQUEST_KEY`, the context
itself for `CONTEXT_KEY`, a stored value for any other string key, and
`None` otherwise.

## Input

- Path parameters: `param(key)`, `add_param(key, value)`; the `params`
  attribute is a `Params` list with `by_name` and `get`.
- Query string: `query`, `default_query`, `get_query`, `query_array`,
  `get_query_array`, `query_map`, `get_query_map`.
- Forms (urlencoded or multipart bodies of POST, PUT and PATCH):
  `post_form`, `default_post_form`, `get_post_form`, `post_form_array`,
  `get_post_form_array`, `post_form_map`, `get_post_form_map`.
- Uploads: `form_file(name)` (raises `MissingFileError` when absent),
  `multipart_form()` (raises `NotMultipartError` for other bodies), and
  `save_uploaded_file(file, dst, perm)`, which creates the target
  directory with `perm` (0o750 by default).
- Headers and body: `get_header`, `content_type`, `is_websocket`,
  `get_raw_data`, `cookie(name)` (raises `NoCookieError` when absent).

The `get_*` forms return a pair: the value and whether it was present.
Keys such as `ids[a]=hi&ids[b]=3.14` are read as maps:
`query_map("ids")` gives `{"a": "hi", "b": "3.14"}`.

## Output

`status`, `header` (an empty value deletes the header),
`set_same_site` and `set_cookie` shape the response head. The body is
written with:

- `json`: compact JSON with `<`, `>` and `&` escaped;
- `indented_json`: JSON indented by four spaces;
- `pure_json`: compact JSON without HTML escaping, ending in a newline;
- `ascii_json`: JSON with non-ASCII characters escaped;
- `jsonp`: wraps the JSON in the `callback` query value, or falls back
  to `json` when there is none;
- `string(code, format, *args)`: `%`-formatted text;
- `data(code, content_type, data)`: raw bytes;
- `redirect(code, location)`: only 201 and 300–308 are accepted,
  anything else raises `ValueError`;
- `file_attachment(path, filename)`: the file as a download, or a 404
  text when it cannot be read;
- `stream(step)`: calls `step(writer)` until it returns `False`, and
  returns `True` if the writer was closed first.

For status codes that allow no body (1xx, 204 and 304) only the content
type and status are set; `body_allowed_for_status(code)` makes that
decision. A failure while producing the body is attached to
`ctx.errors` and aborts the chain instead of being raised.

`negotiate_format(*offers)` returns the first offer that the request's
`Accept` header (or `set_accepted(...)`) allows, the first offer when
nothing was sent, or `""` when none matches.

## Errors

`ctx.error(err)` adds an error to the context's `ErrorMsgs` and returns
an `Error` (passing `None` raises `ValueError`). Its `set_type` and
`set_meta` can be chained. The list can be filtered with
`by_type(ErrorType...)`, turned into strings with `errors()`, into
JSON-ready data with `to_json()` and into encoded JSON with
`marshal_json()`. Printed, it reads:

```
Error #01: first
Error #02: second
     Meta: some data
```

## Debug output

Debug mode is on unless the `GIN_MODE` environment variable is set to
something other than `debug`. `ginctx.debug.set_debug_mode(enabled)`
switches it, `is_debugging()` reports it, `set_output(writer,
error_writer)` sends the messages to other streams, and
`set_printer(func)` and `set_route_printer(func)` replace how they are
formatted.

## What it does not do

`ginctx` is the per-request part only. It has no router or route
groups, no server and no command to start one. It does not bind
request bodies to objects, render HTML templates, XML, YAML, TOML or
protocol buffers, serve files from a file system by URL path, or work
out a client address from proxy headers; `remote_ip()` returns the
address the request came from.