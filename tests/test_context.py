import dataclasses
import datetime

import pytest

from ginctx.context import (
    ABORT_INDEX,
    CONTEXT_KEY,
    CONTEXT_REQUEST_KEY,
    MIME_HTML,
    MIME_JSON,
    MIME_MULTIPART_POST_FORM,
    MIME_POST_FORM,
    MIME_XML,
    Context,
    Param,
    Params,
    body_allowed_for_status,
)
from ginctx.errors import Error, ErrorType
from ginctx.request import MissingFileError, Request
from ginctx.response import SameSite


def make(method="GET", url="/", body=None, headers=None, remote_addr=""):
    return Context(Request(method, url, body, headers, remote_addr))


def multipart_request():
    boundary = "testboundary"
    fields = [("foo", "bar"), ("bar", "10"), ("bar", "foo2"), ("array", "first"),
              ("array", "second"), ("id", ""), ("names[a]", "thinkerou"), ("names[b]", "tianou")]
    parts = "".join(
        f'--{boundary}\r\nContent-Disposition: form-data; name="{k}"\r\n\r\n{v}\r\n'
        for k, v in fields)
    parts += (f'--{boundary}\r\nContent-Disposition: form-data; name="file"; filename="test"\r\n'
              f"Content-Type: application/octet-stream\r\n\r\ntest\r\n--{boundary}--\r\n")
    return Request("POST", "/", parts.encode(),
                   {"Content-Type": f"{MIME_MULTIPART_POST_FORM}; boundary={boundary}"})


def test_params():
    params = Params([Param("id", "1")])
    assert params.by_name("id") == "1"
    assert params.get("x") == ("", False)


def test_set_get_and_must_get():
    c = Context()
    c.set("foo", "bar")
    assert c.get("foo") == ("bar", True)
    assert c.get("foo2") == (None, False)
    assert c.must_get("foo") == "bar"
    with pytest.raises(KeyError):
        c.must_get("no_exist")


def test_typed_getters():
    c = Context()
    t = datetime.datetime(2017, 1, 1, 12)
    c.set("s", "this is a string")
    c.set("b", True)
    c.set("i", 1)
    c.set("f", 4.2)
    c.set("t", t)
    c.set("d", datetime.timedelta(seconds=1))
    c.set("l", ["foo"])
    c.set("m", {"foo": 1})
    assert c.get_string("s") == "this is a string"
    assert c.get_bool("b") is True
    assert c.get_int("i") == 1
    assert c.get_int("b") == 0
    assert c.get_float("f") == pytest.approx(4.2)
    assert c.get_time("t") == t
    assert c.get_duration("d") == datetime.timedelta(seconds=1)
    assert c.get_string_list("l") == ["foo"]
    assert c.get_dict("m")["foo"] == 1
    assert c.get_string("i") == ""


def test_reset_and_copy():
    c = make("POST", "/hola")
    c.index = 2
    c.handlers = [lambda ctx: None]
    c.params = Params([Param("foo", "bar")])
    c.set("foo", "bar")
    c.full_path = "/hola"
    cp = c.copy()
    assert cp.handlers == []
    assert cp.index == ABORT_INDEX
    assert cp.keys == c.keys
    assert cp.params == c.params
    assert cp.request is c.request
    cp.set("foo", "notBar")
    assert c.keys["foo"] == "bar"
    assert cp.full_path == "/hola"
    c.error(ValueError("test"))
    c.reset()
    assert not c.is_aborted()
    assert c.keys is None
    assert c.errors.errors() == []
    assert c.index == -1


def handler_name_test(ctx):
    pass


def test_handler_names():
    c = Context()
    assert c.handler() is None
    c.handlers = [lambda ctx: None, None, handler_name_test]
    assert c.handler() is handler_name_test
    assert c.handler_name().endswith("handler_name_test")
    assert len(c.handler_names()) == 2


def test_next():
    c = Context()
    c.next()
    assert c.index == 0
    c.index = -1

    def first(ctx):
        ctx.set("key1", "value1")
        ctx.next()
        ctx.set("key2", "value2")

    c.handlers = [first, None, lambda ctx: ctx.set("key3", "value3")]
    c.next()
    assert c.index == 4
    assert c.get("key2") == ("value2", True)
    assert c.get("key3") == ("value3", True)


def test_abort():
    c = Context()
    assert not c.is_aborted()
    c.abort()
    c.next()
    assert c.is_aborted()
    c2 = Context()
    c2.abort_with_status(401)
    assert c2.writer.code == 401
    assert c2.index == ABORT_INDEX


def test_abort_with_status_json():
    @dataclasses.dataclass
    class Msg:
        foo: str
        bar: str

    c = Context()
    c.abort_with_status_json(415, Msg("fooValue", "barValue"))
    assert c.writer.code == 415
    assert c.is_aborted()
    assert c.writer.headers.get("Content-Type") == "application/json; charset=utf-8"
    assert c.writer.body == b'{"foo":"fooValue","bar":"barValue"}'


def test_errors():
    c = Context()
    first = ValueError("first error")
    c.error(first)
    assert str(c.errors) == "Error #01: first error\n"
    c.error(Error(ValueError("second error"), ErrorType.PUBLIC, "some data 2"))
    assert c.errors[0].err is first
    assert c.errors[0].type == ErrorType.PRIVATE
    assert c.errors[1].meta == "some data 2"
    assert c.errors.last() is c.errors[1]
    with pytest.raises(ValueError):
        c.error(None)
    c2 = Context()
    c2.abort_with_error(401, ValueError("bad input")).set_meta("some input")
    assert c2.writer.code == 401 and c2.is_aborted()
    assert c2.errors[0].meta == "some input"


def test_query():
    c = make(url="http://example.com/?foo=bar&page=10&id=")
    assert c.get_query("foo") == ("bar", True)
    assert c.default_query("page", "0") == "10"
    assert c.get_query("id") == ("", True)
    assert c.default_query("id", "nada") == ""
    assert c.get_query("NoKey") == ("", False)
    assert c.default_query("NoKey", "nada") == "nada"
    assert c.get_post_form("page") == ("", False)


def test_query_on_empty_request():
    c = Context()
    assert c.get_query("NoKey") == ("", False)
    assert c.default_query("NoKey", "nada") == "nada"


def test_query_and_post_form():
    c = make("POST", "/?both=GET&id=main&id=omit&array[]=first&array[]=second&ids[a]=hi&ids[b]=3.14",
             "foo=bar&page=11&both=&foo=second", {"Content-Type": MIME_POST_FORM})
    assert c.post_form("foo") == "bar"
    assert c.query("foo") == ""
    assert c.get_post_form("page") == ("11", True)
    assert c.get_post_form("both") == ("", True)
    assert c.default_post_form("both", "nothing") == ""
    assert c.query("both") == "GET"
    assert c.get_query("id") == ("main", True)
    assert c.default_post_form("id", "000") == "000"
    assert c.query_array("array[]") == ["first", "second"]
    assert c.query_array("nokey") == []
    assert c.get_query_map("ids") == ({"a": "hi", "b": "3.14"}, True)
    assert c.get_query_map("both") == ({}, False)
    assert c.get_query_map("array") == ({}, False)
    assert c.query_map("nokey") == {}


def test_post_form_multipart():
    c = Context(multipart_request())
    assert c.get_query("foo") == ("", False)
    assert c.get_post_form("foo") == ("bar", True)
    assert c.post_form("array") == "first"
    assert c.default_post_form("bar", "nothing") == "10"
    assert c.get_post_form("id") == ("", True)
    assert c.default_post_form("nokey", "nothing") == "nothing"
    assert c.post_form_array("array") == ["first", "second"]
    assert c.post_form_array("nokey") == []
    assert c.get_post_form_map("names") == ({"a": "thinkerou", "b": "tianou"}, True)
    assert c.post_form_map("nokey") == {}


def test_form_file_and_save(tmp_path):
    c = Context(multipart_request())
    f = c.form_file("file")
    assert f.filename == "test"
    dst = tmp_path / "sub" / "out"
    c.save_uploaded_file(f, str(dst), 0o755)
    assert dst.read_bytes() == b"test"
    assert (dst.parent.stat().st_mode & 0o777) == 0o755
    with pytest.raises(MissingFileError):
        c.form_file("nofile")


def test_form_file_not_multipart():
    c = make("POST", "/", b"", {"Content-Type": "text/plain"})
    with pytest.raises(ValueError):
        c.form_file("file")


def test_cookies():
    c = Context()
    c.set_same_site(SameSite.LAX)
    c.set_cookie("user", "gin", 1, "", "localhost", True, True)
    assert c.writer.headers.get("Set-Cookie") == (
        "user=gin; Path=/; Domain=localhost; Max-Age=1; HttpOnly; Secure; SameSite=Lax")
    r = make(headers={"Cookie": "user=gin"})
    assert r.cookie("user") == "gin"
    with pytest.raises(LookupError):
        r.cookie("nokey")


def test_body_allowed_for_status():
    assert not body_allowed_for_status(102)
    assert not body_allowed_for_status(204)
    assert not body_allowed_for_status(304)
    assert body_allowed_for_status(500)


def test_render_json_variants():
    c = Context()
    c.json(201, {"foo": "bar", "html": "<b>"})
    assert c.writer.code == 201
    assert c.writer.body == b'{"foo":"bar","html":"\\u003cb\\u003e"}'
    c = Context()
    c.json(204, {"foo": "bar"})
    assert c.writer.code == 204 and c.writer.body == b""
    assert c.writer.headers.get("Content-Type") == "application/json; charset=utf-8"
    c = Context()
    c.header("Content-Type", "application/vnd.api+json")
    c.json(201, {"foo": "bar"})
    assert c.writer.headers.get("Content-Type") == "application/vnd.api+json"
    c = Context()
    c.indented_json(201, {"foo": "bar", "bar": "foo", "nested": {"foo": "bar"}})
    assert c.writer.body == (b'{\n    "bar": "foo",\n    "foo": "bar",\n    "nested": '
                             b'{\n        "foo": "bar"\n    }\n}')
    c = Context()
    c.pure_json(201, {"foo": "bar", "html": "<b>"})
    assert c.writer.body == b'{"foo":"bar","html":"<b>"}\n'
    c = Context()
    c.ascii_json(204, ["lang", "Go语言"])
    assert c.writer.body == b"" and c.writer.headers.get("Content-Type") == "application/json"
    c = Context()
    c.ascii_json(200, ["Go语言"])
    assert c.writer.body == b'["Go\\u8bed\\u8a00"]'


def test_jsonp():
    c = make(url="http://example.com/?callback=x")
    c.jsonp(201, {"foo": "bar"})
    assert c.writer.body == b'x({"foo":"bar"});'
    assert c.writer.headers.get("Content-Type") == "application/javascript; charset=utf-8"
    c = make(url="http://example.com")
    c.jsonp(201, {"foo": "bar"})
    assert c.writer.body == b'{"foo":"bar"}'


def test_string_and_data():
    c = Context()
    c.string(201, "test %s %d", "string", 2)
    assert c.writer.body == b"test string 2"
    assert c.writer.headers.get("Content-Type") == "text/plain; charset=utf-8"
    c = Context()
    c.header("Content-Type", "text/html; charset=utf-8")
    c.string(204, "<html>%s %d</html>", "string", 3)
    assert c.writer.body == b""
    assert c.writer.headers.get("Content-Type") == "text/html; charset=utf-8"
    c = Context()
    c.data(201, "text/csv", b"foo,bar")
    assert c.writer.body == b"foo,bar"
    assert c.writer.headers.get("Content-Type") == "text/csv"


def test_headers():
    c = Context()
    c.header("X-Custom", "value")
    assert c.writer.headers.get("X-Custom") == "value"
    c.header("X-Custom", "")
    assert "X-Custom" not in c.writer.headers


def test_redirect():
    c = make("POST", "http://example.com")
    for code in (200, 202, 299, 309):
        with pytest.raises(ValueError):
            c.redirect(code, "/resource")
    c.redirect(301, "/path")
    c.writer.write_header_now()
    assert c.writer.code == 301
    assert c.writer.headers.get("Location") == "/path"
    c = make("POST", "http://example.com")
    c.redirect(201, "/resource")
    c.writer.write_header_now()
    assert c.writer.code == 201


def test_file_attachment(tmp_path):
    path = tmp_path / "f.txt"
    path.write_text("hello")
    c = make()
    c.file_attachment(str(path), 'tampering_field.sh"; \\"; dummy=.go')
    assert c.writer.body == b"hello"
    assert c.writer.headers.get("Content-Disposition") == (
        'attachment; filename="tampering_field.sh\\"; \\\\\\"; dummy=.go"')
    c = make()
    c.file_attachment(str(path), "new🧡_filename.go")
    assert c.writer.headers.get("Content-Disposition") == (
        "attachment; filename*=UTF-8''new%F0%9F%A7%A1_filename.go")


def test_stream():
    c = Context()
    calls = []

    def step(w):
        w.write(b"test")
        calls.append(1)
        return len(calls) < 2

    assert c.stream(step) is False
    assert c.writer.body == b"testtest"
    c2 = Context()

    def gone(w):
        w.write(b"test")
        w.close()
        return True

    assert c2.stream(gone) is True
    assert c2.writer.body == b"test"


def test_negotiate_format():
    c = make("POST")
    with pytest.raises(ValueError):
        c.negotiate_format()
    assert c.negotiate_format(MIME_JSON, MIME_XML) == MIME_JSON
    c = make("POST", headers={"Accept": "text/html,application/xhtml+xml,application/xml;q=0.9;q=0.8"})
    assert c.negotiate_format(MIME_JSON, MIME_XML) == MIME_XML
    assert c.negotiate_format(MIME_XML, MIME_HTML) == MIME_HTML
    assert c.negotiate_format(MIME_JSON) == ""
    c.set_accepted(MIME_JSON, MIME_XML)
    assert c.negotiate_format(MIME_JSON) == MIME_JSON
    c = make(headers={"Accept": "text/*"})
    assert c.negotiate_format("*/*") == "*/*"
    assert c.negotiate_format("application/*") == ""
    assert c.negotiate_format(MIME_HTML) == MIME_HTML
    c = make(headers={"Accept": "image/tiff-fx"})
    assert c.negotiate_format("image/tiff") == ""


def test_request_info():
    c = make(headers={"Content-Type": "application/json; charset=utf-8", "Gin-Version": "1.0.0"},
             remote_addr="  40.40.40.40:42123 ")
    assert c.content_type() == "application/json"
    assert c.get_header("Gin-Version") == "1.0.0"
    assert c.remote_ip() == "40.40.40.40"
    assert make(remote_addr="[::1]:80").remote_ip() == "::1"
    assert make(remote_addr="50.50.50.50").remote_ip() == ""


def test_websocket():
    assert make(headers={"Upgrade": "websocket", "Connection": "Upgrade"}).is_websocket()
    assert not make(headers={"Host": "server.example.com"}).is_websocket()


def test_raw_data():
    assert make("POST", "/", b"Fetch binary post data").get_raw_data() == b"Fetch binary post data"
    with pytest.raises(ValueError):
        make().get_raw_data()


def test_value_and_add_param():
    c = make("POST")
    assert c.value(CONTEXT_REQUEST_KEY) is c.request
    assert c.value(CONTEXT_KEY) is c
    assert c.value("foo") is None
    c.set("foo", "bar")
    assert c.value("foo") == "bar"
    assert c.value(1) is None
    c.add_param("id", "1")
    assert c.params.get("id") == ("1", True)
    assert c.param("id") == "1"