import io
import sys
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from httpdump.config import Config
from httpdump.handler import (
    BODY_CONTENT_TYPE,
    CORS_HEADERS,
    STATUS_RESPONSES,
    DumpHandler,
    format_headers,
    format_params,
)
from httpdump.models import Request


class _BrokenBody:
    def read(self):
        raise ConnectionError("connection reset by peer")


def make_request(method="GET", target="/foo/bar?x=1", body=None, headers=None):
    path, _, query = target.partition("?")
    params = dict(p.split("=", 1) for p in query.split("&")) if query else {}
    return Request(
        method=method,
        target=target,
        path=path,
        version="HTTP/1.1",
        remote_addr="10.0.0.1:54321",
        headers=headers if headers is not None else {"Host": ["example.com"], "Accept": ["*/*"]},
        params=params,
        body=body,
    )


class FormatTests(unittest.TestCase):
    def test_params_joined_without_stray_separators(self):
        out = format_params({"a": "1", "b": "two", "c": ""})
        self.assertEqual(out, "a=1&b=two&c=")
        self.assertFalse(out.startswith("&"))
        self.assertFalse(out.endswith("&"))

    def test_single_param(self):
        self.assertEqual(format_params({"x": "1"}), "x=1")

    def test_empty_params(self):
        self.assertEqual(format_params({}), "")

    def test_headers_block(self):
        out = format_headers({"Accept": ["text/html", "application/json"], "X-Id": ["7"]})
        self.assertEqual(out, "Accept: [text/html application/json]\nX-Id: [7]\n")


class DumpHandlerTests(unittest.TestCase):
    def setUp(self):
        self.out = io.StringIO()

    def handler(self, **kwargs):
        return DumpHandler(Config(**kwargs), out=self.out)

    def test_get_returns_canned_body(self):
        resp = self.handler(response=b"hello").handle_get(make_request())
        self.assertEqual(resp.status, 200)
        self.assertEqual(resp.body, b"hello")

    def test_get_dumps_request_line_and_headers(self):
        self.handler().handle_get(make_request())
        lines = self.out.getvalue().split("\n")
        self.assertEqual(lines[0], "10.0.0.1:54321 - /foo/bar?x=1?x=1")
        self.assertEqual(lines[1], "Host: [example.com]")
        self.assertEqual(lines[2], "Accept: [*/*]")

    def test_get_without_query_has_no_question_mark(self):
        self.handler().handle_get(make_request(target="/plain"))
        self.assertTrue(self.out.getvalue().startswith("10.0.0.1:54321 - /plain\n"))

    def test_get_does_not_read_body(self):
        body = io.BytesIO(b"unread")
        self.handler().handle_get(make_request(body=body))
        self.assertEqual(body.tell(), 0)
        self.assertNotIn("unread", self.out.getvalue())

    def test_body_is_dumped_and_content_type_forced(self):
        resp = self.handler(response=b"plain text").handle_body(
            make_request(method="POST", target="/any", body=io.BytesIO(b'{"a":1}'))
        )
        self.assertEqual(resp.status, 200)
        self.assertEqual(resp.headers["Content-Type"], BODY_CONTENT_TYPE)
        self.assertEqual(resp.body, b"plain text")
        self.assertTrue(self.out.getvalue().endswith('{"a":1}\n'))

    def test_body_read_error_is_logged_and_treated_as_empty(self):
        with self.assertLogs("httpdump.handler", level="ERROR") as logs:
            resp = self.handler(response=b"ok").handle_body(
                make_request(method="PUT", target="/x", body=_BrokenBody())
            )
        self.assertEqual(resp.status, 200)
        self.assertEqual(resp.body, b"ok")
        self.assertIn("Error reading body", logs.output[0])
        self.assertTrue(self.out.getvalue().endswith("\n\n\n"))

    def test_missing_body_is_empty(self):
        resp = self.handler().handle_body(make_request(method="DELETE", target="/x"))
        self.assertEqual(resp.status, 200)

    def test_cors_headers_and_no_output(self):
        resp = self.handler(response=b"ignored", response_code=500).handle_cors(make_request(method="OPTIONS"))
        self.assertEqual(resp.status, 200)
        self.assertEqual(resp.headers, CORS_HEADERS)
        self.assertEqual(resp.body, b"")
        self.assertEqual(self.out.getvalue(), "")

    def test_cors_headers_exact(self):
        self.assertEqual(
            CORS_HEADERS,
            {
                "Access-Control-Allow-Origin": "*",
                "Access-Control-Allow-Methods": "POST, GET, PUT, DELETE, OPTIONS",
                "Access-Control-Max-Age": "86400",
                "Access-Control-Allow-Credentials": "true",
                "Access-Control-Allow-Headers": "*",
            },
        )

    def test_routes(self):
        handler = self.handler()
        routes = handler.routes()
        self.assertEqual(routes["GET"], handler.handle_get)
        self.assertEqual(routes["HEAD"], handler.handle_get)
        for method in ("POST", "PUT", "DELETE"):
            self.assertEqual(routes[method], handler.handle_body)
        self.assertEqual(routes["OPTIONS"], handler.handle_cors)
        self.assertEqual(routes["*"], handler.handle_get)


class StatusDispatchTests(unittest.TestCase):
    def respond(self, method="GET", **kwargs):
        handler = DumpHandler(Config(**kwargs), out=io.StringIO())
        if method == "GET":
            return handler.handle_get(make_request())
        return handler.handle_body(make_request(method=method, body=io.BytesIO(b"x")))

    def test_dispatch_table_covers_special_codes(self):
        self.assertEqual(sorted(STATUS_RESPONSES), [301, 302, 304, 401, 403, 404])

    def test_redirects(self):
        for code in (301, 302):
            with self.subTest(code=code):
                resp = self.respond(response=b"canned", response_code=code, redirect="https://example.org/next")
                self.assertEqual(resp.status, code)
                self.assertEqual(resp.headers["Location"], "https://example.org/next")
                self.assertNotEqual(resp.body, b"canned")

    def test_bodiless_codes(self):
        for code in (304, 401, 403):
            with self.subTest(code=code):
                resp = self.respond(response=b"canned", response_code=code)
                self.assertEqual(resp.status, code)
                self.assertEqual(resp.body, b"")

    def test_not_found_returns_canned_body(self):
        resp = self.respond(response=b"\x00nope\xff", response_code=404)
        self.assertEqual(resp.status, 404)
        self.assertEqual(resp.body, b"\x00nope\xff")

    def test_not_found_with_empty_body(self):
        resp = self.respond(response=b"", response_code=404)
        self.assertEqual(resp.status, 404)
        self.assertEqual(resp.body, b"")

    def test_other_codes_abort_with_canned_body(self):
        for code in (201, 418, 500, 503, 599):
            with self.subTest(code=code):
                resp = self.respond(response=b"canned", response_code=code)
                self.assertEqual(resp.status, code)
                self.assertEqual(resp.body, b"canned")

    def test_body_verbs_keep_json_content_type_on_dispatch(self):
        resp = self.respond(method="POST", response=b"gone", response_code=404)
        self.assertEqual(resp.status, 404)
        self.assertEqual(resp.headers["Content-Type"], BODY_CONTENT_TYPE)


if __name__ == "__main__":
    unittest.main()
