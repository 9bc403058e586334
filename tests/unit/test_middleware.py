"""
Unit tests for the built-in middleware.
"""

import json
import logging

import pytest

from httpkit.http.context import LOCALE_KEY
from httpkit.http.request import Request
from httpkit.http.response import encode
from httpkit.http.router import Router
from httpkit.http.writer import ResponseWriter
from httpkit.middleware import (
    AuthConfig,
    AuthenticationMiddleware,
    Chain,
    CORSConfig,
    CORSMiddleware,
    Locale,
    LocaleMiddleware,
    LoggingMiddleware,
    ProxyHeadersMiddleware,
    RecoveryMiddleware,
    StaticTokenProvider,
    locale_from_context,
    locale_from_request,
)
from httpkit.middleware.authentication import bearer_token
from httpkit.middleware.logging import request_id_from_request
from httpkit.middleware.locale import LocaleMatcher, likely_region, parse_accept_language, split_tag
from httpkit.middleware.proxy import parse_forwarded


def make_request(method: str = "GET", path: str = "/", headers=None, **kwargs) -> Request:
    return Request.from_target(method, path, headers=headers or {}, **kwargs)


def ok_handler(w: ResponseWriter, r: Request) -> None:
    encode(w, r, 200, {"ok": True})


def run(middleware, r: Request, handler=ok_handler) -> ResponseWriter:
    w = ResponseWriter()
    Chain(middleware).then(handler)(w, r)
    return w


# =============================================================================
# RECOVERY
# =============================================================================

class TestRecoveryMiddleware:

    def test_exception_becomes_500(self, caplog):
        def boom(w, r):
            raise RuntimeError("boom")

        w = run(RecoveryMiddleware(), make_request(path="/boom"), boom)

        assert w.status == 500
        assert json.loads(w.body) == {"error": {"code": 500, "message": "Internal Server Error"}}
        assert "panic recovered while serving GET /boom" in caplog.text

    def test_partial_response_discarded(self):
        def half(w, r):
            w.set_header("X-Request-ID", "abc")
            w.write_header(201)
            w.write(b'{"half":')
            raise ValueError("failed midway")

        w = run(RecoveryMiddleware(), make_request(), half)

        assert w.status == 500
        assert json.loads(w.body)["error"]["code"] == 500
        assert w.get_header("X-Request-ID") == "abc"

    def test_after_flush_nothing_more_is_written(self):
        def streaming(w, r):
            w.write(b"chunk")
            w.flush()
            raise RuntimeError("late")

        w = run(RecoveryMiddleware(), make_request(), streaming)

        assert w.status == 200
        assert w.body == b"chunk"

    def test_passthrough(self):
        w = run(RecoveryMiddleware(), make_request())

        assert w.status == 200


# =============================================================================
# CORS
# =============================================================================

class TestCORSMiddleware:

    def test_simple_request_all_origins(self):
        r = make_request(headers={"Origin": "https://app.example.com"})

        w = run(CORSMiddleware(), r)

        assert w.status == 200
        assert w.get_header("Access-Control-Allow-Origin") == "*"
        assert w.headers.get_all("Vary") == ["Origin"]

    def test_preflight(self):
        r = make_request("OPTIONS", "/users", headers={
            "Origin": "https://app.example.com",
            "Access-Control-Request-Method": "PUT",
            "Access-Control-Request-Headers": "Content-Type",
        })
        reached = []

        w = run(CORSMiddleware(), r, lambda w, r: reached.append(True))

        assert reached == []
        assert w.status == 204
        assert "PUT" in w.get_header("Access-Control-Allow-Methods")
        assert "Content-Type" in w.get_header("Access-Control-Allow-Headers")
        assert w.get_header("Access-Control-Max-Age") == "86400"

    def test_preflight_disallowed_origin(self):
        config = CORSConfig(allow_origins=["https://good.example.com"])
        r = make_request("OPTIONS", "/", headers={
            "Origin": "https://evil.example.com",
            "Access-Control-Request-Method": "DELETE",
        })

        w = run(CORSMiddleware(config), r)

        assert w.status == 204
        assert w.get_header("Access-Control-Allow-Origin") == ""
        assert w.get_header("Access-Control-Allow-Methods") == ""

    def test_plain_options_reaches_handler(self):
        """OPTIONS without Access-Control-Request-Method is not a preflight."""
        w = run(CORSMiddleware(), make_request("OPTIONS", "/", headers={"Origin": "https://a.com"}))

        assert w.status == 200

    def test_specific_origin_with_credentials(self):
        config = CORSConfig(
            allow_origins=["https://app.example.com"],
            allow_credentials=True,
            expose_headers=["X-Request-ID"],
        )
        r = make_request(headers={"Origin": "https://app.example.com"})

        w = run(CORSMiddleware(config), r)

        assert w.get_header("Access-Control-Allow-Origin") == "https://app.example.com"
        assert w.get_header("Access-Control-Allow-Credentials") == "true"
        assert w.get_header("Access-Control-Expose-Headers") == "X-Request-ID"

    def test_wildcard_with_credentials_echoes_origin(self):
        config = CORSConfig(allow_credentials=True)
        r = make_request(headers={"Origin": "https://app.example.com"})

        w = run(CORSMiddleware(config), r)

        assert w.get_header("Access-Control-Allow-Origin") == "https://app.example.com"

    def test_preflight_for_path_without_options_route(self):
        router = Router()
        router.register_route("PUT", "/users/:id", ok_handler)
        router.enable_cors()

        w = ResponseWriter()
        router.serve_http(w, make_request("OPTIONS", "/users/1", headers={
            "Origin": "https://app.example.com",
            "Access-Control-Request-Method": "PUT",
        }))

        assert w.status == 204

    def test_is_origin_allowed(self):
        middleware = CORSMiddleware(CORSConfig(allow_origins=["https://a.com"]))

        assert middleware.is_origin_allowed("https://a.com")
        assert not middleware.is_origin_allowed("https://b.com")


# =============================================================================
# PROXY HEADERS
# =============================================================================

class TestProxyHeadersMiddleware:

    def _seen(self, headers):
        seen = {}

        def capture(w, r):
            seen.update(addr=r.remote_addr, scheme=r.scheme, host=r.host, ip=r.client_ip)

        run(ProxyHeadersMiddleware(), make_request(headers=headers, remote_addr="10.0.0.2:4000"), capture)
        return seen

    def test_x_forwarded_for_left_most(self):
        seen = self._seen({"X-Forwarded-For": "203.0.113.7, 10.0.0.1", "X-Real-IP": "198.51.100.1"})

        assert seen["addr"] == "203.0.113.7"

    def test_x_real_ip(self):
        assert self._seen({"X-Real-IP": "198.51.100.1"})["addr"] == "198.51.100.1"

    def test_forwarded(self):
        seen = self._seen({"Forwarded": 'for="[2001:db8::1]:4711";proto=https;host=api.example.com'})

        assert seen["addr"] == "[2001:db8::1]:4711"
        assert seen["ip"] == "2001:db8::1"
        assert seen["scheme"] == "https"
        assert seen["host"] == "api.example.com"

    def test_forwarded_obfuscated_ignored(self):
        assert self._seen({"Forwarded": "for=_hidden"})["addr"] == "10.0.0.2:4000"
        assert self._seen({"Forwarded": "for=unknown"})["addr"] == "10.0.0.2:4000"

    def test_forwarded_proto_and_host(self):
        seen = self._seen({"X-Forwarded-Proto": "https", "X-Forwarded-Host": "example.com"})

        assert seen["scheme"] == "https"
        assert seen["host"] == "example.com"

    def test_unknown_scheme_ignored(self):
        assert self._seen({"X-Forwarded-Proto": "gopher"})["scheme"] == "http"

    def test_no_headers(self):
        assert self._seen({})["addr"] == "10.0.0.2:4000"

    def test_parse_forwarded_first_element(self):
        assert parse_forwarded("for=192.0.2.60;proto=http, for=10.0.0.1") == {
            "for": "192.0.2.60",
            "proto": "http",
        }


# =============================================================================
# LOCALE
# =============================================================================

class TestLocaleNegotiation:

    def test_split_tag(self):
        assert split_tag("en-us") == ("en", "US")
        assert split_tag("zh_Hant_TW") == ("zh", "TW")
        assert split_tag("es-419") == ("es", "419")
        assert split_tag("fr") == ("fr", "")

    def test_parse_accept_language(self):
        header = "fr;q=0.5, en-GB, de;q=0, es;q=0.5"

        assert parse_accept_language(header) == ["en-GB", "fr", "es"]

    @pytest.mark.parametrize("header,expected", [
        ("es-MX,es;q=0.9,en;q=0.5", Locale("es", "ES")),
        ("de-DE", Locale("fr", "FR")),
        ("", Locale("fr", "FR")),
        ("*", Locale("fr", "FR")),
        ("en", Locale("en", "US")),
    ])
    def test_match(self, header, expected):
        matcher = LocaleMatcher(["fr", "en", "es"])

        assert matcher.match(parse_accept_language(header)) == expected

    def test_region_comes_from_supported_language(self):
        matcher = LocaleMatcher(["fr", "en"])

        assert matcher.match(["en-FR"]) == Locale("en", "US")

    def test_supported_region_kept(self):
        matcher = LocaleMatcher(["en-US", "en-GB"])

        assert matcher.match(["en-GB"]) == Locale("en", "GB")
        assert matcher.match(["en-AU"]) == Locale("en", "US")

    @pytest.mark.parametrize("tag,region", [
        ("en", "US"),
        ("ca", "ES"),
        ("sw", "TZ"),
        ("zh-Hant", "TW"),
        ("en-GB", "GB"),
    ])
    def test_likely_region(self, tag, region):
        assert likely_region(tag) == region

    def test_region_for_less_common_language(self):
        matcher = LocaleMatcher(["ca"])

        assert matcher.match(parse_accept_language("ca")) == Locale("ca", "ES")

    def test_malformed_requested_tag_skipped(self):
        matcher = LocaleMatcher(["fr", "en"])

        assert matcher.match(["12", "en"]) == Locale("en", "US")

    def test_requires_supported(self):
        with pytest.raises(ValueError):
            LocaleMatcher([])

    def test_malformed_supported_tag(self):
        with pytest.raises(ValueError):
            LocaleMatcher(["en", "12"])

    def test_locale_str(self):
        assert str(Locale("en", "US")) == "en-US"
        assert str(Locale("xx", "")) == "xx"


class TestLocaleMiddleware:

    def test_stores_locale(self):
        seen = []
        r = make_request(headers={"Accept-Language": "fr-CA,fr;q=0.8"})

        w = run(LocaleMiddleware(["en", "fr"]), r, lambda w, r: seen.append(locale_from_request(r)))

        assert seen == [Locale("fr", "FR")]
        assert r.context.get(LOCALE_KEY) == Locale("fr", "FR")
        assert "Accept-Language" in w.headers.get_all("Vary")

    def test_default_locale(self):
        assert locale_from_context(None) == Locale("en", "US")
        assert locale_from_request(make_request()) == Locale("en", "US")


# =============================================================================
# AUTHENTICATION
# =============================================================================

class TestAuthenticationMiddleware:

    def _middleware(self):
        return AuthenticationMiddleware(
            AuthConfig(realm="api"),
            StaticTokenProvider(["secret-token", "other-token"]),
        )

    def test_valid_token(self):
        r = make_request(path="/users", headers={"Authorization": "Bearer secret-token"})

        w = run(self._middleware(), r)

        assert w.status == 200

    def test_missing_token(self, caplog):
        w = run(self._middleware(), make_request(path="/users"))

        assert w.status == 401
        assert json.loads(w.body) == {"error": {"code": 401, "message": "Unauthorized"}}
        assert w.get_header("WWW-Authenticate") == 'Bearer realm="api"'
        assert "Access token invalid or expired" in caplog.text

    def test_wrong_token(self):
        r = make_request(path="/users", headers={"Authorization": "Bearer nope"})

        assert run(self._middleware(), r).status == 401

    def test_public_paths(self):
        assert run(self._middleware(), make_request(path="/health")).status == 200
        assert run(self._middleware(), make_request(path="/metrics")).status == 200

    def test_bearer_token(self):
        assert bearer_token(make_request(headers={"Authorization": "bearer abc "})) == "abc"
        assert bearer_token(make_request(headers={"Authorization": "Basic dXNlcg=="})) == ""
        assert bearer_token(make_request()) == ""


# =============================================================================
# ACCESS LOG
# =============================================================================

class TestLoggingMiddleware:

    def test_text_log_line(self, caplog):
        caplog.set_level(logging.INFO, logger="httpkit.access")
        r = make_request(path="/users", remote_addr="10.0.0.1:5000")

        w = run(LoggingMiddleware(), r)

        record = next(rec for rec in caplog.records if rec.name == "httpkit.access")
        assert record.getMessage().startswith("10.0.0.1 - - [")
        assert '"GET /users" 200' in record.getMessage()
        assert len(w.get_header("X-Request-ID")) == 8

    def test_json_log(self, caplog):
        caplog.set_level(logging.INFO, logger="httpkit.access")
        router = Router()
        router.use(LoggingMiddleware(log_format="json"))
        router.register_route("GET", "/users/:id", ok_handler)

        router.serve_http(ResponseWriter(), make_request(path="/users/7", headers={"X-Request-ID": "req-1"}))

        record = next(rec for rec in caplog.records if rec.name == "httpkit.access")
        entry = json.loads(record.getMessage())
        assert entry["request_id"] == "req-1"
        assert entry["route"] == "/users/:id"
        assert entry["path"] == "/users/7"
        assert entry["status_code"] == 200

    def test_incoming_request_id_echoed(self):
        w = run(LoggingMiddleware(), make_request(headers={"X-Request-ID": "abc-123"}))

        assert w.get_header("X-Request-ID") == "abc-123"

    def test_request_id_visible_to_handler(self):
        seen = []

        def handler(w, r):
            seen.append(request_id_from_request(r))
            ok_handler(w, r)

        run(LoggingMiddleware(), make_request(headers={"X-Request-ID": "abc-123"}), handler)

        assert seen == ["abc-123"]
        assert request_id_from_request(make_request()) == ""

    def test_skip_paths(self, caplog):
        caplog.set_level(logging.INFO, logger="httpkit.access")

        run(LoggingMiddleware(skip_paths=["/health"]), make_request(path="/health"))

        assert not [rec for rec in caplog.records if rec.name == "httpkit.access"]

    def test_error_logged_and_reraised(self, caplog):
        def boom(w, r):
            raise RuntimeError("kaput")

        with pytest.raises(RuntimeError):
            run(LoggingMiddleware(), make_request(path="/boom"), boom)

        assert "Request failed: GET /boom - RuntimeError: kaput" in caplog.text

    def test_invalid_format(self):
        with pytest.raises(ValueError):
            LoggingMiddleware(log_format="xml")
