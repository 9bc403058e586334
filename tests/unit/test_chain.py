"""
Unit tests for the middleware chain.
"""

import json

import pytest

from httpkit.http.request import Request
from httpkit.http.response import encode
from httpkit.http.writer import ResponseWriter
from httpkit.middleware.base import Chain, FunctionMiddleware, Middleware, as_handler, function_middleware


def make_request(method: str = "GET", path: str = "/") -> Request:
    return Request.from_target(method, path)


def recording(tag, calls):
    """Wrapper that records when it runs."""
    def wrapper(next_handler):
        def handler(w, r):
            calls.append(tag)
            next_handler(w, r)
        return handler
    wrapper.__name__ = tag
    return wrapper


class TestChain:
    """Tests for Chain composition."""

    def test_composition_order(self):
        """The first wrapper is the outermost."""
        calls = []
        chain = Chain(recording("a", calls), recording("b", calls), recording("c", calls))

        handler = chain.then(lambda w, r: calls.append("app"))
        handler(ResponseWriter(), make_request())

        assert calls == ["a", "b", "c", "app"]

    def test_empty_chain_returns_handler(self):
        def app(w, r):
            pass

        assert Chain().then(app) is app

    def test_then_none_answers_404(self):
        w = ResponseWriter()
        Chain().then(None)(w, make_request("GET", "/anything"))

        assert w.status == 404

    def test_then_func_none(self):
        w = ResponseWriter()
        Chain().then_func(None)(w, make_request())

        assert w.status == 404

    def test_append_does_not_mutate(self):
        """Handlers composed from a chain keep its wrappers."""
        calls = []
        base = Chain(recording("base", calls))
        h1 = base.then(lambda w, r: None)

        extended = base.append(recording("extra", calls))
        h2 = extended.then(lambda w, r: None)

        h1(ResponseWriter(), make_request())
        assert calls == ["base"]

        calls.clear()
        h2(ResponseWriter(), make_request())
        assert calls == ["base", "extra"]

        assert len(base) == 1
        assert len(extended) == 2

    def test_extend(self):
        calls = []
        first = Chain(recording("a", calls))
        second = Chain(recording("b", calls), recording("c", calls))

        first.extend(second).then(lambda w, r: None)(ResponseWriter(), make_request())

        assert calls == ["a", "b", "c"]

    def test_composition_runs_wrappers_once(self):
        built = []

        def wrapper(next_handler):
            built.append(1)
            return next_handler

        handler = Chain(wrapper).then(lambda w, r: None)
        handler(ResponseWriter(), make_request())
        handler(ResponseWriter(), make_request())

        assert built == [1]

    def test_repr(self):
        calls = []
        chain = Chain(recording("logging", calls), recording("auth", calls))

        assert repr(chain) == "Chain(logging, auth)"


class TestMiddlewareClass:

    def test_process_called(self):
        class Stamp(Middleware):
            def process(self, w, r, next_handler):
                w.set_header("X-Stamp", "1")
                next_handler(w, r)

        w = ResponseWriter()
        handler = Chain(Stamp()).then(lambda w, r: encode(w, r, 200, {}))
        handler(w, make_request())

        assert w.get_header("X-Stamp") == "1"
        assert w.status == 200

    def test_short_circuit(self):
        class Deny(Middleware):
            def process(self, w, r, next_handler):
                encode(w, r, 403, {"denied": True})

        reached = []
        w = ResponseWriter()
        Chain(Deny()).then(lambda w, r: reached.append(True))(w, make_request())

        assert reached == []
        assert w.status == 403
        assert json.loads(w.body) == {"denied": True}

    def test_abstract(self):
        with pytest.raises(TypeError):
            Middleware()

    def test_function_middleware_decorator(self):
        @function_middleware
        def add_header(w, r, next_handler):
            w.set_header("X-Custom", "value")
            next_handler(w, r)

        assert isinstance(add_header, FunctionMiddleware)
        assert add_header.name == "add_header"

        w = ResponseWriter()
        Chain(add_header).then(lambda w, r: None)(w, make_request())
        assert w.get_header("X-Custom") == "value"


class TestAsHandler:

    def test_plain_callable(self):
        def fn(w, r):
            pass

        assert as_handler(fn) is fn

    def test_serve_http_object(self):
        class Obj:
            def serve_http(self, w, r):
                pass

        obj = Obj()
        assert as_handler(obj) == obj.serve_http

    def test_not_a_handler(self):
        with pytest.raises(TypeError):
            as_handler(42)
