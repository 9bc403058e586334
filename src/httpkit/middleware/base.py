"""
=============================================================================
MIDDLEWARE CHAIN
=============================================================================

A middleware is a wrapper: it takes the next handler and returns a new
handler that runs code around it.

    Handler  = Callable[[ResponseWriter, Request], None]
    Wrapper  = Callable[[Handler], Handler]

    def timing(next_handler):
        def handler(w, r):
            start = time.monotonic()
            next_handler(w, r)
            log(time.monotonic() - start)
        return handler

=============================================================================
COMPOSITION ORDER
=============================================================================

    chain = Chain(logging, auth, recovery)
    handler = chain.then(app)

        = logging(auth(recovery(app)))

            ┌─────────────────────────────────────────────────────────┐
            │  logging                                                │
            │  ┌───────────────────────────────────────────────────┐  │
            │  │  auth                                             │  │
            │  │  ┌─────────────────────────────────────────────┐  │  │
            │  │  │  recovery                                   │  │  │
            │  │  │  ┌─────────────────────────────────────┐    │  │  │
            │  │  │  │               app                   │    │  │  │
            │  │  │  └─────────────────────────────────────┘    │  │  │
            │  │  └─────────────────────────────────────────────┘  │  │
            │  └───────────────────────────────────────────────────┘  │
            └─────────────────────────────────────────────────────────┘

The first wrapper registered is the outermost: it sees the request first
and the response last.

=============================================================================
VALUE SEMANTICS
=============================================================================

A Chain never changes. append() returns a new chain, so handlers that were
already composed keep exactly the wrappers they were built with:

    base = Chain(logging)
    h1 = base.then(app)              # logging(app)
    extended = base.append(auth)
    h2 = extended.then(app)          # logging(auth(app)); h1 unchanged

Composition runs no middleware code beyond calling each wrapper once with
its next handler.

=============================================================================
"""

import logging
from abc import ABC, abstractmethod
from typing import Callable, Iterator, Optional, Tuple

from ..http.request import Request
from ..http.writer import ResponseWriter


logger = logging.getLogger(__name__)


# =============================================================================
# TYPE ALIASES
# =============================================================================

Handler = Callable[[ResponseWriter, Request], None]

Wrapper = Callable[[Handler], Handler]


def as_handler(handler) -> Handler:
    """Accept plain callables and objects exposing serve_http(w, r)."""
    serve_http = getattr(handler, "serve_http", None)
    if callable(serve_http):
        return serve_http
    if callable(handler):
        return handler
    raise TypeError(f"{handler!r} is not a handler")


class Chain:
    """Immutable, ordered sequence of wrappers."""

    __slots__ = ("_wrappers",)

    def __init__(self, *wrappers: Wrapper):
        self._wrappers: Tuple[Wrapper, ...] = tuple(wrappers)

    def append(self, *wrappers: Wrapper) -> "Chain":
        """New chain with wrappers added at the inner end."""
        return Chain(*self._wrappers, *wrappers)

    def extend(self, chain: "Chain") -> "Chain":
        return self.append(*chain._wrappers)

    def then(self, handler: Optional[Handler] = None) -> Handler:
        """
        Compose every wrapper around handler.

        None stands for the default handler, which answers 404.
        """
        if handler is None:
            from ..http.response import not_found_failure
            handler = not_found_failure

        current = as_handler(handler)

        # reversed([a, b, c]) wraps c first, so a ends up outermost
        for wrapper in reversed(self._wrappers):
            current = wrapper(current)

        return current

    def then_func(self, fn: Optional[Handler]) -> Handler:
        """Same as then() for a plain function."""
        if fn is None:
            return self.then(None)
        return self.then(fn)

    def __len__(self) -> int:
        return len(self._wrappers)

    def __iter__(self) -> Iterator[Wrapper]:
        return iter(self._wrappers)

    def __repr__(self) -> str:
        names = ", ".join(getattr(w, "name", getattr(w, "__name__", repr(w))) for w in self._wrappers)
        return f"Chain({names})"


# =============================================================================
# CLASS-BASED MIDDLEWARE
# =============================================================================

class Middleware(ABC):
    """
    Base class for middleware written as classes.

    Subclasses implement process(); an instance is itself a wrapper and
    can be handed to Chain or Router.use directly.

        class Stamp(Middleware):
            def process(self, w, r, next_handler):
                w.set_header("X-Stamp", "1")
                next_handler(w, r)

        router.use(Stamp())
    """

    @abstractmethod
    def process(self, w: ResponseWriter, r: Request, next_handler: Handler) -> None:
        """
        Handle the request.

        Call next_handler(w, r) to continue the chain, or write a response
        and return without calling it to short-circuit.
        """

    def __call__(self, next_handler: Handler) -> Handler:
        def handler(w: ResponseWriter, r: Request) -> None:
            self.process(w, r, next_handler)

        handler.__name__ = f"{self.name}.handler"
        return handler

    @property
    def name(self) -> str:
        return self.__class__.__name__


class FunctionMiddleware(Middleware):
    """Wraps fn(w, r, next_handler) as middleware."""

    def __init__(
        self,
        func: Callable[[ResponseWriter, Request, Handler], None],
        name: Optional[str] = None,
    ):
        self._func = func
        self._name = name or func.__name__

    def process(self, w: ResponseWriter, r: Request, next_handler: Handler) -> None:
        self._func(w, r, next_handler)

    @property
    def name(self) -> str:
        return self._name


def function_middleware(
    func: Callable[[ResponseWriter, Request, Handler], None]
) -> FunctionMiddleware:
    """
    Decorator to create middleware from a function.

        @function_middleware
        def add_header(w, r, next_handler):
            w.set_header("X-Custom", "value")
            next_handler(w, r)

        router.use(add_header)
    """
    return FunctionMiddleware(func)
