"""
=============================================================================
URL ROUTER
=============================================================================

Maps (method, path) to handlers, runs every request through the
middleware chain and mounts the built-in endpoints.

=============================================================================
ROUTE PATTERNS
=============================================================================

    ┌─────────────────────────┬────────────────────────┬───────────────────┐
    │ Pattern                 │ Matches                │ Params            │
    ├─────────────────────────┼────────────────────────┼───────────────────┤
    │ /users                  │ /users, /users/        │ -                 │
    │ /users/:id              │ /users/345             │ id="345"          │
    │ /users/:id/posts/:post  │ /users/1/posts/2       │ id="1", post="2"  │
    │ /static/*path           │ /static/css/app.css    │ path="css/app.css"│
    └─────────────────────────┴────────────────────────┴───────────────────┘

    :name  one path segment
    *name  the rest of the path, last segment only

Routes are tried in registration order and the first match wins. A
literal route registered after a placeholder that covers it is never
reached: register /users/new before /users/:id.

mount(prefix, handler) sends /prefix and everything under it to handler
with the path unchanged. A mounted Router matches the full path again and
its params and route template replace the outer ones.

Invalid patterns and duplicate (method, path) pairs raise RouteError when
the route is registered, never at request time.

=============================================================================
REQUEST FLOW
=============================================================================

    RECEIVED
       │  match(method, path)
       ├──────────────▶ MATCHED      params + route template stored in the
       │                             request context
       └──────────────▶ UNMATCHED    target = 405 (path known, method not)
                                     or 404 (path unknown)
       │
       ▼
    MIDDLEWARE_EXECUTING   chain = w1(w2(...wn(target)))
       │
       ▼
    HANDLER_EXECUTING      target(w, r)
       │
       ▼
    RESPONSE_WRITTEN

Matching happens before the chain runs, so middleware can see the route
template and path params (tracing uses them) and also runs for 404/405
answers (metrics count them, CORS answers preflights).

The chain is composed lazily, at dispatch time: use() may be called before
or after routes are registered with the same result. The composed handler
is cached per chain value, and a chain value never changes.

A handler that returns without writing anything is answered with
200 OK and an empty body, including a branch that forgot to call
encode().

=============================================================================
CONCURRENCY
=============================================================================

Routes, middleware and health checks are registered during setup.
Once the server accepts connections the router is only read, from many
threads, without locking. Registering while serving is not supported.

=============================================================================
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Pattern, Protocol, Sequence, Tuple

from ..encoding.registry import EncoderRegistry
from ..errors import RouteError
from ..handlers.health import HealthAggregator, HealthCheck, HealthHandler
from ..middleware.base import Chain, Handler, Wrapper, as_handler
from .context import PARAMS_KEY, ROUTE_KEY, Params, RequestState
from .request import Request
from .response import method_not_allowed_failure, not_found_failure
from .writer import ResponseWriter


logger = logging.getLogger(__name__)


_TARGET_KEY = "httpkit.target"

_PARAM_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_METHOD = re.compile(r"^[A-Z]+$")

MOUNT_METHODS = ("GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS")


class Controller(Protocol):
    """A group of routes that mounts itself on a router."""

    def mount(self, router: "Router") -> None:
        ...


@dataclass
class Route:
    method: str
    path: str
    handler: Handler
    name: Optional[str] = None
    _pattern: Optional[Pattern[str]] = field(default=None, repr=False)
    _param_names: List[str] = field(default_factory=list, repr=False)

    @property
    def param_names(self) -> List[str]:
        return list(self._param_names)


@dataclass
class RouteMatch:
    route: Route
    params: Params


def normalize_path(path: str) -> str:
    """"/users/" → "/users", "" → "/"."""
    if not path or path == "/":
        return "/"
    stripped = path.rstrip("/")
    return stripped if stripped.startswith("/") else "/" + stripped


def _shape(path: str) -> Tuple[str, ...]:
    # "/users/:id" and "/users/:name" collide
    return tuple(s[0] if s[0] in ":*" else s for s in path.split("/") if s)


def compile_pattern(path: str) -> Tuple[Pattern[str], List[str]]:
    """
    Compile a route pattern into a regex.

        "/users/:id/posts/:post_id"
            → ^/users/(?P<id>[^/]+)/posts/(?P<post_id>[^/]+)$

    Raises:
        RouteError: the pattern is malformed.
    """
    if not path.startswith("/"):
        raise RouteError(f'path must begin with "/" in path "{path}"')

    param_names: List[str] = []
    regex_parts = ["^"]

    segments = [s for s in path.split("/") if s]
    for i, segment in enumerate(segments):
        regex_parts.append("/")
        kind = segment[0]

        if kind in ":*":
            name = segment[1:]
            if not _PARAM_NAME.match(name):
                raise RouteError(f'invalid parameter name "{name}" in path "{path}"')
            if name in param_names:
                raise RouteError(f'duplicate parameter name "{name}" in path "{path}"')
            if kind == "*" and i != len(segments) - 1:
                raise RouteError(f'catch-all "*{name}" must be the last segment in path "{path}"')

            param_names.append(name)
            regex_parts.append(f"(?P<{name}>[^/]+)" if kind == ":" else f"(?P<{name}>.*)")

        elif ":" in segment or "*" in segment:
            raise RouteError(
                f'only one wildcard per path segment is allowed, has "{segment}" in path "{path}"'
            )

        else:
            regex_parts.append(re.escape(segment))

    if not segments:
        regex_parts.append("/")

    regex_parts.append("$")
    return re.compile("".join(regex_parts)), param_names


class Router:
    """
    Request router with a middleware chain and built-in endpoints.

    =========================================================================
    USAGE
    =========================================================================

        router = Router()
        router.use(LoggingMiddleware())

        @router.get("/users/:id")
        def get_user(w, r):
            user_id = params_from_request(r).get_param("id")
            encode(w, r, 200, {"id": user_id})

        router.add_health_check("db", lambda ctx: db.ping())
        router.enable_health_check()
        router.enable_metrics()

    =========================================================================
    """

    def __init__(self, encoders: Optional[EncoderRegistry] = None):
        self.encoders = encoders or EncoderRegistry()
        self._routes: List[Route] = []
        self._chain = Chain()
        self._composed: Optional[Tuple[Chain, Handler]] = None
        self._health = HealthAggregator()
        self._not_found: Handler = not_found_failure
        self._method_not_allowed: Handler = method_not_allowed_failure
        self.metrics_registry: Optional[Any] = None

    # =========================================================================
    # ROUTE REGISTRATION
    # =========================================================================

    def register_route(
        self,
        method: str,
        path: str,
        handler: Handler,
        name: Optional[str] = None,
    ) -> Route:
        """
        Bind handler to (method, path).

        Raises:
            RouteError: invalid pattern or the pair is already registered.
        """
        method = method.upper()
        if not _METHOD.match(method):
            raise RouteError(f'invalid method "{method}" for path "{path}"')

        pattern, param_names = compile_pattern(path)
        normalized = normalize_path(path)
        shape = _shape(normalized)

        for existing in self._routes:
            if existing.method == method and _shape(existing.path) == shape:
                raise RouteError(
                    f'a handler is already registered for {method} "{existing.path}"'
                )

        route = Route(
            method=method,
            path=normalized,
            handler=as_handler(handler),
            name=name,
            _pattern=pattern,
            _param_names=param_names,
        )
        self._routes.append(route)
        logger.debug(f"Registered route {method} {normalized}")
        return route

    def handle(self, path: str, handler: Handler, methods: Sequence[str] = ("GET",)) -> List[Route]:
        return [self.register_route(method, path, handler) for method in methods]

    def route(
        self,
        path: str,
        methods: Sequence[str] = ("GET",),
        name: Optional[str] = None,
    ) -> Callable[[Handler], Handler]:
        """
        Decorator form of register_route().

            @router.route("/users", methods=["GET", "POST"])
            def users(w, r):
                ...
        """
        def decorator(handler: Handler) -> Handler:
            for method in methods:
                self.register_route(method, path, handler, name=name)
            return handler
        return decorator

    def get(self, path: str, name: Optional[str] = None) -> Callable[[Handler], Handler]:
        return self.route(path, ("GET",), name)

    def post(self, path: str, name: Optional[str] = None) -> Callable[[Handler], Handler]:
        return self.route(path, ("POST",), name)

    def put(self, path: str, name: Optional[str] = None) -> Callable[[Handler], Handler]:
        return self.route(path, ("PUT",), name)

    def patch(self, path: str, name: Optional[str] = None) -> Callable[[Handler], Handler]:
        return self.route(path, ("PATCH",), name)

    def delete(self, path: str, name: Optional[str] = None) -> Callable[[Handler], Handler]:
        return self.route(path, ("DELETE",), name)

    def head(self, path: str, name: Optional[str] = None) -> Callable[[Handler], Handler]:
        return self.route(path, ("HEAD",), name)

    def options(self, path: str, name: Optional[str] = None) -> Callable[[Handler], Handler]:
        return self.route(path, ("OPTIONS",), name)

    def add_controller(self, controller: Controller) -> None:
        controller.mount(self)

    def mount(self, prefix: str, handler: Handler, methods: Sequence[str] = MOUNT_METHODS) -> List[Route]:
        """
        Send every path under prefix to handler, unchanged.

        handler may be another Router; it matches the full path again:

            api = Router()
            api.get("/api/users/:id")(get_user)
            root.mount("/api", api)
        """
        prefix = normalize_path(prefix)
        paths = [prefix, "/*rest"] if prefix == "/" else [prefix, f"{prefix}/*rest"]
        return [
            self.register_route(method, path, handler)
            for path in paths
            for method in methods
        ]

    def set_not_found(self, handler: Handler) -> None:
        self._not_found = as_handler(handler)

    # =========================================================================
    # MIDDLEWARE
    # =========================================================================

    def use(self, *wrappers: Wrapper) -> "Router":
        """Append wrappers to the chain; first registered runs outermost."""
        self._chain = self._chain.append(*wrappers)
        return self

    @property
    def chain(self) -> Chain:
        return self._chain

    # =========================================================================
    # HEALTH CHECKS
    # =========================================================================

    def add_health_check(self, name: str, probe: HealthCheck) -> None:
        """
        Register a named probe for /health.

        Raises:
            DuplicateHealthCheckError: name is already registered; the
                first probe stays in place.
        """
        self._health.add(name, probe)

    @property
    def health(self) -> HealthAggregator:
        return self._health

    # =========================================================================
    # BUILT-IN ENDPOINTS AND MIDDLEWARE
    # =========================================================================
    # Route-mounting helpers raise RouteError when called twice.
    # Wrapper-appending helpers stack when called twice.

    def enable_health_check(self) -> None:
        """GET and HEAD /health, 200 when every probe passes, else 503."""
        handler = HealthHandler(self._health)
        self.register_route("GET", "/health", handler)
        self.register_route("HEAD", "/health", handler)

    def enable_metrics(self, registry: Optional[Any] = None) -> None:
        """GET /metrics plus the request timing middleware."""
        from ..middleware.metrics import MetricsMiddleware, metrics_handler, new_registry

        registry = registry if registry is not None else self.metrics_registry
        if registry is None:
            registry = new_registry()

        self.register_route("GET", "/metrics", metrics_handler(registry))
        self.metrics_registry = registry
        self.use(MetricsMiddleware(registry))

    def enable_profiling(self) -> None:
        """The /debug/pprof family."""
        from ..handlers.profiling import mount_profiling

        mount_profiling(self)

    def enable_cors(self, config: Optional[Any] = None, **options: Any) -> None:
        """CORS for every endpoint, all origins allowed by default."""
        from ..middleware.cors import CORSConfig, CORSMiddleware

        self.use(CORSMiddleware(config or CORSConfig(**options)))

    def enable_proxy(self) -> None:
        """Trust X-Forwarded-* / Forwarded headers from a reverse proxy."""
        from ..middleware.proxy import ProxyHeadersMiddleware

        self.use(ProxyHeadersMiddleware())

    def enable_recovery(self) -> None:
        """Turn exceptions raised by handlers into 500 envelopes."""
        from ..middleware.recovery import RecoveryMiddleware

        self.use(RecoveryMiddleware())

    # =========================================================================
    # MATCHING
    # =========================================================================

    def match(self, method: str, path: str) -> Optional[RouteMatch]:
        """First registered route matching method and path."""
        method = method.upper()
        path = normalize_path(path)

        for route in self._routes:
            if route.method != method:
                continue
            m = route._pattern.match(path)
            if m:
                params = Params(tuple((name, m.group(name)) for name in route._param_names))
                return RouteMatch(route=route, params=params)

        return None

    def allowed_methods(self, path: str) -> List[str]:
        path = normalize_path(path)
        methods = []
        for route in self._routes:
            if route.method not in methods and route._pattern.match(path):
                methods.append(route.method)
        return methods

    @property
    def routes(self) -> List[Route]:
        return list(self._routes)

    def __len__(self) -> int:
        return len(self._routes)

    def log_routes(self) -> None:
        for route in self._routes:
            logger.debug(f"  {route.method:7} {route.path}")

    # =========================================================================
    # DISPATCH
    # =========================================================================

    def serve_http(self, w: ResponseWriter, r: Request) -> None:
        w.encoders = self.encoders
        ctx = r.context
        # mounted under another router: this match replaces the outer one
        bind = ctx.rebind if _TARGET_KEY in ctx else ctx.set

        match = self.match(r.method, r.path)
        if match is not None:
            bind(PARAMS_KEY, match.params)
            bind(ROUTE_KEY, match.route.path)
            bind(_TARGET_KEY, match.route.handler)
            ctx.advance(RequestState.MATCHED)
        else:
            allowed = self.allowed_methods(r.path)
            if allowed:
                w.set_header("Allow", ", ".join(allowed))
                bind(_TARGET_KEY, self._method_not_allowed)
            else:
                bind(_TARGET_KEY, self._not_found)
            ctx.advance(RequestState.UNMATCHED)

        ctx.advance(RequestState.MIDDLEWARE_EXECUTING)
        self._handler()(w, r)
        ctx.advance(RequestState.RESPONSE_WRITTEN)

    __call__ = serve_http

    def _handler(self) -> Handler:
        chain = self._chain
        composed = self._composed
        if composed is None or composed[0] is not chain:
            composed = (chain, chain.then(self._invoke_target))
            self._composed = composed
        return composed[1]

    @staticmethod
    def _invoke_target(w: ResponseWriter, r: Request) -> None:
        r.context.advance(RequestState.HANDLER_EXECUTING)
        r.context.get(_TARGET_KEY)(w, r)
