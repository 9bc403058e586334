"""
=============================================================================
REQUEST CONTEXT
=============================================================================

Request-scoped values travel with the request in an explicit, typed
context instead of hidden global slots.

    ┌──────────────┐   route match    ┌────────────────────────────────┐
    │   Router     │ ───────────────▶ │ RequestContext                 │
    └──────────────┘                  │   params  → Params(id="345")   │
    ┌──────────────┐   negotiation    │   route   → "/users/:id"       │
    │   Locale MW  │ ───────────────▶ │   locale  → Locale(en, US)     │
    └──────────────┘                  │   span    → <trace span>       │
    ┌──────────────┐   extract        │                                │
    │  Tracing MW  │ ───────────────▶ │                                │
    └──────────────┘                  └────────────────────────────────┘

Every key is write-once: a second write raises ContextKeyConflictError.
The exception is the match a router records: a router mounted under
another router matches again and rebinds params and route to its own.
A context is created for one request and discarded with it.

=============================================================================
THREE DISTINCT LOOKUP FAILURES
=============================================================================

    params_from_context(None)          → ContextMissingError
    params_from_context(unrouted_ctx)  → ParamsNotFoundError
    params.get_param("missing")        → ParamNotFoundError

An empty Params (a route without placeholders) is not an error.

=============================================================================
"""

from enum import Enum
from typing import Any, Dict, Iterator, Optional, Tuple, TYPE_CHECKING

from ..errors import (
    ContextKeyConflictError,
    ContextMissingError,
    ParamNotFoundError,
    ParamsNotFoundError,
)

if TYPE_CHECKING:
    from .request import Request


# Well-known context keys
PARAMS_KEY = "httpkit.params"
ROUTE_KEY = "httpkit.route"
STATE_KEY = "httpkit.state"
LOCALE_KEY = "httpkit.locale"
SPAN_KEY = "httpkit.span"
REQUEST_ID_KEY = "httpkit.request_id"


class RequestState(Enum):
    """Lifecycle of a single request inside the router."""

    RECEIVED = "received"
    MATCHED = "matched"
    UNMATCHED = "unmatched"
    MIDDLEWARE_EXECUTING = "middleware_executing"
    HANDLER_EXECUTING = "handler_executing"
    RESPONSE_WRITTEN = "response_written"


class Params:
    """
    Path parameters extracted by the router, in pattern order.

    Immutable. Lookup by name with by_name() (empty string when absent)
    or get_param() (raises ParamNotFoundError when absent).
    """

    __slots__ = ("_items",)

    def __init__(self, items: Tuple[Tuple[str, str], ...] = ()):
        self._items = tuple(items)

    @classmethod
    def from_dict(cls, values: Dict[str, str]) -> "Params":
        return cls(tuple(values.items()))

    def by_name(self, name: str, default: str = "") -> str:
        for key, value in self._items:
            if key == name:
                return value
        return default

    def get_param(self, name: str) -> str:
        for key, value in self._items:
            if key == name:
                return value
        raise ParamNotFoundError(name)

    def to_dict(self) -> Dict[str, str]:
        return dict(self._items)

    def __contains__(self, name: object) -> bool:
        return any(key == name for key, _ in self._items)

    def __iter__(self) -> Iterator[Tuple[str, str]]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Params):
            return self._items == other._items
        if isinstance(other, dict):
            return self.to_dict() == other
        return NotImplemented

    def __repr__(self) -> str:
        inner = ", ".join(f"{k}={v!r}" for k, v in self._items)
        return f"Params({inner})"


class RequestContext:
    """
    Per-request associative store, write-once per key.

    The router's lifecycle state and the keys rebound by a nested router
    are the only values allowed to change over the request (see advance()
    and rebind()).
    """

    def __init__(self):
        self._values: Dict[str, Any] = {}
        self._state = RequestState.RECEIVED

    def set(self, key: str, value: Any) -> None:
        if key in self._values:
            raise ContextKeyConflictError(key)
        self._values[key] = value

    def rebind(self, key: str, value: Any) -> None:
        """Replace a value unconditionally. Used by nested routers."""
        self._values[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)

    @property
    def state(self) -> RequestState:
        return self._state

    def advance(self, state: RequestState) -> None:
        self._state = state

    @property
    def route(self) -> Optional[str]:
        """Pattern of the matched route, e.g. "/users/:id"."""
        return self._values.get(ROUTE_KEY)


def params_from_context(ctx: Optional[RequestContext]) -> Params:
    """Return the path parameters stored by the router."""
    if ctx is None:
        raise ContextMissingError()

    params = ctx.get(PARAMS_KEY)
    if not isinstance(params, Params):
        raise ParamsNotFoundError()

    return params


def params_from_request(request: "Request") -> Params:
    return params_from_context(getattr(request, "context", None))
