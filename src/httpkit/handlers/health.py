"""
=============================================================================
HEALTH CHECKS
=============================================================================

GET /health runs every registered probe and reports each one:

    200 OK                              503 Service Unavailable
    {                                   {
      "status": true,                     "status": false,
      "services": {                       "services": {
        "database": true,                   "database": false,
        "cache": true                       "cache": true
      }                                   }
    }                                   }

=============================================================================
CONCURRENT AGGREGATION
=============================================================================

    run()
      │
      ├──▶ thread "database" ──▶ probe(ctx) ──▶ ┐
      ├──▶ thread "cache"    ──▶ probe(ctx) ──▶ ├─ lock ─▶ services[name] = ok
      └──▶ thread "queue"    ──▶ probe(ctx) ──▶ ┘
      │
      join all ──▶ status = AND(services)

- One thread per probe; all of them are joined before the response is
  built, so the total time is the slowest probe, not the sum.
- The lock is held only for the dictionary insert, never while a probe
  runs.
- A probe that returns False or raises marks only itself unhealthy. The
  other probes still run to completion: the response is always a
  complete snapshot.
- Nothing is cached. Every request re-runs every probe, so probes must
  be cheap.
- Every probe receives the RequestContext of the /health request, so it
  can reach request-scoped values such as the trace span:

      def check_database(ctx):
          return db.ping(span=ctx.get(SPAN_KEY))

Probes are registered during setup. A duplicate name is a configuration
error and leaves the first probe in place.

=============================================================================
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from ..errors import DuplicateHealthCheckError
from ..http.context import RequestContext
from ..http.request import Request
from ..http.response import encode
from ..http.writer import ResponseWriter


logger = logging.getLogger(__name__)


# A probe answers "is this dependency usable right now?"
HealthCheck = Callable[[RequestContext], bool]


@dataclass(frozen=True)
class HealthCheckResponse:
    status: bool
    services: Dict[str, bool] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"status": self.status, "services": dict(self.services)}


class HealthAggregator:
    """Named probes, run concurrently on demand."""

    def __init__(self):
        self._checks: Dict[str, HealthCheck] = {}

    def add(self, name: str, probe: HealthCheck) -> None:
        if name in self._checks:
            raise DuplicateHealthCheckError(name)
        self._checks[name] = probe

    @property
    def names(self) -> List[str]:
        return list(self._checks)

    def __contains__(self, name: object) -> bool:
        return name in self._checks

    def __len__(self) -> int:
        return len(self._checks)

    def run(self, ctx: Optional[RequestContext] = None) -> HealthCheckResponse:
        """Run every probe with ctx (a fresh context when None)."""
        if ctx is None:
            ctx = RequestContext()

        services: Dict[str, bool] = {}
        lock = threading.Lock()

        def run_probe(name: str, probe: HealthCheck) -> None:
            try:
                ok = bool(probe(ctx))
            except Exception:
                logger.exception(f"health check {name} raised")
                ok = False

            with lock:
                services[name] = ok

        threads = [
            threading.Thread(
                target=run_probe,
                args=(name, probe),
                name=f"healthcheck-{name}",
                daemon=True,
            )
            for name, probe in self._checks.items()
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        status = all(services.values())
        if not status:
            failing = sorted(name for name, ok in services.items() if not ok)
            logger.warning(f"health checks failing: {', '.join(failing)}")

        return HealthCheckResponse(status=status, services=services)


class HealthHandler:
    """Handler for /health."""

    def __init__(self, aggregator: HealthAggregator):
        self.aggregator = aggregator

    def serve_http(self, w: ResponseWriter, r: Request) -> None:
        response = self.aggregator.run(r.context)
        w.set_header("Cache-Control", "no-store")
        encode(w, r, 200 if response.status else 503, response)

    __call__ = serve_http
