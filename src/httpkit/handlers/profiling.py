"""
=============================================================================
RUNTIME PROFILING ENDPOINTS
=============================================================================

Router.enable_profiling() mounts a family of debug endpoints, modeled on
the /debug/pprof layout operators already know:

    ┌────────────────────────────┬────────────────────────────────────────┐
    │ Endpoint                   │ Answers with                           │
    ├────────────────────────────┼────────────────────────────────────────┤
    │ GET  /debug/pprof          │ index of the endpoints below           │
    │ GET  /debug/pprof/cmdline  │ sys.argv, NUL separated                │
    │ GET  /debug/pprof/symbol   │ "num_symbols: 1"                       │
    │ POST /debug/pprof/symbol   │ dotted names → source location         │
    │ GET  /debug/pprof/profile  │ CPU samples of every thread for        │
    │                            │ ?seconds=N (default 30), folded stacks │
    │ GET  /debug/pprof/heap     │ top allocation sites (tracemalloc)     │
    │ GET  /debug/pprof/goroutine│ stack of every live thread             │
    │ GET  /debug/pprof/block    │ threads parked in a wait or lock       │
    │ GET  /debug/pprof/threadcreate │ thread inventory                   │
    └────────────────────────────┴────────────────────────────────────────┘

Everything is plain text. The profile output uses the folded-stack format
(one "frame;frame;frame count" line per distinct stack), which flame
graph tools read directly.

These endpoints expose internals. Do not mount them on a listener that is
reachable from outside.

=============================================================================
"""

import importlib
import logging
import sys
import threading
import time
import tracemalloc
import traceback
from collections import Counter
from html import escape
from types import FrameType
from typing import TYPE_CHECKING, Dict, List, Optional

from ..http.request import Request
from ..http.response import failure_from_error
from ..http.writer import ResponseWriter

if TYPE_CHECKING:
    from ..http.router import Router


logger = logging.getLogger(__name__)


PREFIX = "/debug/pprof"

DEFAULT_PROFILE_SECONDS = 30.0

SAMPLE_INTERVAL = 0.01

HEAP_TOP = 50

# Innermost frames that mean "this thread is waiting, not running"
_BLOCKING_CALLS = {
    ("threading.py", "wait"),
    ("threading.py", "_wait_for_tstate_lock"),
    ("threading.py", "join"),
    ("threading.py", "acquire"),
    ("queue.py", "get"),
    ("queue.py", "put"),
    ("selectors.py", "select"),
    ("socket.py", "accept"),
    ("socketserver.py", "serve_forever"),
}

_PROFILES = {
    "cmdline": "The command line invocation of the current program",
    "symbol": "Resolve dotted names to source locations",
    "profile": "CPU profile, sampled across every thread; ?seconds=N",
    "heap": "A sampling of live memory allocations",
    "goroutine": "Stack traces of all current threads",
    "block": "Stack traces of threads blocked on synchronization",
    "threadcreate": "Every thread that is alive",
}


def _write_text(w: ResponseWriter, body: str, content_type: str = "text/plain") -> None:
    w.set_header("Content-Type", f"{content_type}; charset=utf-8")
    w.set_header("X-Content-Type-Options", "nosniff")
    w.write_header(200)
    w.write(body.encode("utf-8"))


def _thread_names() -> Dict[int, str]:
    return {t.ident: t.name for t in threading.enumerate() if t.ident is not None}


def _frame_label(frame: FrameType) -> str:
    code = frame.f_code
    module = frame.f_globals.get("__name__", "?")
    return f"{module}.{code.co_name}"


def _is_blocked(frame: FrameType) -> bool:
    # Only the innermost few frames matter; deeper ones are the caller's
    depth = 0
    while frame is not None and depth < 3:
        filename = frame.f_code.co_filename.replace("\\", "/").rsplit("/", 1)[-1]
        if (filename, frame.f_code.co_name) in _BLOCKING_CALLS:
            return True
        frame = frame.f_back
        depth += 1
    return False


def _format_threads(frames: Dict[int, FrameType], header: str) -> str:
    names = _thread_names()
    lines = [f"{header}: {len(frames)}", ""]
    for ident, frame in sorted(frames.items()):
        lines.append(f"thread {names.get(ident, '?')} ({ident}):")
        lines.extend(line.rstrip("\n") for line in traceback.format_stack(frame))
        lines.append("")
    return "\n".join(lines)


# =============================================================================
# HANDLERS
# =============================================================================

def index(w: ResponseWriter, r: Request) -> None:
    rows = "\n".join(
        f'<tr><td><a href="{PREFIX}/{name}">{name}</a></td><td>{escape(text)}</td></tr>'
        for name, text in _PROFILES.items()
    )
    body = (
        "<html><head><title>/debug/pprof/</title></head><body>\n"
        "<p>/debug/pprof/</p>\n"
        f"<table>\n{rows}\n</table>\n"
        "</body></html>\n"
    )
    _write_text(w, body, "text/html")


def cmdline(w: ResponseWriter, r: Request) -> None:
    _write_text(w, "\x00".join(sys.argv))


def symbol(w: ResponseWriter, r: Request) -> None:
    """
    GET reports that lookups are supported. POST takes "+"-separated dotted
    names ("json.dumps+httpkit.server.Server.run") and answers one
    "name file:line" line per name, "name ???" when it cannot be resolved.
    """
    if r.method != "POST":
        _write_text(w, "num_symbols: 1\n")
        return

    names = [n for n in r.body.decode("utf-8", "replace").strip().split("+") if n]
    lines = [f"{name} {_resolve(name)}" for name in names]
    _write_text(w, "\n".join(lines) + ("\n" if lines else ""))


def _resolve(dotted: str) -> str:
    parts = dotted.split(".")
    for i in range(len(parts), 0, -1):
        try:
            obj = importlib.import_module(".".join(parts[:i]))
        except ImportError:
            continue

        try:
            for attr in parts[i:]:
                obj = getattr(obj, attr)
        except AttributeError:
            return "???"

        obj = getattr(obj, "__func__", obj)
        code = getattr(obj, "__code__", None)
        if code is not None:
            return f"{code.co_filename}:{code.co_firstlineno}"
        filename = getattr(sys.modules.get(getattr(obj, "__module__", ""), obj), "__file__", None)
        return filename or "???"

    return "???"


def profile(w: ResponseWriter, r: Request) -> None:
    """Sample every thread's stack for the requested duration."""
    raw = r.get_query("seconds")
    try:
        seconds = float(raw) if raw else DEFAULT_PROFILE_SECONDS
        if seconds <= 0:
            raise ValueError(f"seconds must be > 0, got {raw}")
    except ValueError as e:
        failure_from_error(w, r, 400, e)
        return

    logger.info(f"CPU profile requested for {seconds:g}s")
    own = threading.get_ident()
    samples: Counter = Counter()
    deadline = time.monotonic() + seconds

    while time.monotonic() < deadline:
        for ident, frame in sys._current_frames().items():
            if ident == own or _is_blocked(frame):
                continue
            stack: List[str] = []
            current: Optional[FrameType] = frame
            while current is not None:
                stack.append(_frame_label(current))
                current = current.f_back
            samples[";".join(reversed(stack))] += 1
        time.sleep(SAMPLE_INTERVAL)

    lines = [f"{stack} {count}" for stack, count in samples.most_common()]
    w.set_header("Content-Disposition", 'attachment; filename="profile.folded"')
    _write_text(w, "\n".join(lines) + ("\n" if lines else ""))


def heap(w: ResponseWriter, r: Request) -> None:
    """
    Top allocation sites.

    tracemalloc is started on the first call, so the first answer only
    covers allocations made since then.
    """
    if not tracemalloc.is_tracing():
        logger.info("starting tracemalloc for /debug/pprof/heap")
        tracemalloc.start()

    snapshot = tracemalloc.take_snapshot()
    stats = snapshot.statistics("lineno")
    current, peak = tracemalloc.get_traced_memory()

    lines = [
        f"heap profile: current={current} peak={peak} sites={len(stats)}",
        "",
    ]
    lines.extend(str(stat) for stat in stats[:HEAP_TOP])
    _write_text(w, "\n".join(lines) + "\n")


def goroutine(w: ResponseWriter, r: Request) -> None:
    _write_text(w, _format_threads(sys._current_frames(), "threads"))


def block(w: ResponseWriter, r: Request) -> None:
    frames = {ident: f for ident, f in sys._current_frames().items() if _is_blocked(f)}
    _write_text(w, _format_threads(frames, "blocked threads"))


def threadcreate(w: ResponseWriter, r: Request) -> None:
    threads = threading.enumerate()
    lines = [f"threads: {len(threads)}", ""]
    for t in threads:
        lines.append(
            f"{t.name} ident={t.ident} native_id={getattr(t, 'native_id', None)} "
            f"daemon={t.daemon} alive={t.is_alive()}"
        )
    _write_text(w, "\n".join(lines) + "\n")


def mount_profiling(router: "Router") -> None:
    """Register the /debug/pprof family on router."""
    router.register_route("GET", PREFIX, index)
    router.register_route("GET", f"{PREFIX}/cmdline", cmdline)
    router.register_route("GET", f"{PREFIX}/symbol", symbol)
    router.register_route("POST", f"{PREFIX}/symbol", symbol)
    router.register_route("GET", f"{PREFIX}/profile", profile)
    router.register_route("GET", f"{PREFIX}/heap", heap)
    router.register_route("GET", f"{PREFIX}/goroutine", goroutine)
    router.register_route("GET", f"{PREFIX}/block", block)
    router.register_route("GET", f"{PREFIX}/threadcreate", threadcreate)
