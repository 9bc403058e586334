"""
=============================================================================
RESPONSE WRITER
=============================================================================

Handlers do not return response objects; they write to a ResponseWriter:

    def get_user(w: ResponseWriter, r: Request) -> None:
        w.set_header("Cache-Control", "no-store")
        w.write_header(200)
        w.write(b'{"id": "345"}')

=============================================================================
STATUS IS A FIELD, WRITTEN ONCE
=============================================================================

    ┌──────────────────┐  write_header(404)  ┌──────────────────────────┐
    │ status = 0       │ ──────────────────▶ │ status = 404             │
    │ (nothing sent)   │                     │ later write_header(...)  │
    └──────────────────┘                     │ calls are logged and     │
            │                                │ ignored                  │
            │ write(b"...") with no status   └──────────────────────────┘
            ▼
    ┌──────────────────┐
    │ status = 200     │   ◀── implicit! A handler that forgets to set a
    └──────────────────┘       status always answers 200 OK.

Middleware (metrics, tracing, access logs) reads w.status after the
handler returns; nothing ever has to dig the code out of the transport.

The implicit 200 is a footgun kept on purpose: a handler that writes
nothing at all is also finalized as 200 by the transport.

=============================================================================
BUFFERED VS STREAMED
=============================================================================

By default everything is buffered and the transport sends it, with a
Content-Length, after the handler returns. flush() commits the status
line and headers early; from then on writes go straight to the socket
and headers can no longer change (headers_sent is True).

A writer created without a transport is a recorder: it keeps the whole
body in memory, which is what tests use.

=============================================================================
"""

import logging
from typing import (
    TYPE_CHECKING, Dict, Iterator, List, MutableMapping, Optional, Protocol, Tuple,
)

if TYPE_CHECKING:
    from ..encoding.registry import EncoderRegistry


logger = logging.getLogger(__name__)


class Transport(Protocol):
    """What a ResponseWriter needs from the connection underneath it."""

    def send_head(self, status: int, headers: List[Tuple[str, str]]) -> None:
        ...

    def send_body(self, data: bytes) -> None:
        ...


def canonical_header_key(name: str) -> str:
    """content-type → Content-Type"""
    return "-".join(part.capitalize() for part in name.split("-"))


class Headers(MutableMapping[str, str]):
    """
    Case-insensitive multi-value header map.

    Item access works on the first value; add() and get_all() deal with
    repeated headers such as Set-Cookie or Vary.
    """

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._store: Dict[str, Tuple[str, List[str]]] = {}
        for name, value in (initial or {}).items():
            self[name] = value

    def __getitem__(self, name: str) -> str:
        return self._store[name.lower()][1][0]

    def __setitem__(self, name: str, value: str) -> None:
        self._store[name.lower()] = (canonical_header_key(name), [str(value)])

    def __delitem__(self, name: str) -> None:
        del self._store[name.lower()]

    def __iter__(self) -> Iterator[str]:
        return (name for name, _ in self._store.values())

    def __len__(self) -> int:
        return len(self._store)

    def add(self, name: str, value: str) -> None:
        key = name.lower()
        if key in self._store:
            self._store[key][1].append(str(value))
        else:
            self[name] = value

    def get_all(self, name: str) -> List[str]:
        entry = self._store.get(name.lower())
        return list(entry[1]) if entry else []

    def header_items(self) -> List[Tuple[str, str]]:
        """Every (name, value) pair, one per value, in insertion order."""
        return [(name, value) for name, values in self._store.values() for value in values]

    def __repr__(self) -> str:
        return f"Headers({self.header_items()!r})"


class ResponseWriter:
    """Tracks status, headers and body of one response."""

    def __init__(
        self,
        transport: Optional[Transport] = None,
        encoders: Optional["EncoderRegistry"] = None,
    ):
        self.headers = Headers()
        self._transport = transport
        self._encoders = encoders
        self._status = 0
        self._buffer = bytearray()
        self._headers_sent = False
        self._bytes_written = 0

    # =========================================================================
    # HEADERS
    # =========================================================================

    def set_header(self, name: str, value: str) -> "ResponseWriter":
        if self._headers_sent:
            logger.warning(f"header {name} set after headers were sent, ignoring")
            return self
        self.headers[name] = value
        return self

    def add_header(self, name: str, value: str) -> "ResponseWriter":
        if self._headers_sent:
            logger.warning(f"header {name} added after headers were sent, ignoring")
            return self
        self.headers.add(name, value)
        return self

    def get_header(self, name: str, default: str = "") -> str:
        return self.headers.get(name, default)

    def del_header(self, name: str) -> None:
        self.headers.pop(name, None)

    # =========================================================================
    # STATUS AND BODY
    # =========================================================================

    def write_header(self, status: int) -> None:
        """Record the status code. Only the first call counts."""
        if self._status:
            logger.warning(
                f"superfluous write_header call: status {self._status} already written, "
                f"ignoring {int(status)}"
            )
            return
        self._status = int(status)

    def write(self, data: bytes) -> int:
        if not self._status:
            self.write_header(200)

        if self._headers_sent and self._transport is not None:
            self._transport.send_body(bytes(data))
        else:
            self._buffer.extend(data)

        self._bytes_written += len(data)
        return len(data)

    def flush(self) -> None:
        """Commit status and headers; subsequent writes are streamed."""
        if self._headers_sent:
            return
        if not self._status:
            self.write_header(200)

        self._headers_sent = True
        if self._transport is None:
            return

        self._transport.send_head(self._status, self.headers.header_items())
        if self._buffer:
            self._transport.send_body(bytes(self._buffer))
            self._buffer.clear()

    def reset(self) -> None:
        """Forget the status and buffered body. Headers are kept."""
        if self._headers_sent:
            raise RuntimeError("cannot reset a response whose headers were sent")
        self._status = 0
        self._buffer.clear()
        self._bytes_written = 0

    @property
    def status(self) -> int:
        """Status code written so far, 0 when none."""
        return self._status

    @property
    def final_status(self) -> int:
        """The status the client receives (200 when nothing was written)."""
        return self._status or 200

    @property
    def written(self) -> bool:
        return self._status != 0

    @property
    def headers_sent(self) -> bool:
        return self._headers_sent

    @property
    def body(self) -> bytes:
        """Buffered body (the whole body for a recorder)."""
        return bytes(self._buffer)

    @property
    def bytes_written(self) -> int:
        return self._bytes_written

    @property
    def encoders(self) -> "EncoderRegistry":
        if self._encoders is None:
            from ..encoding.registry import EncoderRegistry
            self._encoders = EncoderRegistry()
        return self._encoders

    @encoders.setter
    def encoders(self, registry: "EncoderRegistry") -> None:
        self._encoders = registry
