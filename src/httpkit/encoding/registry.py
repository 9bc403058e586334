"""
=============================================================================
ENCODER REGISTRY
=============================================================================

Maps MIME types to encoders and writes every response body in the
negotiated representation, including error envelopes.

    Accept header ──▶ negotiate ──▶ "application/json" ──▶ JSONEncoder
                                                             │
                               ┌─────────────────────────────┘
                               ▼
                      encode into a buffer ──ok──▶ headers, status, body
                               │
                             error
                               ▼
            headers not sent yet?  ── yes ──▶ 500 envelope, same encoder
                               │
                               no ──▶ log only (the body is already going out)

=============================================================================
OWNERSHIP
=============================================================================

A registry is an ordinary object owned by a Router (and through it by a
Server). There is no process-wide registry: two routers in one process
never see each other's encoders. Registration is a setup-time operation;
registering while requests are being served is not supported.

The registry always holds an encoder for its default type. The JSON
encoder is registered at construction; validate() re-checks the
invariant before a server starts.

=============================================================================
"""

import logging
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from ..errors import ConfigurationError
from ..envelope import ErrorMessage, ErrorResponse
from .encoder import Encoder, JSONEncoder
from .negotiation import negotiate_content_type

if TYPE_CHECKING:
    from ..http.request import Request
    from ..http.writer import ResponseWriter


logger = logging.getLogger(__name__)


DEFAULT_TYPE = "application/json"


class EncoderRegistry:
    """MIME type → encoder, last registration wins."""

    def __init__(self, default_type: str = DEFAULT_TYPE):
        self.default_type = default_type
        self._encoders: Dict[str, Encoder] = {}
        self.register(JSONEncoder())

    def register(self, encoder: Encoder) -> "EncoderRegistry":
        mime_type = encoder.mime_type.lower()
        if mime_type in self._encoders:
            logger.debug(f"Replacing encoder for {mime_type}")
        self._encoders[mime_type] = encoder
        return self

    def get(self, mime_type: str) -> Optional[Encoder]:
        return self._encoders.get(mime_type.lower())

    def mime_types(self) -> List[str]:
        return list(self._encoders)

    def __contains__(self, mime_type: object) -> bool:
        return isinstance(mime_type, str) and mime_type.lower() in self._encoders

    def __len__(self) -> int:
        return len(self._encoders)

    def validate(self) -> None:
        if self.default_type.lower() not in self._encoders:
            raise ConfigurationError(
                f"no encoder registered for the default type {self.default_type}"
            )

    def negotiate(self, accept: Optional[str]) -> str:
        return negotiate_content_type(accept, self.mime_types(), self.default_type)

    # =========================================================================
    # ENCODE
    # =========================================================================

    def encode(self, w: "ResponseWriter", r: "Request", status: int, data: Any) -> None:
        """
        Write data as the response body in the negotiated type.

        The body is serialized completely before anything is written, so a
        failing encoder never leaves half a body behind.
        """
        mime_type = self.negotiate(r.get_header("Accept"))
        encoder = self.get(mime_type) or self.get(self.default_type)
        if encoder is None:
            raise ConfigurationError(
                f"no encoder registered for the default type {self.default_type}"
            )

        try:
            body = encoder.encode(data)
        except Exception as e:
            logger.exception(f"{encoder.mime_type} encoding failed for {r.method} {r.path}")

            if w.headers_sent:
                return

            w.reset()
            status = 500
            try:
                body = encoder.encode(ErrorResponse(ErrorMessage(code=500, message=str(e))))
            except Exception:
                logger.exception("encoding the error envelope failed")
                body = b""

        if w.headers_sent:
            w.write(body)
            return

        w.set_header("Content-Type", f"{encoder.mime_type}; charset=utf-8")
        w.set_header("X-Content-Type-Options", "nosniff")
        w.write_header(status)
        w.write(body)
