"""
=============================================================================
RECOVERY MIDDLEWARE
=============================================================================

Turns an exception escaping a handler into a 500 response:

    handler raises ──▶ log with traceback ──▶ headers not sent yet?
                                                 │ yes        │ no
                                                 ▼            ▼
                                     500 {"error":{...}}   nothing more can
                                                           be said; the
                                                           transport closes
                                                           the connection

The exception never reaches the connection thread, so one failing request
has no effect on any other request or on the listener.

Server.run() installs it after the application's own middleware. Headers
set by outer wrappers (request IDs, CORS) survive; the status and any
partially buffered body are discarded.

=============================================================================
"""

import logging

from ..http.request import Request
from ..http.response import internal_server_failure
from ..http.writer import ResponseWriter
from .base import Handler, Middleware


logger = logging.getLogger(__name__)


class RecoveryMiddleware(Middleware):

    def process(self, w: ResponseWriter, r: Request, next_handler: Handler) -> None:
        try:
            next_handler(w, r)
        except Exception:
            logger.exception(f"panic recovered while serving {r.method} {r.path}")

            if w.headers_sent:
                return

            w.reset()
            internal_server_failure(w, r)
