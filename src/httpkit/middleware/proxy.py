"""
=============================================================================
PROXY HEADERS MIDDLEWARE
=============================================================================

Behind a load balancer the socket peer is the proxy, not the client. The
proxy reports the original values in headers:

    ┌──────────────────────────────┬────────────────────────────────────┐
    │ Header                       │ Updates                            │
    ├──────────────────────────────┼────────────────────────────────────┤
    │ X-Forwarded-For: c, p1, p2   │ remote_addr = c (left-most)        │
    │ X-Real-IP: c                 │ remote_addr = c                    │
    │ Forwarded: for=c;proto=https │ remote_addr, scheme, host          │
    │ X-Forwarded-Proto: https     │ scheme                             │
    │ X-Forwarded-Host: api.com    │ host                               │
    └──────────────────────────────┴────────────────────────────────────┘

    precedence for the client address:
        X-Forwarded-For > X-Real-IP > Forwarded

Only enable it when every request really comes through a proxy you
control: the headers are trivially forged by clients otherwise.

=============================================================================
"""

import re
from typing import Dict, Optional

from ..http.request import Request
from ..http.writer import ResponseWriter
from .base import Handler, Middleware


_FORWARDED_PAIR = re.compile(r'(?i)(for|proto|host|by)=("[^"]*"|[^;,\s]*)')

_SCHEMES = ("http", "https")


def parse_forwarded(value: str) -> Dict[str, str]:
    """
    Parameters of the first element of an RFC 7239 Forwarded header.

        'for="[2001:db8::1]:4711";proto=https, for=10.0.0.1'
            → {"for": "[2001:db8::1]:4711", "proto": "https"}
    """
    first = value.split(",", 1)[0]
    return {
        key.lower(): raw.strip('"')
        for key, raw in _FORWARDED_PAIR.findall(first)
    }


def _first(value: str) -> str:
    return value.split(",", 1)[0].strip()


def client_address(r: Request) -> Optional[str]:
    forwarded_for = r.get_header("X-Forwarded-For")
    if forwarded_for:
        return _first(forwarded_for)

    real_ip = r.get_header("X-Real-IP").strip()
    if real_ip:
        return real_ip

    forwarded = r.get_header("Forwarded")
    if forwarded:
        addr = parse_forwarded(forwarded).get("for", "")
        # obfuscated identifiers ("_hidden") and "unknown" carry no address
        if addr and addr.lower() != "unknown" and not addr.startswith("_"):
            return addr

    return None


def client_scheme(r: Request) -> Optional[str]:
    proto = _first(r.get_header("X-Forwarded-Proto")).lower()
    if not proto and r.get_header("Forwarded"):
        proto = parse_forwarded(r.get_header("Forwarded")).get("proto", "").lower()
    return proto if proto in _SCHEMES else None


def client_host(r: Request) -> Optional[str]:
    host = _first(r.get_header("X-Forwarded-Host"))
    if not host and r.get_header("Forwarded"):
        host = parse_forwarded(r.get_header("Forwarded")).get("host", "")
    return host or None


class ProxyHeadersMiddleware(Middleware):
    """Rewrites remote_addr, scheme and host from proxy headers."""

    def process(self, w: ResponseWriter, r: Request, next_handler: Handler) -> None:
        addr = client_address(r)
        if addr:
            r.remote_addr = addr

        scheme = client_scheme(r)
        if scheme:
            r.scheme = scheme

        host = client_host(r)
        if host:
            r.host = host

        next_handler(w, r)
