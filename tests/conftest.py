"""
pytest configuration and fixtures.
"""

import logging
import socket
from typing import Generator

import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from httpkit import Configuration, HTTPConfig, Server, encode
from httpkit.http import Request, ResponseWriter, params_from_request


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def writer() -> ResponseWriter:
    """A recording ResponseWriter (no transport)."""
    return ResponseWriter()


@pytest.fixture
def server_config(free_port: int) -> Configuration:
    """Plaintext listener on a free loopback port."""
    return Configuration(
        http=HTTPConfig(host="127.0.0.1", port=free_port),
        shutdown_timeout=2.0,
        health_check=True,
        log_level="WARNING",
    )


@pytest.fixture
def running_server(server_config: Configuration) -> Generator[Server, None, None]:
    """A started server with a few test routes."""
    server = Server(server_config)

    @server.get("/test")
    def test_route(w: ResponseWriter, r: Request) -> None:
        encode(w, r, 200, {"status": "ok"})

    @server.post("/echo")
    def echo_route(w: ResponseWriter, r: Request) -> None:
        encode(w, r, 200, {"received": r.json})

    @server.get("/users/:id")
    def user_route(w: ResponseWriter, r: Request) -> None:
        encode(w, r, 200, {"id": params_from_request(r).get_param("id")})

    @server.get("/boom")
    def boom_route(w: ResponseWriter, r: Request) -> None:
        raise RuntimeError("boom")

    server.start(timeout=5.0)

    yield server

    if server.running:
        server.shutdown()

    logging.getLogger("httpkit").setLevel(logging.NOTSET)
