"""
Unit tests for configuration.
"""

import logging
import socket

import pytest

from httpkit.config import (
    Configuration,
    HTTPConfig,
    HTTPSConfig,
    address_family,
    join_host_port,
)
from httpkit.errors import ConfigurationError


class TestProtocolEnabled:
    """Each listener is switched on by its own values."""

    @pytest.mark.parametrize("port,enabled", [
        (0, False),
        (1, True),
        (8080, True),
        (65534, True),
        (65535, False),
    ])
    def test_http_port_range(self, port, enabled):
        assert HTTPConfig(port=port).is_enabled() is enabled

    def test_https_needs_cert_and_key(self):
        assert not HTTPSConfig(port=8443).is_enabled()
        assert not HTTPSConfig(port=8443, cert_file="c.pem").is_enabled()
        assert not HTTPSConfig(port=8443, key_file="k.pem").is_enabled()
        assert HTTPSConfig(port=8443, cert_file="c.pem", key_file="k.pem").is_enabled()
        assert not HTTPSConfig(port=0, cert_file="c.pem", key_file="k.pem").is_enabled()

    def test_configuration_is_enabled(self):
        config = Configuration(http=HTTPConfig(port=8080))

        assert config.is_enabled("http")
        assert not config.is_enabled("https")
        assert not config.is_enabled("ftp")

    def test_nothing_enabled_by_default(self):
        config = Configuration()

        assert not config.is_enabled("http")
        assert not config.is_enabled("https")


class TestValidate:

    def test_defaults_are_valid(self):
        Configuration().validate()

    def test_invalid_port(self):
        with pytest.raises(ConfigurationError, match="Invalid port"):
            Configuration(http=HTTPConfig(port=70000)).validate()

    def test_negative_timeout(self):
        with pytest.raises(ConfigurationError, match="shutdown_timeout"):
            Configuration(shutdown_timeout=-1).validate()

    def test_invalid_body_size(self):
        with pytest.raises(ConfigurationError):
            Configuration(max_body_size=0).validate()

    def test_invalid_log_level(self):
        with pytest.raises(ConfigurationError, match="Invalid log level"):
            Configuration(log_level="LOUD").validate()

    def test_log_level_value(self):
        assert Configuration(log_level="debug").log_level_value == logging.DEBUG

    def test_effective_idle_timeout(self):
        assert Configuration(read_timeout=5).effective_idle_timeout == 5
        assert Configuration(read_timeout=5, idle_timeout=30).effective_idle_timeout == 30


class TestFromEnv:

    def test_defaults(self, monkeypatch):
        for name in ("HTTP_PORT", "HTTPS_PORT", "SERVER_HEALTH_CHECK", "SERVER_METRICS"):
            monkeypatch.delenv(name, raising=False)

        config = Configuration.from_env()

        assert config.http.port == 8080
        assert config.is_enabled("http")
        assert not config.is_enabled("https")
        assert config.health_check is True
        assert config.metrics is False

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("HTTP_HOST", "127.0.0.1")
        monkeypatch.setenv("HTTP_PORT", "9000")
        monkeypatch.setenv("HTTPS_PORT", "9443")
        monkeypatch.setenv("HTTPS_CERT_FILE", "server.crt")
        monkeypatch.setenv("HTTPS_KEY_FILE", "server.key")
        monkeypatch.setenv("SERVER_SHUTDOWN_TIMEOUT", "2.5")
        monkeypatch.setenv("SERVER_METRICS", "yes")
        monkeypatch.setenv("SERVER_HEALTH_CHECK", "false")
        monkeypatch.setenv("SERVER_LOG_LEVEL", "DEBUG")

        config = Configuration.from_env()

        assert config.http.addr() == "127.0.0.1:9000"
        assert config.is_enabled("https")
        assert config.shutdown_timeout == 2.5
        assert config.metrics is True
        assert config.health_check is False
        assert config.log_level == "DEBUG"


class TestAddresses:

    def test_join_host_port(self):
        assert join_host_port("127.0.0.1", 80) == "127.0.0.1:80"
        assert join_host_port("", 8080) == ":8080"
        assert join_host_port("::1", 443) == "[::1]:443"

    def test_address_family(self):
        assert address_family("127.0.0.1") == socket.AF_INET
        assert address_family("") == socket.AF_INET
        assert address_family("::") == socket.AF_INET6
