"""Tests for configuration, startup validation and transport selection."""

import pytest

from config import get_endpoint_url
from core.config_validator import ConfigValidationError, ConfigValidator, validate_startup_config
from transport import ThreadedTransport, WebSocketsTransport, create_transport


def make_validator(tmp_path, server=None, transport=None, logging=None):
    server_config = {"url": "ws://127.0.0.1:3000", "path": "/web_socket", "http_method": "GET"}
    transport_config = {
        "backend": "websockets",
        "open_timeout": 10.0,
        "close_timeout": 3.0,
        "ping_interval": 20.0,
        "max_message_size": 1024,
    }
    logging_config = {"log_level": "INFO", "log_dir": str(tmp_path / "logs"), "backup_count": 5}
    server_config.update(server or {})
    transport_config.update(transport or {})
    logging_config.update(logging or {})
    return ConfigValidator(server_config, transport_config, logging_config)


class TestConfigValidator:

    def test_valid_configuration(self, tmp_path, monkeypatch) -> None:
        monkeypatch.delenv("ENVIRONMENT", raising=False)

        ok, errors, warnings = make_validator(tmp_path).validate_all()

        assert ok
        assert errors == []
        assert warnings == []

    @pytest.mark.parametrize("url", ["http://host", "host:3000", "ws://"])
    def test_rejects_bad_server_url(self, tmp_path, url) -> None:
        ok, errors, _ = make_validator(tmp_path, server={"url": url}).validate_all()

        assert not ok
        assert len(errors) == 1

    def test_plain_ws_in_production_warns(self, tmp_path, monkeypatch) -> None:
        monkeypatch.setenv("ENVIRONMENT", "production")

        ok, _, warnings = make_validator(tmp_path).validate_all()

        assert ok
        assert any("wss://" in warning for warning in warnings)

    def test_http_method(self, tmp_path) -> None:
        ok, _, warnings = make_validator(tmp_path, server={"http_method": "POST"}).validate_all()
        assert ok
        assert len(warnings) == 1

        ok, errors, _ = make_validator(tmp_path, server={"http_method": "G E T"}).validate_all()
        assert not ok
        assert "Invalid HTTP method" in errors[0]

    @pytest.mark.parametrize("transport", [
        {"backend": "carrier-pigeon"},
        {"open_timeout": 0},
        {"close_timeout": -1},
        {"ping_interval": -5},
        {"max_message_size": 0},
    ])
    def test_rejects_bad_transport_settings(self, tmp_path, transport) -> None:
        ok, errors, _ = make_validator(tmp_path, transport=transport).validate_all()

        assert not ok
        assert len(errors) == 1

    def test_disabled_keepalive_warns(self, tmp_path) -> None:
        ok, _, warnings = make_validator(tmp_path, transport={"ping_interval": 0}).validate_all()

        assert ok
        assert len(warnings) == 1

    def test_logging_settings(self, tmp_path) -> None:
        ok, errors, _ = make_validator(tmp_path, logging={"log_level": "LOUD"}).validate_all()
        assert not ok
        assert "Invalid log level" in errors[0]

        missing = str(tmp_path / "missing" / "logs")
        ok, errors, _ = make_validator(tmp_path, logging={"log_dir": missing}).validate_all()
        assert not ok
        assert "does not exist" in errors[0]

        ok, errors, warnings = make_validator(tmp_path, logging={"backup_count": 0}).validate_all()
        assert ok
        assert "too low" in warnings[0]

    def test_startup_validation_raises(self, tmp_path) -> None:
        validator = make_validator(tmp_path, transport={"backend": "nope", "open_timeout": 0})

        with pytest.raises(ConfigValidationError, match="2 configuration error"):
            validate_startup_config(validator)

    def test_startup_validation_passes(self, tmp_path) -> None:
        validate_startup_config(make_validator(tmp_path))


class TestEndpointUrl:

    @pytest.mark.parametrize("url, path, expected", [
        ("ws://127.0.0.1:3000", "/web_socket", "ws://127.0.0.1:3000/web_socket"),
        ("wss://example.com/", "socket", "wss://example.com/socket"),
        ("ws://example.com", "", "ws://example.com"),
    ])
    def test_joins_url_and_path(self, url, path, expected) -> None:
        assert get_endpoint_url({"url": url, "path": path}) == expected


class TestCreateTransport:

    def test_builds_configured_backend(self) -> None:
        transport = create_transport("websockets", {
            "backend": "websockets",
            "open_timeout": 2.0,
            "ping_interval": 0,
            "headers": {"X-Token": "abc"},
        })

        assert isinstance(transport, WebSocketsTransport)
        assert transport.open_timeout == 2.0
        assert transport.ping_interval is None
        assert transport.headers == {"X-Token": "abc"}

    def test_builds_threaded_backend(self) -> None:
        assert isinstance(create_transport("threaded"), ThreadedTransport)

    def test_unknown_backend(self) -> None:
        with pytest.raises(ValueError, match="Unknown transport backend"):
            create_transport("carrier-pigeon")
