"""
Configuration validation module.

Validates server, transport and logging settings on startup to catch
misconfigurations early and report them with clear messages.
"""

import os
from typing import Dict, List, Any, Optional, Tuple
from pathlib import Path
from urllib.parse import urlsplit

from .logging_config import get_logger


class ConfigValidationError(Exception):
    """Raised when configuration validation fails"""
    pass


VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class ConfigValidator:
    """Validates application configuration"""

    def __init__(self,
                 server_config: Optional[Dict[str, Any]] = None,
                 transport_config: Optional[Dict[str, Any]] = None,
                 logging_config: Optional[Dict[str, Any]] = None):
        import config

        self.server_config = server_config if server_config is not None else config.SERVER_CONFIG
        self.transport_config = transport_config if transport_config is not None else config.TRANSPORT_CONFIG
        self.logging_config = logging_config if logging_config is not None else config.LOGGING_CONFIG
        self.supported_schemes = config.SUPPORTED_SCHEMES
        self.transport_backends = config.TRANSPORT_BACKENDS

        self.errors: List[str] = []
        self.warnings: List[str] = []

    def validate_all(self) -> Tuple[bool, List[str], List[str]]:
        """
        Validate all configuration settings.

        Returns:
            Tuple of (is_valid, errors, warnings)
        """
        self.errors.clear()
        self.warnings.clear()

        self._validate_server_config()
        self._validate_transport_config()
        self._validate_logging_config()

        is_valid = len(self.errors) == 0
        return is_valid, self.errors.copy(), self.warnings.copy()

    def _validate_server_config(self):
        """Validate the endpoint url and handshake method"""
        url = self.server_config.get("url", "")
        parts = urlsplit(url)
        if parts.scheme not in self.supported_schemes:
            self.errors.append(
                f"Server url '{url}' must use one of the schemes: {', '.join(self.supported_schemes)}"
            )
        elif not parts.hostname:
            self.errors.append(f"Server url '{url}' has no host")

        if parts.scheme == "ws" and os.getenv("ENVIRONMENT", "development").lower() == "production":
            self.warnings.append("Unencrypted ws:// endpoint configured for production, consider wss://")

        method = self.server_config.get("http_method", "GET")
        if not method or not method.isalpha():
            self.errors.append(f"Invalid HTTP method '{method}'")
        elif method.upper() != "GET":
            self.warnings.append(f"HTTP method '{method}' is not GET, most servers reject non-GET websocket handshakes")

    def _validate_transport_config(self):
        """Validate transport backend and timing settings"""
        backend = self.transport_config.get("backend")
        if backend not in self.transport_backends:
            self.errors.append(
                f"Unknown transport backend '{backend}'. Must be one of: {', '.join(self.transport_backends)}"
            )

        for key in ("open_timeout", "close_timeout"):
            value = self.transport_config.get(key, 1.0)
            if value <= 0:
                self.errors.append(f"Transport {key} must be positive, got {value}")

        ping_interval = self.transport_config.get("ping_interval", 20.0)
        if ping_interval < 0:
            self.errors.append(f"Transport ping_interval must not be negative, got {ping_interval}")
        elif ping_interval == 0:
            self.warnings.append("Keepalive pings are disabled, dead connections may go unnoticed")

        max_size = self.transport_config.get("max_message_size", 1024 * 1024)
        if max_size <= 0:
            self.errors.append(f"Transport max_message_size must be positive, got {max_size}")

    def _validate_logging_config(self):
        """Validate logging configuration"""
        log_level = self.logging_config.get("log_level", "INFO")
        if log_level.upper() not in VALID_LOG_LEVELS:
            self.errors.append(f"Invalid log level '{log_level}'. Must be one of: {', '.join(VALID_LOG_LEVELS)}")

        if self.logging_config.get("enable_file_logging", True):
            log_path = Path(self.logging_config.get("log_dir", "./logs"))
            parent_dir = log_path.parent
            if not parent_dir.exists():
                self.errors.append(f"Log directory parent '{parent_dir}' does not exist")
            elif not os.access(parent_dir, os.W_OK):
                self.errors.append(f"Log directory parent '{parent_dir}' is not writable")

        backup_count = self.logging_config.get("backup_count", 5)
        if backup_count < 1 or backup_count > 50:
            self.warnings.append(f"Log backup count {backup_count} may be {'too low' if backup_count < 3 else 'too high'}. Recommended: 3-20")


def validate_startup_config(validator: Optional[ConfigValidator] = None) -> None:
    """
    Validate configuration on startup.

    Raises:
        ConfigValidationError: If configuration errors are found
    """
    logger = get_logger(__name__)
    validator = validator or ConfigValidator()
    is_valid, errors, warnings = validator.validate_all()

    for warning in warnings:
        logger.warning(f"Configuration warning: {warning}")

    if errors:
        for error in errors:
            logger.error(f"Configuration error: {error}")

        error_msg = f"Found {len(errors)} configuration error(s): " + "; ".join(errors)
        raise ConfigValidationError(error_msg)

    logger.info("Configuration validated successfully", extra={"extra_data": {"warnings": len(warnings)}})
