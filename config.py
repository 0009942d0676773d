"""
Centralized configuration for the connection manager and its transports
"""

import os
from dotenv import load_dotenv

load_dotenv()

# URL has to be either ws or wss scheme
SUPPORTED_SCHEMES = ("ws", "wss")

# Transport backends
TRANSPORT_BACKENDS = {
    "websockets": "asyncio client from the websockets library",
    "threaded": "websocket-client WebSocketApp on a daemon thread"
}

# Server endpoint
SERVER_CONFIG = {
    "url": os.getenv("WS_SERVER_URL", "ws://127.0.0.1:3000"),
    "path": os.getenv("WS_PATH", "/web_socket"),
    "http_method": os.getenv("WS_HTTP_METHOD", "GET"),
}

# Transport settings
TRANSPORT_CONFIG = {
    "backend": os.getenv("WS_TRANSPORT", "websockets"),
    "open_timeout": float(os.getenv("WS_OPEN_TIMEOUT", "10.0")),
    "close_timeout": float(os.getenv("WS_CLOSE_TIMEOUT", "3.0")),
    "ping_interval": float(os.getenv("WS_PING_INTERVAL", "20.0")),  # 0 disables keepalive pings
    "max_message_size": int(os.getenv("WS_MAX_MESSAGE_SIZE", str(1024 * 1024))),
    "headers": {},
}

# Event bus settings
EVENT_BUS_CONFIG = {
    "max_history": int(os.getenv("EVENT_HISTORY_SIZE", "1000")),
}

# Logging settings
LOGGING_CONFIG = {
    "log_level": os.getenv("LOG_LEVEL", "INFO"),
    "log_dir": os.getenv("LOG_DIR", "./logs"),
    "enable_file_logging": os.getenv("ENABLE_FILE_LOGGING", "true").lower() == "true",
    "enable_console_logging": os.getenv("ENABLE_CONSOLE_LOGGING", "true").lower() == "true",
    "structured_logging": os.getenv("ENVIRONMENT", "development").lower() == "production",
    "max_log_size_mb": int(os.getenv("MAX_LOG_SIZE_MB", "10")),
    "backup_count": int(os.getenv("LOG_BACKUP_COUNT", "5")),
}


def get_endpoint_url(server_config: dict = None) -> str:
    """Join the configured server url and websocket path"""
    server_config = server_config or SERVER_CONFIG
    url = server_config["url"].rstrip("/")
    path = server_config.get("path") or ""
    if path and not path.startswith("/"):
        path = "/" + path
    return f"{url}{path}"
