"""Logging configuration for the MCP connector."""

import logging
import logging.handlers
from pathlib import Path
from typing import Any, Dict, Optional


DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

SENSITIVE_KEYS = (
    "authorization",
    "password",
    "token",
    "secret",
    "api_key",
    "apikey",
    "api-key",
    "cookie",
    "mcp-session-id",
)

MASK = "***MASKED***"


def _is_sensitive(key: Any) -> bool:
    if not isinstance(key, str):
        return False
    lowered = key.lower()
    return any(marker in lowered for marker in SENSITIVE_KEYS)


def mask_sensitive_data(data: Any) -> Any:
    """Mask credentials in headers, environments and JSON-RPC payloads for logging."""
    if isinstance(data, dict):
        masked_data = {}
        for key, value in data.items():
            if _is_sensitive(key):
                masked_data[key] = MASK
            else:
                masked_data[key] = mask_sensitive_data(value)
        return masked_data
    if isinstance(data, list):
        return [mask_sensitive_data(item) for item in data]
    return data


def _level(log_level: str) -> int:
    return getattr(logging, log_level.upper(), logging.INFO)


def _rotating_handler(log_file: str, level: int, log_format: str,
                      max_file_size: int = 10 * 1024 * 1024, backup_count: int = 5) -> logging.Handler:
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=max_file_size,
        backupCount=backup_count,
        encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(log_format))
    return handler


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
    max_file_size: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
    enable_console: bool = True
) -> None:
    """Configure the root logger.

    Console output goes to stderr so that stdout stays free for command
    output (and, for stdio servers launched by this process, is never mixed
    with protocol traffic).

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to a rotating log file (optional)
        log_format: Custom log format (optional)
        max_file_size: Maximum log file size in bytes before rotation
        backup_count: Number of rotated files to keep
        enable_console: Whether to log to stderr
    """
    if log_format is None:
        log_format = DEFAULT_LOG_FORMAT
    level = _level(log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if enable_console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(logging.Formatter(log_format))
        root_logger.addHandler(console_handler)

    if log_file:
        root_logger.addHandler(
            _rotating_handler(log_file, level, log_format, max_file_size, backup_count)
        )


def setup_mcp_logging(config: Dict[str, Any]) -> None:
    """Configure logging for the client, its transports and the server manager.

    Args:
        config: Dictionary produced by ``Config.to_dict()``
    """
    log_level = config.get("log_level", "INFO")
    level = _level(log_level)

    setup_logging(
        log_level=log_level,
        log_file=config.get("log_file"),
        enable_console=config.get("enable_console", True)
    )

    # Per-connection traffic (requests, responses, durations) gets its own file
    client_logger = logging.getLogger("mcp_client")
    client_logger.setLevel(level)
    for handler in client_logger.handlers[:]:
        client_logger.removeHandler(handler)
    traffic_log_file = config.get("traffic_log_file")
    if traffic_log_file:
        client_logger.addHandler(_rotating_handler(traffic_log_file, level, DEFAULT_LOG_FORMAT))

    for name in ("server_manager", "mcp_transport", "mcp_codec"):
        logging.getLogger(name).setLevel(level)
