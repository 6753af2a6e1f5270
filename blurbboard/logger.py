"""
Secure logging configuration for the Blurb Board server
"""

import logging
import re
import sys
from typing import Optional

from .constants import LOG_LEVEL

_SECRET_PATTERN = re.compile(r"(token|password)=([^\s|,]+)")


class SecureFormatter(logging.Formatter):
    """Custom formatter that masks credentials"""

    def format(self, record):
        message = super().format(record)
        return _SECRET_PATTERN.sub(r"\1=***", message)


def get_logger(name: str = "blurbboard") -> logging.Logger:
    """
    Get a secure logger instance with proper formatting

    Args:
        name: Logger name

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(SecureFormatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))
        logger.addHandler(handler)
        logger.setLevel(LOG_LEVEL)

        # Keep board output out of uvicorn's root handlers
        logger.propagate = False

    return logger


def set_log_level(level: str):
    """Apply a configured level name such as "debug" to the board logger"""
    resolved = getattr(logging, level.upper(), None)
    if isinstance(resolved, int):
        get_logger().setLevel(resolved)


def log_security_event(event_type: str, details: dict, logger: Optional[logging.Logger] = None):
    """
    Log security-related events with structured data

    Args:
        event_type: Type of security event
        details: Event details
        logger: Logger instance (optional)
    """
    if logger is None:
        logger = get_logger()

    logger.warning(f"SECURITY_EVENT: {event_type} | {details}")


def log_connection_event(connection_id: str, action: str, ip_address: str = "unknown", user: str = "-"):
    """
    Log connection lifecycle events for monitoring

    Args:
        connection_id: Connection identifier
        action: Action (connect/authenticate/disconnect/terminate)
        ip_address: Client origin
        user: Authenticated username, if any
    """
    get_logger().info(
        f"CONNECTION_EVENT: {action} | conn={connection_id} | user={user} | ip={ip_address}"
    )


def log_message_event(message_id: int, author: str, action: str, details: str = ""):
    """
    Log message-related events

    Args:
        message_id: Message identifier
        author: Author username
        action: Action (stored/broadcast/rejected)
        details: Additional details
    """
    get_logger().info(f"MESSAGE_EVENT: {action} | id={message_id} | user={author} | {details}")


def log_websocket_event(event_type: str, connection_id: str, details: str = ""):
    """
    Log WebSocket protocol events

    Args:
        event_type: Type of WebSocket event
        connection_id: Connection identifier
        details: Additional details
    """
    get_logger().debug(f"WEBSOCKET_EVENT: {event_type} | conn={connection_id} | {details}")


def log_system_event(event_type: str, details: str, level: str = "info"):
    """
    Log system-level events

    Args:
        event_type: Type of system event
        details: Event details
        level: Log level (info/warning/error)
    """
    logger = get_logger()
    log_message = f"SYSTEM_EVENT: {event_type} | {details}"

    if level == "warning":
        logger.warning(log_message)
    elif level == "error":
        logger.error(log_message)
    else:
        logger.info(log_message)
