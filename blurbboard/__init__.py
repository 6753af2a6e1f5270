"""
Blurb Board server package
Real-time threaded message board: handshake, posting, broadcast and liveness
"""

from .models import ClientConnection, Identity, Message, MessagePage, User
from .errors import (
    BoardError,
    ProtocolError,
    AuthError,
    ValidationError,
    EmptyAfterSanitize,
    NotFoundError,
    RateLimitError,
    ConflictError,
    StoreError,
)
from .validators import sanitize_content, sanitize_username, validate_post_payload, parse_event
from .rate_limiter import RateLimiter
from .auth import IdentityVerifier
from .id_generator import IdGenerator
from .store import MessageStore, order_threads
from .registry import ConnectionRegistry
from .message_handler import MessageHandler
from .liveness import LivenessMonitor
from .settings import Settings, get_settings
from .logger import (
    get_logger,
    set_log_level,
    log_security_event,
    log_connection_event,
    log_message_event,
    log_websocket_event,
    log_system_event,
)

__all__ = [
    'ClientConnection',
    'Identity',
    'Message',
    'MessagePage',
    'User',
    'BoardError',
    'ProtocolError',
    'AuthError',
    'ValidationError',
    'EmptyAfterSanitize',
    'NotFoundError',
    'RateLimitError',
    'ConflictError',
    'StoreError',
    'sanitize_content',
    'sanitize_username',
    'validate_post_payload',
    'parse_event',
    'RateLimiter',
    'IdentityVerifier',
    'IdGenerator',
    'MessageStore',
    'order_threads',
    'ConnectionRegistry',
    'MessageHandler',
    'LivenessMonitor',
    'Settings',
    'get_settings',
    'get_logger',
    'set_log_level',
    'log_security_event',
    'log_connection_event',
    'log_message_event',
    'log_websocket_event',
    'log_system_event',
]
