"""
Limits and protocol constants for the Blurb Board server
"""

# Content limits (checked on the raw, pre-sanitization input)
MAX_MESSAGE_LENGTH = 500
MAX_USERNAME_LENGTH = 20

# Identifier space shared shape for messages and users
ID_MIN = 100000
ID_MAX = 999999
ID_KINDS = ("message", "user")
MAX_INSERT_ATTEMPTS = 5

# Read API
PAGE_SIZE = 10

# Rate limiting
RATE_LIMIT_COOLDOWN_SECONDS = 5.0
RATE_LIMIT_PRUNE_AFTER_SECONDS = 300.0

# Liveness
HEARTBEAT_INTERVAL_SECONDS = 30.0
CLOSE_CODE_GOING_AWAY = 1001

# Logging levels
LOG_LEVEL = "INFO"

# Security headers
CORS_ORIGINS = ["*"]

# Protocol tags
EVENT_HANDSHAKE = "hi"
EVENT_POST = "post"
EVENT_NEW_MESSAGE = "nm"
EVENT_PRESENCE = "ucu"
EVENT_ERROR = "error"

# Error messages
ERROR_MESSAGES = {
    "token_required": "token is required",
    "invalid_token": "invalid token",
    "not_authenticated": "not authenticated",
    "rate_limit": "Too fast! Cooldown time is 5 seconds.",
    "content_required": "message content is required",
    "content_too_long": "your message is too long, the maximum is 500 characters",
    "content_invalid": "Message contains only invalid characters",
    "username_required": "username is required",
    "username_too_long": "Your username is too long, the maximum is 20 characters",
    "username_invalid": "Username contains only invalid characters",
    "username_taken": "Username already exists",
    "parent_invalid": "parent id is invalid",
    "parent_missing": "parent id is nonexistent",
    "user_missing": "user not found",
    "invalid_format": "invalid message format",
    "internal": "internal server error",
}
