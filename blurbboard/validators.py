"""
Content sanitization and payload validation for the Blurb Board protocol
"""

import json
import re
import unicodedata
from typing import Any, Dict, Optional, Tuple, Union

from .constants import (
    ERROR_MESSAGES,
    EVENT_HANDSHAKE,
    EVENT_POST,
    MAX_MESSAGE_LENGTH,
    MAX_USERNAME_LENGTH,
)
from .errors import AuthError, EmptyAfterSanitize, ProtocolError, ValidationError
from .logger import get_logger, log_security_event

logger = get_logger()

# Bidirectional embeddings/overrides and directional marks
BIDI_CONTROL_PATTERN = re.compile(r"[\u202A-\u202E\u200E\u200F]")
# Combining diacritics, byte-order mark, zero-width and invisible formatting
INVISIBLE_PATTERN = re.compile(r"[\u0300-\u036F\uFEFF\u200B-\u200F\u2060-\u206F]+")
# Letters, numbers, punctuation, symbols
ALLOWED_CATEGORIES = ("L", "N", "P", "S")

KNOWN_EVENTS = (EVENT_HANDSHAKE, EVENT_POST)


def _is_allowed(char: str) -> bool:
    return char.isspace() or unicodedata.category(char)[0] in ALLOWED_CATEGORIES


def _sanitize_pass(text: str) -> str:
    normalized = unicodedata.normalize("NFKC", text)
    normalized = BIDI_CONTROL_PATTERN.sub("", normalized)
    normalized = INVISIBLE_PATTERN.sub("", normalized)
    return "".join(char for char in normalized if _is_allowed(char))


def sanitize_text(text: str, error_message: str = ERROR_MESSAGES["content_invalid"]) -> str:
    """
    Normalize text and drop everything that is not visible content

    Removing a code point can bring two characters together that NFKC
    composes, so passes repeat until the text stops changing.

    Args:
        text: Raw input
        error_message: Client-facing message when nothing is left

    Returns:
        Sanitized text

    Raises:
        EmptyAfterSanitize: if the result is empty or whitespace only
    """
    previous = None
    cleaned = text
    while cleaned != previous:
        previous = cleaned
        cleaned = _sanitize_pass(cleaned)

    if not cleaned.strip():
        raise EmptyAfterSanitize(error_message)

    return cleaned


def sanitize_content(content: str) -> str:
    """Sanitize message content"""
    return sanitize_text(content, ERROR_MESSAGES["content_invalid"])


def sanitize_username(username: str) -> str:
    """Sanitize a display name"""
    return sanitize_text(username, ERROR_MESSAGES["username_invalid"])


def validate_username(username: Any) -> str:
    """
    Check the raw username length, then sanitize it

    Raises:
        ValidationError: if missing, too long or empty after sanitization
    """
    if not isinstance(username, str) or not username:
        raise ValidationError(ERROR_MESSAGES["username_required"])

    if len(username) > MAX_USERNAME_LENGTH:
        raise ValidationError(ERROR_MESSAGES["username_too_long"])

    return sanitize_username(username)


def validate_json_payload(payload: Any) -> Tuple[bool, str]:
    """
    Validate the envelope of an inbound event

    Args:
        payload: Decoded JSON value

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not isinstance(payload, dict):
        log_security_event("invalid_payload_type", {"payload_type": type(payload).__name__})
        return False, ERROR_MESSAGES["invalid_format"]

    event_type = payload.get("t")
    if not isinstance(event_type, str):
        log_security_event("missing_event_type", {"keys": sorted(payload.keys())[:10]})
        return False, ERROR_MESSAGES["invalid_format"]

    if event_type not in KNOWN_EVENTS:
        log_security_event("unknown_event_type", {"event_type": event_type[:32]})
        return False, ERROR_MESSAGES["invalid_format"]

    return True, ""


def parse_event(raw: Union[str, bytes]) -> Dict[str, Any]:
    """
    Decode one inbound frame into an event dictionary

    Binary frames are accepted when they hold UTF-8 encoded JSON.

    Raises:
        ProtocolError: if the frame is not a JSON object with a known ``t`` tag
    """
    try:
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8")
        payload = json.loads(raw)
    except (TypeError, ValueError, RecursionError):
        raise ProtocolError()

    is_valid, error_msg = validate_json_payload(payload)
    if not is_valid:
        raise ProtocolError(error_msg)

    return payload


def validate_handshake_payload(payload: Dict[str, Any]) -> str:
    """
    Extract the credential token from a ``hi`` event

    Raises:
        AuthError: if the token is missing or not a string
    """
    token = payload.get("token")
    if not token:
        raise AuthError(ERROR_MESSAGES["token_required"])
    if not isinstance(token, str):
        raise AuthError(ERROR_MESSAGES["invalid_token"])
    return token


def _parse_parent_id(value: Any) -> Optional[int]:
    if value is None or value == 0 or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(ERROR_MESSAGES["parent_invalid"])
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    raise ValidationError(ERROR_MESSAGES["parent_invalid"])


def validate_post_payload(payload: Dict[str, Any]) -> Tuple[str, Optional[int]]:
    """
    Validate and sanitize a ``post`` event

    The length limit applies to the content as submitted, before sanitization.

    Args:
        payload: Decoded ``post`` event

    Returns:
        Tuple of (sanitized_content, parent_id)

    Raises:
        ValidationError: on missing, oversized or invisible-only content, or a
            malformed parent reference
    """
    message = payload.get("message")
    if not isinstance(message, dict):
        raise ValidationError(ERROR_MESSAGES["content_required"])

    content = message.get("content")
    if not isinstance(content, str) or not content:
        raise ValidationError(ERROR_MESSAGES["content_required"])

    if len(content) > MAX_MESSAGE_LENGTH:
        raise ValidationError(ERROR_MESSAGES["content_too_long"])

    parent_id = _parse_parent_id(message.get("parentId"))
    clean_content = sanitize_content(content)

    logger.debug(f"Post validated: length={len(clean_content)}, parent={parent_id}")
    return clean_content, parent_id
