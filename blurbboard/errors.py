"""
Error taxonomy for the real-time protocol and the message store

Every error carries a client-safe ``message``. Handlers reply with that text
on the originating connection only; anything that is not a ``BoardError`` is
logged and reported with a generic message.
"""

from .constants import ERROR_MESSAGES


class BoardError(Exception):
    """Base class for errors that may be reported back to a client"""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ProtocolError(BoardError):
    """Payload is not well-formed for the declared event"""

    def __init__(self, message: str = ERROR_MESSAGES["invalid_format"]):
        super().__init__(message)


class AuthError(BoardError):
    """Missing or invalid token, or an action attempted before the handshake"""


class ValidationError(BoardError):
    """Missing, oversized or otherwise unacceptable input"""


class EmptyAfterSanitize(ValidationError):
    """Text reduced to nothing once invisible and disallowed code points were removed"""


class NotFoundError(ValidationError):
    """A referenced row (parent message, author) does not exist"""


class RateLimitError(BoardError):
    """The origin's cooldown window has not elapsed"""

    def __init__(self, message: str = ERROR_MESSAGES["rate_limit"]):
        super().__init__(message)


class ConflictError(BoardError):
    """Primary-key collision on insert; retried by the store, never surfaced"""

    def __init__(self, kind: str, identifier: int):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} id {identifier} already exists")


class StoreError(BoardError):
    """Persistence failure; the cause is logged, the client sees a generic error"""

    def __init__(self, message: str = ERROR_MESSAGES["internal"]):
        super().__init__(message)
