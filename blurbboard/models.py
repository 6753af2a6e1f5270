"""
Data models for the Blurb Board server
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import uuid

from fastapi.websockets import WebSocketState


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from backends that drop tzinfo"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat(value: datetime) -> str:
    return as_utc(value).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class Identity:
    """Verified caller identity taken from a credential token"""
    id: int
    username: str


@dataclass
class User:
    """Registered user, read-only to the board core"""
    id: int
    username: str
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "createdAt": isoformat(self.created_at),
        }


@dataclass
class Message:
    """Stored message joined with its author's display name"""
    id: int
    content: str
    timestamp: datetime
    author_id: int
    author_name: Optional[str] = None
    parent_id: Optional[int] = None
    root_id: Optional[int] = None

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    def to_dict(self, include_root: bool = False) -> Dict[str, Any]:
        """Convert to the camelCase shape used on the wire"""
        data = {
            "id": self.id,
            "content": self.content,
            "timestamp": isoformat(self.timestamp),
            "authorId": self.author_id,
            "authorName": self.author_name,
            "parentId": self.parent_id,
        }
        if include_root:
            data["rootId"] = self.root_id
        return data


@dataclass
class MessagePage:
    """One page of threads from the read API"""
    page: int
    total_pages: int
    messages: List[Message] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "page": self.page,
            "totalPages": self.total_pages,
            "messages": [message.to_dict(include_root=True) for message in self.messages],
        }


@dataclass
class ClientConnection:
    """One open WebSocket and what the server knows about it"""
    websocket: Any = None  # WebSocket connection object
    ip_address: str = "unknown"
    connection_id: str = field(default_factory=lambda: f"ws_{uuid.uuid4().hex[:12]}")
    connected_at: datetime = field(default_factory=utcnow)
    # Cleared once a send to this client fails
    is_alive: bool = True
    identity: Optional[Identity] = None

    @property
    def is_authenticated(self) -> bool:
        return self.identity is not None

    @property
    def display_name(self) -> str:
        return self.identity.username if self.identity else "-"

    @property
    def transport_open(self) -> bool:
        """False once either side of the socket is known to be closed"""
        return (self.websocket.client_state == WebSocketState.CONNECTED
                and self.websocket.application_state == WebSocketState.CONNECTED)
