"""
Protocol dispatch for one connection's events, and fan-out to all connections
"""

import asyncio
import json
from typing import Any, Dict, Optional, Union

from .auth import IdentityVerifier
from .constants import (
    ERROR_MESSAGES,
    EVENT_ERROR,
    EVENT_HANDSHAKE,
    EVENT_NEW_MESSAGE,
    EVENT_POST,
    EVENT_PRESENCE,
)
from .errors import AuthError, BoardError, ProtocolError, RateLimitError
from .logger import get_logger, log_message_event, log_security_event, log_websocket_event
from .models import ClientConnection, Message
from .rate_limiter import RateLimiter
from .registry import ConnectionRegistry
from .store import MessageStore
from .validators import parse_event, validate_handshake_payload, validate_post_payload

logger = get_logger()


class MessageHandler:
    """Handles inbound events and broadcasts protocol events"""

    def __init__(self, registry: ConnectionRegistry, store: MessageStore, verifier: IdentityVerifier,
                 handshake_limiter: RateLimiter, post_limiter: RateLimiter,
                 presence_enabled: bool = True):
        self.registry = registry
        self.store = store
        self.verifier = verifier
        self.handshake_limiter = handshake_limiter
        self.post_limiter = post_limiter
        self.presence_enabled = presence_enabled

    async def send_event(self, websocket: Any, event: Dict[str, Any]) -> bool:
        """
        Send one event to one client

        Returns:
            True if the frame was handed to the transport
        """
        try:
            await websocket.send_text(json.dumps(event))
            return True
        except Exception as e:
            logger.warning(f"Failed to send {event.get('t')} event: {e!r}")
            return False

    async def send_error_message(self, error_message: str, websocket: Any) -> bool:
        return await self.send_event(websocket, {"t": EVENT_ERROR, "error": error_message})

    async def send_presence(self, websocket: Any, count: int) -> bool:
        """Tell a single client the current presence count"""
        if not self.presence_enabled:
            return False
        return await self.send_event(websocket, {"t": EVENT_PRESENCE, "count": count})

    async def _deliver(self, connection: ClientConnection, frame: str) -> bool:
        try:
            await connection.websocket.send_text(frame)
            return True
        except Exception as e:
            logger.warning(f"Broadcast to {connection.connection_id} failed: {e!r}")
            await self.registry.mark_dead(connection.connection_id)
            return False

    async def broadcast(self, event: Dict[str, Any]) -> int:
        """
        Deliver an event to every open connection, authenticated or not

        Delivery is best-effort: a failed send is logged and skipped.

        Args:
            event: Protocol event

        Returns:
            Number of connections the event was delivered to
        """
        connections = await self.registry.snapshot()
        if not connections:
            return 0

        frame = json.dumps(event)
        results = await asyncio.gather(
            *(self._deliver(connection, frame) for connection in connections)
        )
        delivered = sum(1 for result in results if result)

        logger.debug(f"Broadcast {event.get('t')} to {delivered}/{len(connections)} connections")
        return delivered

    async def broadcast_presence(self, count: int) -> int:
        if not self.presence_enabled:
            return 0
        return await self.broadcast({"t": EVENT_PRESENCE, "count": count})

    async def broadcast_new_message(self, message: Message) -> int:
        return await self.broadcast({"t": EVENT_NEW_MESSAGE, "message": message.to_dict()})

    async def handle_event(self, raw: Union[str, bytes], connection: ClientConnection):
        """
        Process one inbound frame

        Never raises: every failure is reported to this connection only.

        Args:
            raw: Frame payload, text or binary
            connection: Originating connection
        """
        try:
            payload = parse_event(raw)
        except ProtocolError as e:
            log_websocket_event("malformed_event", connection.connection_id, f"length={len(raw)}")
            await self.send_error_message(e.message, connection.websocket)
            return

        event_type = payload["t"]
        log_websocket_event("event_received", connection.connection_id, f"t={event_type}")

        try:
            if event_type == EVENT_HANDSHAKE:
                await self.handle_handshake(payload, connection)
            elif event_type == EVENT_POST:
                await self.handle_post(payload, connection)
        except Exception as e:
            logger.error(f"Unhandled error in {event_type} for {connection.connection_id}: {e!r}",
                         exc_info=True)
            await self.send_error_message(ERROR_MESSAGES["internal"], connection.websocket)

    async def handle_handshake(self, payload: Dict[str, Any], connection: ClientConnection) -> bool:
        """
        Authenticate a connection from a ``hi`` event

        On failure the connection stays unauthenticated and may retry.

        Returns:
            True if the connection is now authenticated
        """
        websocket = connection.websocket

        try:
            is_allowed, rate_error = await self.handshake_limiter.check_and_record(connection.ip_address)
            if not is_allowed:
                raise RateLimitError(rate_error)

            token = validate_handshake_payload(payload)
            identity = self.verifier.verify(token)
            if identity is None:
                raise AuthError(ERROR_MESSAGES["invalid_token"])

        except BoardError as e:
            log_security_event("handshake_failed", {
                "conn": connection.connection_id,
                "ip": connection.ip_address,
                "error": e.message,
            })
            await self.send_event(websocket, {"t": EVENT_HANDSHAKE, "success": False, "error": e.message})
            return False

        count = await self.registry.authenticate(connection.connection_id, identity)
        if count is None:
            return False

        await self.send_event(websocket, {"t": EVENT_HANDSHAKE, "success": True})
        await self.broadcast_presence(count)
        return True

    async def handle_post(self, payload: Dict[str, Any], connection: ClientConnection) -> Optional[Message]:
        """
        Store a message from a ``post`` event and broadcast it

        The sender gets the ``nm`` broadcast like everyone else, followed by
        its own ``post`` acknowledgment.

        Returns:
            The stored message, or None if the post was rejected
        """
        websocket = connection.websocket
        submitted = payload.get("message")

        try:
            if not connection.is_authenticated:
                raise AuthError(ERROR_MESSAGES["not_authenticated"])

            is_allowed, rate_error = await self.post_limiter.check_and_record(connection.ip_address)
            if not is_allowed:
                raise RateLimitError(rate_error)

            content, parent_id = validate_post_payload(payload)
            message = await self.store.post(connection.identity.id, content, parent_id)

        except BoardError as e:
            log_message_event(0, connection.display_name, "rejected", e.message)
            await self.send_event(websocket, {
                "t": EVENT_POST,
                "success": False,
                "error": e.message,
                "message": submitted,
            })
            return None

        recipients = await self.broadcast_new_message(message)
        log_message_event(message.id, connection.display_name, "broadcast", f"recipients={recipients}")

        await self.send_event(websocket, {"t": EVENT_POST, "success": True})
        return message
