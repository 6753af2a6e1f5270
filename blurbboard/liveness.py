"""
Periodic reaping of connections that can no longer be reached
"""

import asyncio
from typing import Iterable, Optional

from .constants import CLOSE_CODE_GOING_AWAY, HEARTBEAT_INTERVAL_SECONDS, RATE_LIMIT_PRUNE_AFTER_SECONDS
from .logger import get_logger, log_connection_event, log_system_event
from .message_handler import MessageHandler
from .models import ClientConnection
from .rate_limiter import RateLimiter
from .registry import ConnectionRegistry

logger = get_logger()


class LivenessMonitor:
    """Closes and unregisters connections that stopped answering

    The probe is the WebSocket protocol ping the server sends every
    heartbeat period; clients answer it without any application code. A
    peer that misses the pong for a whole period has its socket closed, and
    a failed send flags the connection too. Each sweep closes and removes
    every such connection, so it leaves the presence count even while its
    receive loop is still busy with an earlier event.
    """

    def __init__(self, registry: ConnectionRegistry, handler: MessageHandler,
                 interval_seconds: float = HEARTBEAT_INTERVAL_SECONDS,
                 rate_limiters: Iterable[RateLimiter] = ()):
        self.registry = registry
        self.handler = handler
        self.interval_seconds = interval_seconds
        self.rate_limiters = list(rate_limiters)
        self._task: Optional[asyncio.Task] = None

    async def _terminate(self, connection: ClientConnection):
        try:
            await connection.websocket.close(code=CLOSE_CODE_GOING_AWAY)
        except Exception as e:
            # Already closed by the peer or the transport
            logger.debug(f"Close of {connection.connection_id} failed: {e!r}")

    async def sweep(self) -> int:
        """
        Run one reap cycle

        Returns:
            Number of connections terminated
        """
        dead = await self.registry.collect_dead()

        lost_presence = False
        count = None
        for connection in dead:
            log_connection_event(connection.connection_id, "terminate", connection.ip_address,
                                 connection.display_name)
            await self._terminate(connection)
            removed, was_authenticated, count = await self.registry.remove(connection.connection_id)
            lost_presence = lost_presence or (removed and was_authenticated)

        if lost_presence:
            await self.handler.broadcast_presence(count)

        for limiter in self.rate_limiters:
            await limiter.prune(RATE_LIMIT_PRUNE_AFTER_SECONDS)

        if dead:
            logger.info(f"Liveness sweep terminated {len(dead)} connections")
        return len(dead)

    async def run(self):
        """Sweep forever on a fixed period"""
        log_system_event("liveness_monitor", f"started, interval={self.interval_seconds}s")
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.sweep()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Liveness sweep error: {e!r}", exc_info=True)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        log_system_event("liveness_monitor", "stopped")
