"""Tests for the connection registry's state transitions and counting."""
import asyncio

import pytest

from blurbboard import ClientConnection, ConnectionRegistry, Identity
from conftest import FakeWebSocket


def new_connection(ip="10.0.0.1"):
    return ClientConnection(websocket=FakeWebSocket(), ip_address=ip)


@pytest.mark.asyncio
async def test_connections_start_unauthenticated():
    registry = ConnectionRegistry()
    connection = new_connection()

    assert await registry.add(connection) == 0
    assert not connection.is_authenticated
    assert await registry.get_connection_stats() == {"open_connections": 1, "authenticated_connections": 0}


@pytest.mark.asyncio
async def test_authenticate_counts_presence():
    registry = ConnectionRegistry()
    first, second = new_connection(), new_connection()
    await registry.add(first)
    await registry.add(second)

    assert await registry.authenticate(first.connection_id, Identity(1, "alice")) == 1
    assert await registry.authenticate(second.connection_id, Identity(2, "bob")) == 2
    assert first.identity.username == "alice"


@pytest.mark.asyncio
async def test_authenticate_unknown_connection():
    registry = ConnectionRegistry()
    assert await registry.authenticate("ws_missing", Identity(1, "alice")) is None


@pytest.mark.asyncio
async def test_remove_reports_prior_state_and_is_idempotent():
    registry = ConnectionRegistry()
    connection = new_connection()
    await registry.add(connection)
    await registry.authenticate(connection.connection_id, Identity(1, "alice"))

    assert await registry.remove(connection.connection_id) == (True, True, 0)
    assert await registry.remove(connection.connection_id) == (False, False, 0)
    assert await registry.snapshot() == []


@pytest.mark.asyncio
async def test_concurrent_disconnects_never_lose_updates():
    registry = ConnectionRegistry()
    connections = [new_connection() for _ in range(50)]
    for index, connection in enumerate(connections):
        await registry.add(connection)
        await registry.authenticate(connection.connection_id, Identity(index, f"user{index}"))

    results = await asyncio.gather(*(registry.remove(c.connection_id) for c in connections))

    assert sorted(count for _, _, count in results) == list(range(50))
    assert await registry.presence_count() == 0


@pytest.mark.asyncio
async def test_collect_dead_finds_closed_and_failed_connections():
    registry = ConnectionRegistry()
    healthy, dropped, failed = new_connection(), new_connection(), new_connection()
    for connection in (healthy, dropped, failed):
        await registry.add(connection)

    assert await registry.collect_dead() == []

    dropped.websocket.drop()
    assert await registry.mark_dead(failed.connection_id)

    dead = await registry.collect_dead()
    assert {c.connection_id for c in dead} == {dropped.connection_id, failed.connection_id}


@pytest.mark.asyncio
async def test_mark_dead_unknown_connection():
    registry = ConnectionRegistry()
    assert not await registry.mark_dead("ws_missing")
