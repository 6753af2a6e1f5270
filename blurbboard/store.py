"""
Durable message storage and reply-thread assembly
"""

import math
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Iterable, List, Optional

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    func,
    select,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from .constants import ERROR_MESSAGES, MAX_INSERT_ATTEMPTS, PAGE_SIZE
from .errors import BoardError, ConflictError, NotFoundError, StoreError, ValidationError
from .id_generator import IdGenerator
from .logger import get_logger, log_message_event
from .models import Message, MessagePage, User, as_utc, utcnow
from .validators import validate_username

logger = get_logger()

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=False),
    Column("username", String(80), nullable=False, unique=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

messages = Table(
    "messages",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=False),
    Column("content", Text, nullable=False),
    Column("timestamp", DateTime(timezone=True), nullable=False),
    Column("author", Integer, ForeignKey("users.id"), nullable=False),
    Column("parent_id", Integer, ForeignKey("messages.id"), nullable=True),
    Index("ix_messages_parent_id", "parent_id"),
    Index("ix_messages_timestamp", "timestamp"),
)

TABLES = {"message": messages, "user": users}


def order_threads(rows: Iterable[Message]) -> List[Message]:
    """
    Order thread rows for reading

    Threads come newest root first (root id breaks ties); inside a thread the
    root leads and replies follow oldest to newest. Every row must carry its
    ``root_id`` and its root must be among the rows.
    """
    rows = list(rows)
    root_timestamps = {row.id: row.timestamp for row in rows if row.id == row.root_id}

    ordered = sorted(rows, key=lambda row: (row.root_id, row.timestamp, row.id))
    # Stable sort keeps the per-thread order among equal root timestamps
    return sorted(ordered, key=lambda row: root_timestamps[row.root_id], reverse=True)


def _message_columns():
    return select(
        messages.c.id,
        messages.c.content,
        messages.c.timestamp,
        messages.c.author,
        messages.c.parent_id,
        users.c.username,
    ).select_from(messages.outerjoin(users, messages.c.author == users.c.id))


def _row_to_message(row, root_id: Optional[int] = None) -> Message:
    return Message(
        id=row.id,
        content=row.content,
        timestamp=as_utc(row.timestamp),
        author_id=row.author,
        author_name=row.username,
        parent_id=row.parent_id,
        root_id=root_id,
    )


class MessageStore:
    """Owns the messages table; reads users for author names"""

    def __init__(self, engine: AsyncEngine, id_generator: Optional[IdGenerator] = None,
                 page_size: int = PAGE_SIZE, max_insert_attempts: int = MAX_INSERT_ATTEMPTS):
        self.engine = engine
        self.id_generator = id_generator or IdGenerator(self.id_exists)
        self.page_size = page_size
        self.max_insert_attempts = max_insert_attempts

    @classmethod
    def from_url(cls, database_url: str, **kwargs) -> "MessageStore":
        return cls(create_async_engine(database_url, pool_pre_ping=True), **kwargs)

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncConnection]:
        """Run a unit of work; integrity errors pass through for the caller to classify"""
        try:
            async with self.engine.begin() as conn:
                yield conn
        except (BoardError, IntegrityError):
            raise
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Store operation failed: {operation}: {e!r}")
            raise StoreError() from e

    async def create_schema(self):
        async with self._transaction("create schema") as conn:
            await conn.run_sync(metadata.create_all)

    async def dispose(self):
        await self.engine.dispose()

    async def id_exists(self, kind: str, identifier: int) -> bool:
        table = TABLES[kind]
        async with self._transaction(f"{kind} id lookup") as conn:
            result = await conn.execute(select(table.c.id).where(table.c.id == identifier))
            return result.first() is not None

    async def message_exists(self, message_id: int) -> bool:
        return await self.id_exists("message", message_id)

    async def get_user(self, user_id: int) -> Optional[User]:
        async with self._transaction("user lookup") as conn:
            result = await conn.execute(
                select(users.c.id, users.c.username, users.c.created_at).where(users.c.id == user_id)
            )
            row = result.first()

        if row is None:
            return None
        return User(id=row.id, username=row.username, created_at=as_utc(row.created_at))

    async def create_user(self, username: str) -> User:
        """
        Provision a user row with a fresh identifier

        Registration proper (passwords, tokens) lives outside the board; this
        covers seeding and tests.
        """
        clean_username = validate_username(username)

        async with self._transaction("username lookup") as conn:
            result = await conn.execute(select(users.c.id).where(users.c.username == clean_username))
            if result.first() is not None:
                raise ValidationError(ERROR_MESSAGES["username_taken"])

        for attempt in range(1, self.max_insert_attempts + 1):
            user = User(
                id=await self.id_generator.new_id("user"),
                username=clean_username,
                created_at=utcnow(),
            )
            try:
                async with self._transaction("insert user") as conn:
                    await conn.execute(users.insert().values(
                        id=user.id, username=user.username, created_at=user.created_at,
                    ))
            except IntegrityError as e:
                if await self.id_exists("user", user.id):
                    logger.warning(f"User id conflict on insert ({user.id}), attempt {attempt}")
                    continue
                raise ValidationError(ERROR_MESSAGES["username_taken"]) from e

            logger.info(f"User created: {user.id} ({user.username})")
            return user

        logger.error(f"Gave up creating user after {self.max_insert_attempts} id conflicts")
        raise StoreError()

    async def _insert_message(self, message: Message):
        try:
            async with self._transaction("insert message") as conn:
                await conn.execute(messages.insert().values(
                    id=message.id,
                    content=message.content,
                    timestamp=message.timestamp,
                    author=message.author_id,
                    parent_id=message.parent_id,
                ))
        except IntegrityError as e:
            if await self.id_exists("message", message.id):
                raise ConflictError("message", message.id) from e
            logger.error(f"Message insert rejected: {e!r}")
            raise StoreError() from e

    async def post(self, author_id: int, content: str, parent_id: Optional[int] = None) -> Message:
        """
        Persist a new message and return it with the author's display name

        Args:
            author_id: Verified author identifier
            content: Sanitized content
            parent_id: Message being replied to, or None for a new thread

        Returns:
            Stored message

        Raises:
            ValidationError: empty content
            NotFoundError: parent or author does not exist
            StoreError: persistence failed, or id conflicts kept recurring
        """
        if not content or not content.strip():
            raise ValidationError(ERROR_MESSAGES["content_required"])

        if parent_id is not None and not await self.message_exists(parent_id):
            raise NotFoundError(ERROR_MESSAGES["parent_missing"])

        author = await self.get_user(author_id)
        if author is None:
            raise NotFoundError(ERROR_MESSAGES["user_missing"])

        for attempt in range(1, self.max_insert_attempts + 1):
            message = Message(
                id=await self.id_generator.new_id("message"),
                content=content,
                timestamp=utcnow(),
                author_id=author.id,
                author_name=author.username,
                parent_id=parent_id,
            )
            try:
                await self._insert_message(message)
            except ConflictError as e:
                logger.warning(f"{e}, regenerating (attempt {attempt}/{self.max_insert_attempts})")
                continue

            log_message_event(message.id, author.username, "stored", f"parent={parent_id}")
            return message

        logger.error(f"Gave up posting after {self.max_insert_attempts} id conflicts")
        raise StoreError()

    async def _expand_threads(self, conn: AsyncConnection, root_ids: List[int]) -> List[Message]:
        """Collect every message reachable from the roots by following parent_id"""
        collected: Dict[int, Message] = {}

        result = await conn.execute(_message_columns().where(messages.c.id.in_(root_ids)))
        for row in result:
            collected[row.id] = _row_to_message(row, root_id=row.id)
        frontier = list(collected)

        while frontier:
            result = await conn.execute(_message_columns().where(messages.c.parent_id.in_(frontier)))
            frontier = []
            for row in result:
                if row.id in collected:
                    continue
                collected[row.id] = _row_to_message(row, root_id=collected[row.parent_id].root_id)
                frontier.append(row.id)

        return list(collected.values())

    async def list_page(self, page: int = 1) -> MessagePage:
        """
        Fetch one page of threads

        Roots are paged newest first; each selected root brings its whole
        thread. A page past the end is empty, not an error.

        Args:
            page: 1-based page number; values below 1 read as 1

        Returns:
            MessagePage with rows in reading order
        """
        page = max(page, 1)

        async with self._transaction("list page") as conn:
            result = await conn.execute(
                select(func.count()).select_from(messages).where(messages.c.parent_id.is_(None))
            )
            total_roots = result.scalar_one()
            total_pages = math.ceil(total_roots / self.page_size)

            offset = (page - 1) * self.page_size
            if offset >= total_roots:
                return MessagePage(page=page, total_pages=total_pages, messages=[])

            result = await conn.execute(
                select(messages.c.id)
                .where(messages.c.parent_id.is_(None))
                .order_by(messages.c.timestamp.desc(), messages.c.id.asc())
                .limit(self.page_size)
                .offset(offset)
            )
            root_ids = [row.id for row in result]
            rows = await self._expand_threads(conn, root_ids)

        return MessagePage(page=page, total_pages=total_pages, messages=order_threads(rows))
