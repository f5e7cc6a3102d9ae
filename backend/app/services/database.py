"""
SQLite persistence layer using SQLAlchemy async.

Provides:
- Async engine + session factory
- SQLAlchemy ORM models (EmbedConfigRow, EmbedChat)
- CRUD helpers used by the embed routes and the streaming responder
"""
import os
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    select,
    insert,
    update,
    delete,
    func,
    literal,
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, relationship

log = logging.getLogger("database")

# ── Database path ──
# Default: backend/data/embed_chat.db
_backend_dir = Path(__file__).resolve().parent.parent.parent
_data_dir = _backend_dir / "data"
_data_dir.mkdir(exist_ok=True)

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{_data_dir / 'embed_chat.db'}",
)

# ── Engine & Session ──

engine = create_async_engine(DATABASE_URL, echo=False)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


# ── Base ──

class Base(DeclarativeBase):
    pass


# ── ORM Models ──

class EmbedConfigRow(Base):
    __tablename__ = "embed_configs"

    id = Column(String, primary_key=True)  # public embed id used by the widget
    name = Column(String, nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
    system_prompt = Column(Text, nullable=True)
    model = Column(String, nullable=True)  # overrides OPENAI_MODEL
    temperature = Column(Float, nullable=True)
    max_chats_per_session = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    chats = relationship("EmbedChat", back_populates="embed", cascade="all, delete-orphan")


class EmbedChat(Base):
    """One row per turn: the user's prompt and the streamed response (NULL while pending)."""
    __tablename__ = "embed_chats"

    id = Column(Integer, primary_key=True, autoincrement=True)
    embed_id = Column(String, ForeignKey("embed_configs.id"), nullable=False, index=True)
    session_id = Column(String, nullable=False, index=True)
    prompt = Column(Text, nullable=False)
    response = Column(Text, nullable=True)
    user_context = Column(Text, nullable=True)
    username = Column(String, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    embed = relationship("EmbedConfigRow", back_populates="chats")


# ── Lifecycle ──

async def init_db():
    """Create all tables (idempotent)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    log.info(f"Database ready: {DATABASE_URL}")


async def close_db():
    """Dispose engine on shutdown."""
    await engine.dispose()


# ── CRUD: Embed configs ──

async def get_embed_config(session: AsyncSession, embed_id: str) -> Optional[EmbedConfigRow]:
    """Return the embed configuration, or None if the id is unknown."""
    result = await session.execute(
        select(EmbedConfigRow).where(EmbedConfigRow.id == embed_id)
    )
    return result.scalar_one_or_none()


async def upsert_embed_config(
    session: AsyncSession,
    embed_id: str,
    name: str,
    *,
    enabled: bool = True,
    system_prompt: Optional[str] = None,
    model: Optional[str] = None,
    temperature: Optional[float] = None,
    max_chats_per_session: Optional[int] = None,
) -> EmbedConfigRow:
    """Create an embed configuration, or overwrite the existing one with the same id."""
    row = await get_embed_config(session, embed_id)
    if row is None:
        row = EmbedConfigRow(id=embed_id)
        session.add(row)
    row.name = name
    row.enabled = enabled
    row.system_prompt = system_prompt
    row.model = model
    row.temperature = temperature
    row.max_chats_per_session = max_chats_per_session
    await session.flush()
    return row


# ── CRUD: Chat turns ──
# A turn is reserved (response NULL) before streaming and completed afterwards.

async def reserve_chat(
    session: AsyncSession,
    embed_id: str,
    session_id: str,
    prompt: str,
    *,
    limit: Optional[int] = None,
    user_context: Optional[str] = None,
    username: Optional[str] = None,
) -> Optional[int]:
    """
    Insert a pending turn and return its id.

    With a limit, the count and the insert are one INSERT ... SELECT statement,
    so concurrent requests cannot both take the last slot. Returns None when the
    session already holds `limit` turns.
    """
    table = EmbedChat.__table__
    values = select(
        literal(embed_id, String),
        literal(session_id, String),
        literal(prompt, Text),
        literal(user_context, Text),
        literal(username, String),
        literal(datetime.now(timezone.utc), DateTime),
    )
    if limit is not None:
        used = (
            select(func.count(table.c.id))
            .where(table.c.embed_id == embed_id, table.c.session_id == session_id)
            .correlate(None)
            .scalar_subquery()
        )
        values = values.where(used < limit)

    result = await session.execute(
        insert(table)
        .from_select(
            ["embed_id", "session_id", "prompt", "user_context", "username", "created_at"],
            values,
        )
        .returning(table.c.id)
    )
    return result.scalar_one_or_none()


async def complete_chat(session: AsyncSession, chat_id: int, response: str) -> None:
    """Store the streamed response on a reserved turn."""
    await session.execute(
        update(EmbedChat.__table__)
        .where(EmbedChat.__table__.c.id == chat_id)
        .values(response=response)
    )


async def release_chat(session: AsyncSession, chat_id: int) -> None:
    """Drop a reserved turn that never got a response."""
    await session.execute(
        delete(EmbedChat.__table__).where(
            EmbedChat.__table__.c.id == chat_id,
            EmbedChat.__table__.c.response.is_(None),
        )
    )


async def add_chat(
    session: AsyncSession,
    embed_id: str,
    session_id: str,
    prompt: str,
    response: str,
    *,
    user_context: Optional[str] = None,
    username: Optional[str] = None,
) -> EmbedChat:
    """Persist a completed turn."""
    chat = EmbedChat(
        embed_id=embed_id,
        session_id=session_id,
        prompt=prompt,
        response=response,
        user_context=user_context,
        username=username,
    )
    session.add(chat)
    await session.flush()
    return chat


async def get_chats(
    session: AsyncSession, embed_id: str, session_id: str, limit: Optional[int] = 20
) -> List[EmbedChat]:
    """Retrieve the most recent completed turns for a session, oldest first. limit=None returns all."""
    query = (
        select(EmbedChat)
        .where(
            EmbedChat.embed_id == embed_id,
            EmbedChat.session_id == session_id,
            EmbedChat.response.is_not(None),
        )
        .order_by(EmbedChat.id.desc())
    )
    if limit is not None:
        query = query.limit(limit)
    result = await session.execute(query)
    rows = list(result.scalars().all())
    rows.reverse()  # chronological order
    return rows


async def count_chats(session: AsyncSession, embed_id: str, session_id: str) -> int:
    """Number of turns stored for a session, pending ones included."""
    result = await session.execute(
        select(func.count(EmbedChat.id)).where(
            EmbedChat.embed_id == embed_id, EmbedChat.session_id == session_id
        )
    )
    return result.scalar_one()


async def delete_chats(session: AsyncSession, embed_id: str, session_id: str) -> int:
    """Remove every turn of a session. Returns the number of rows deleted."""
    result = await session.execute(
        delete(EmbedChat).where(
            EmbedChat.embed_id == embed_id, EmbedChat.session_id == session_id
        )
    )
    return result.rowcount
