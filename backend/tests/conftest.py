"""
Shared fixtures for the test suite.

Key design decisions:
- Uses a file-backed SQLite DB under tmp_path per test (isolated; concurrent
  requests get their own connections).
- Replaces the streaming responder with a recording fake (no real LLM calls).
- Drives the FastAPI app in-process through httpx's ASGI transport.
"""
import json
from pathlib import Path

import pytest
import pytest_asyncio
import httpx

# Ensure env is loaded before anything else
from dotenv import load_dotenv

backend_dir = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=backend_dir / ".env", override=True)

EMBED_ID = "support-widget"
DISABLED_EMBED_ID = "retired-widget"
LIMITED_EMBED_ID = "limited-widget"


# ── Fake responder ──


class FakeResponder:
    """Records every invocation and streams canned token events."""

    def __init__(self, tokens=("Hello", " there", "!"), fail_at=None):
        self.tokens = list(tokens)
        self.fail_at = fail_at
        self.calls = []
        self.closed = False

    def stream(self, embed, message, session_id, context, caller, *, turn_id=None):
        self.calls.append(
            {
                "embed": embed,
                "message": message,
                "session_id": session_id,
                "context": context,
                "caller": caller,
                "turn_id": turn_id,
            }
        )
        return self._events()

    async def _events(self):
        try:
            for i, token in enumerate(self.tokens):
                if self.fail_at == i:
                    raise RuntimeError("model exploded")
                yield json.dumps({"type": "token", "content": token})
        finally:
            self.closed = True


@pytest.fixture
def responder(monkeypatch):
    """Install a fake responder behind the embed route."""
    import app.routes.embed as embed_routes

    fake = FakeResponder()
    monkeypatch.setattr(embed_routes, "get_responder", lambda: fake)
    return fake


# ── In-memory SQLite for tests ──


@pytest_asyncio.fixture(autouse=True)
async def reset_database(tmp_path):
    """
    Swap the DB engine to a per-test file-backed SQLite before each test,
    create tables, seed embeds, and tear down after.
    """
    from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
    from app.services import database as db_mod

    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    test_session_factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)

    # Monkey-patch the module
    original_engine = db_mod.engine
    original_session = db_mod.async_session
    db_mod.engine = test_engine
    db_mod.async_session = test_session_factory

    async with test_engine.begin() as conn:
        await conn.run_sync(db_mod.Base.metadata.create_all)

    async with test_session_factory() as session:
        async with session.begin():
            await db_mod.upsert_embed_config(
                session, EMBED_ID, "Support", system_prompt="You help new employees."
            )
            await db_mod.upsert_embed_config(
                session, DISABLED_EMBED_ID, "Retired", enabled=False
            )
            await db_mod.upsert_embed_config(
                session, LIMITED_EMBED_ID, "Limited", max_chats_per_session=2
            )

    yield

    # Teardown
    await test_engine.dispose()
    db_mod.engine = original_engine
    db_mod.async_session = original_session


# ── HTTP client ──


@pytest_asyncio.fixture
async def client():
    """Async client bound to the app, no network involved."""
    from app.main import app

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


def sse_payloads(body: str):
    """Split an SSE body into its `data:` payloads."""
    return [
        frame[len("data: "):]
        for frame in body.split("\n\n")
        if frame.startswith("data: ")
    ]
