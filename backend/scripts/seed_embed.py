"""
Create or update an embed configuration.

Usage:
    python scripts/seed_embed.py my-embed "Support widget" \
        --system-prompt "You answer questions about our product." \
        --max-chats-per-session 50
"""
import os
import re
import sys
import asyncio
import argparse
from pathlib import Path

from dotenv import load_dotenv

backend_dir = Path(__file__).resolve().parent.parent
sys.path.append(str(backend_dir))
load_dotenv(dotenv_path=backend_dir / ".env", override=True)

from app.routes.embed import EMBED_ID_PATTERN  # noqa: E402
from app.services import database as db  # noqa: E402


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Create or update an embed configuration")
    parser.add_argument("embed_id")
    parser.add_argument("name")
    parser.add_argument("--system-prompt", default=None)
    parser.add_argument("--model", default=None)
    parser.add_argument("--temperature", type=float, default=None)
    parser.add_argument("--max-chats-per-session", type=int, default=None)
    parser.add_argument("--disabled", action="store_true")
    args = parser.parse_args(argv)
    if not re.match(EMBED_ID_PATTERN, args.embed_id):
        parser.error(f"embed_id must match {EMBED_ID_PATTERN}")
    return args


async def seed(args) -> None:
    await db.init_db()
    try:
        async with db.async_session() as session:
            async with session.begin():
                row = await db.upsert_embed_config(
                    session,
                    args.embed_id,
                    args.name,
                    enabled=not args.disabled,
                    system_prompt=args.system_prompt,
                    model=args.model,
                    temperature=args.temperature,
                    max_chats_per_session=args.max_chats_per_session,
                )
        state = "enabled" if row.enabled else "disabled"
        print(f"Embed {row.id} ({row.name}) saved, {state}")
        print(f"Widget endpoint: POST /api/embed/{row.id}/chat")
    finally:
        await db.close_db()


if __name__ == "__main__":
    if os.getenv("DATABASE_URL"):
        print(f"Using DATABASE_URL={os.getenv('DATABASE_URL')}")
    asyncio.run(seed(parse_args()))
