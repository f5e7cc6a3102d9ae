"""
Streaming chat responder for embedded chat widgets.

Builds the prompt from the embed configuration, the stored session history,
the optional user context and the caller's identity, then streams tokens
from a LangChain chat model as JSON events:

    {"type": "token", "content": "..."}

The completed turn is persisted once the model finishes.
"""
import os
import json
import logging
from typing import AsyncIterator, Callable, List, Optional, Sequence

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, AnyMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from app.models.chat import CallerMetadata
from app.models.embed import EmbedConfig
from app.services import database as db

log = logging.getLogger("responder")

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TEMPERATURE = 0.7
DEFAULT_HISTORY_LIMIT = 20

DEFAULT_SYSTEM_PROMPT = """You are a helpful assistant embedded on a website.

Guidelines:
- Be concise and friendly
- Answer in the language the user writes in
- If you don't know the answer, say so instead of guessing
- Take any context you are given about the user into account, but never repeat it back verbatim"""


LLMFactory = Callable[[EmbedConfig], BaseChatModel]


def openai_llm_factory(embed: EmbedConfig) -> BaseChatModel:
    """Default chat model: OpenAI, with per-embed model and temperature overrides."""
    api_key = (os.getenv("OPENAI_API_KEY") or "").strip()
    if not api_key or api_key == "your_openai_api_key_here":
        raise ValueError("OPENAI_API_KEY environment variable is required")

    temperature = embed.temperature
    if temperature is None:
        temperature = float(os.getenv("OPENAI_TEMPERATURE", DEFAULT_TEMPERATURE))

    return ChatOpenAI(
        model=embed.model or os.getenv("OPENAI_MODEL", DEFAULT_MODEL),
        temperature=temperature,
        streaming=True,
        max_retries=2,
        api_key=api_key,
    )


def build_messages(
    embed: EmbedConfig,
    message: str,
    history: Sequence[db.EmbedChat],
    context: Optional[str] = None,
    caller: Optional[CallerMetadata] = None,
) -> List[AnyMessage]:
    """Assemble the model input: system prompt, prior turns, then the new message."""
    system = embed.system_prompt or DEFAULT_SYSTEM_PROMPT
    if context:
        system += f"\n\nUser context: {context}"
    if caller is not None and caller.username:
        system += f"\n\nThe user's name is {caller.username}."

    messages: List[AnyMessage] = [SystemMessage(content=system)]
    for turn in history:
        messages.append(HumanMessage(content=turn.prompt))
        messages.append(AIMessage(content=turn.response))
    messages.append(HumanMessage(content=message))
    return messages


class StreamingChatResponder:
    """Streams a chat completion for one embed turn and records it."""

    def __init__(
        self,
        llm_factory: Optional[LLMFactory] = None,
        history_limit: Optional[int] = None,
    ):
        self.llm_factory = llm_factory or openai_llm_factory
        if history_limit is None:
            history_limit = int(os.getenv("EMBED_HISTORY_LIMIT", DEFAULT_HISTORY_LIMIT))
        self.history_limit = history_limit

    async def stream(
        self,
        embed: EmbedConfig,
        message: str,
        session_id: str,
        context: Optional[str],
        caller: Optional[CallerMetadata],
        *,
        turn_id: Optional[int] = None,
    ) -> AsyncIterator[str]:
        """
        Yield JSON token events; persist the turn when the model is done.

        turn_id names a turn the caller already reserved; it is completed in place
        instead of adding a new row.
        """
        llm = self.llm_factory(embed)

        async with db.async_session() as session:
            history = await db.get_chats(session, embed.id, session_id, limit=self.history_limit)

        messages = build_messages(embed, message, history, context, caller)
        log.debug(
            f"Streaming embed={embed.id} session={session_id} "
            f"history={len(history)} context={'yes' if context else 'no'}"
        )

        full_response = ""
        async for chunk in llm.astream(messages):
            if isinstance(chunk.content, str) and chunk.content:
                full_response += chunk.content
                yield json.dumps({"type": "token", "content": chunk.content})

        async with db.async_session() as session:
            async with session.begin():
                if turn_id is not None:
                    await db.complete_chat(session, turn_id, full_response)
                else:
                    await db.add_chat(
                        session,
                        embed.id,
                        session_id,
                        message,
                        full_response,
                        user_context=context,
                        username=caller.username if caller else None,
                    )


# Global responder instance (lazy initialization)
_responder_instance: Optional[StreamingChatResponder] = None


def get_responder() -> StreamingChatResponder:
    global _responder_instance
    if _responder_instance is None:
        _responder_instance = StreamingChatResponder()
    return _responder_instance
