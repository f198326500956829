"""
Oracle Chat
===========
Conversational "Shadow Oracle" assistant for the profile page.

History arrives from the browser as loosely-typed JSON. It is narrowed here
into tagged ChatMessage variants {role: "user" | "model", content: str}
before anything is sent to the model; bad entries are rejected up front.

The user's live performance summary is injected into the system prompt so
the oracle can comment on it without making numbers up.
"""

from typing import Literal

from pydantic import BaseModel, Field

from agent.llm_client import LLMClient, LLMError
from utils.logger import get_logger

logger = get_logger(__name__)

FALLBACK_REPLY = "The Oracle is currently recalibrating... please try again in a moment."

# our "model" role is the endpoint's "assistant"
_ROLE_MAP = {"user": "user", "model": "assistant"}

ORACLE_PERSONA = """You are the Shadow Oracle, a witty and insightful AI trading assistant in the Shadow Arena.
Your personality is a mix of a seasoned crypto trader and a cyberpunk information broker: concise, a bit cryptic, always helpful.
- Answer questions about trading concepts (e.g. "what is RSI?").
- Give opinions on market sentiment, but never financial advice.
- When asked about performance, use ONLY the stats below. Never invent numbers.
Address the user as "Pilot". Keep answers to 2-3 sentences."""


class ChatMessage(BaseModel):
    role: Literal["user", "model"]
    content: str = Field(max_length=4000)


class OracleChat:
    """
    Usage:
        chat = OracleChat(llm, db, user_id="default_user")
        reply = await chat.ask(history, "How am I doing?")
    """

    def __init__(self, llm: LLMClient, db, user_id: str, max_history: int = 20):
        self.llm = llm
        self.db = db
        self.user_id = user_id
        self.max_history = max_history

    async def ask(self, history: list[ChatMessage], message: str) -> str:
        """Reply to `message` given prior turns. Never raises: returns a fallback line instead."""
        try:
            stats = await self.db.get_user_stats_summary(self.user_id)
        except Exception as e:
            logger.warning("oracle_stats_unavailable", user_id=self.user_id, error=str(e))
            stats = "Stats unavailable right now."

        messages = [{"role": "system", "content": f"{ORACLE_PERSONA}\n\nPilot stats: {stats}"}]
        for turn in history[-self.max_history:]:
            messages.append({"role": _ROLE_MAP[turn.role], "content": turn.content})
        messages.append({"role": "user", "content": message})

        try:
            reply = await self.llm.chat(messages)
        except LLMError as e:
            logger.error("oracle_chat_failed", error=str(e))
            return FALLBACK_REPLY
        except Exception as e:
            logger.error("oracle_chat_error", error=str(e), type=type(e).__name__)
            return FALLBACK_REPLY

        logger.info("oracle_replied", history=len(history), chars=len(reply))
        return reply.strip()
