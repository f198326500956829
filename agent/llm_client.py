"""
LLM Client
==========
Minimal async client for any OpenAI-compatible /chat/completions endpoint
(OpenAI, OpenRouter, a local Ollama/vLLM server, ...).

Used by:
- agent/insights.py   : JSON-mode trading insight generation
- agent/oracle_chat.py: free-text conversation with the Shadow Oracle

Unlike the price oracle, this client RAISES LLMError on failure: callers
decide how a failed generation is surfaced to the user.
"""

import json
import re
from typing import Any

import aiohttp

from config.settings import Settings
from utils.logger import get_logger

logger = get_logger(__name__)


class LLMError(Exception):
    """The model endpoint failed or returned something unusable."""


class LLMClient:
    """
    Usage:
        llm = LLMClient(settings)
        await llm.initialize()
        text = await llm.chat([{"role": "user", "content": "gm"}])
        await llm.close()
    """

    def __init__(self, settings: Settings, session: aiohttp.ClientSession | None = None):
        self.settings = settings
        self.base_url = settings.llm_base_url.rstrip("/")
        self.session = session
        self._owns_session = session is None

    async def initialize(self) -> None:
        if self.session is None:
            self.session = aiohttp.ClientSession()
        logger.info("llm_client_initialized", base_url=self.base_url, model=self.settings.llm_model)

    async def close(self) -> None:
        if self.session and self._owns_session:
            await self.session.close()

    async def chat(self, messages: list[dict[str, str]], json_mode: bool = False) -> str:
        """Send a conversation and return the assistant's reply text."""
        if not self.settings.llm_api_key:
            raise LLMError("LLM_API_KEY is not configured.")

        payload: dict[str, Any] = {
            "model": self.settings.llm_model,
            "messages": messages,
            "temperature": self.settings.llm_temperature,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        headers = {"Authorization": f"Bearer {self.settings.llm_api_key}"}
        url = f"{self.base_url}/chat/completions"
        logger.debug("llm_request", url=url, messages=len(messages), json_mode=json_mode)

        try:
            async with self.session.post(url, json=payload, headers=headers) as response:
                if response.status != 200:
                    error_text = await response.text()
                    logger.error("llm_http_error", status=response.status, error=error_text[:200])
                    raise LLMError(f"LLM HTTP {response.status}")
                data = await response.json()
        except aiohttp.ClientError as e:
            logger.error("llm_request_exception", error=str(e))
            raise LLMError(f"LLM request failed: {e}") from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise LLMError("LLM response had no message content.") from e
        if not content:
            raise LLMError("LLM returned an empty message.")
        return content

    async def chat_json(self, messages: list[dict[str, str]]) -> dict[str, Any]:
        """Like chat(), but the reply must contain one JSON object."""
        raw = await self.chat(messages, json_mode=True)
        parsed = extract_json(raw)
        if parsed is None:
            logger.error("llm_json_parse_failed", preview=raw[:300])
            raise LLMError("LLM did not return valid JSON.")
        return parsed


def extract_json(raw: str) -> dict[str, Any] | None:
    """
    Pull the first JSON object out of a model reply.
    Handles bare JSON, ```json fenced blocks, and prose around an object.
    """
    if not raw:
        return None

    candidates = [raw.strip()]
    fenced = re.search(r"```(?:json)?\s*(\{.*?\})\s*```", raw, re.DOTALL)
    if fenced:
        candidates.append(fenced.group(1))
    start, end = raw.find("{"), raw.rfind("}")
    if start != -1 and end > start:
        candidates.append(raw[start:end + 1])

    for blob in candidates:
        try:
            parsed = json.loads(blob)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None
