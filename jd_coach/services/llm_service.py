"""
LLM Service — centralized chat-model client for every external model call.

Provides:
  - LLMService.get_llm()     → configured LangChain chat model (lazy)
  - LLMService.text_call()   → async raw text response with a timeout
  - extract_json()           → first JSON object/array in a model reply
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any

from jd_coach.config import Settings

logger = logging.getLogger(__name__)


class LLMService:
    def __init__(self, settings: Settings):
        self.settings = settings
        self._llm: Any = None

    @property
    def is_configured(self) -> bool:
        return bool(self.settings.llm_api_key)

    def get_llm(self) -> Any:
        """Return the configured chat model, creating it on first use."""
        if self._llm is not None:
            return self._llm

        settings = self.settings
        if not self.is_configured:
            raise ValueError(f"No API key configured for LLM provider '{settings.llm_provider}'")

        if settings.llm_provider == "groq":
            from langchain_groq import ChatGroq

            self._llm = ChatGroq(
                api_key=settings.groq_api_key,
                model=settings.llm_model,
                temperature=settings.llm_temperature,
                max_tokens=settings.llm_max_tokens,
            )
        else:
            from langchain_anthropic import ChatAnthropic

            self._llm = ChatAnthropic(
                api_key=settings.anthropic_api_key,
                model=settings.llm_model,
                temperature=settings.llm_temperature,
                max_tokens=settings.llm_max_tokens,
            )
        logger.info(f"Initialized {settings.llm_provider} LLM: {settings.llm_model}")
        return self._llm

    async def text_call(self, system: str, prompt: str, timeout: float) -> str:
        """
        Call the model and return its text. Raises ``asyncio.TimeoutError``
        when *timeout* elapses and propagates transport errors unchanged.
        """
        logger.debug(f"[LLM-TEXT] Prompt length: {len(prompt)} chars | timeout={timeout}s")
        logger.debug(f"[LLM-TEXT] Prompt preview:\n{prompt[:500]}{'…' if len(prompt) > 500 else ''}")

        llm = self.get_llm()
        t0 = time.perf_counter()
        response = await asyncio.wait_for(
            llm.ainvoke([("system", system), ("human", prompt)]),
            timeout=timeout,
        )
        elapsed = time.perf_counter() - t0

        content = _content_text(getattr(response, "content", response))
        meta = getattr(response, "response_metadata", {}) or {}
        logger.info(
            f"[LLM-TEXT] Response received in {elapsed:.2f}s | "
            f"Response length: {len(content)} chars | "
            f"stop_reason={meta.get('stop_reason') or meta.get('finish_reason', 'unknown')}"
        )
        logger.debug(f"[LLM-TEXT] Full response:\n{content}")
        return content


def _content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return "" if content is None else str(content)


def extract_json(raw: str, opener: str = "{") -> Any:
    """
    Parse the first JSON value opened by *opener* in a model reply.
    Markdown code fences and surrounding prose are tolerated; returns
    ``None`` when nothing parseable is found.
    """
    text = (raw or "").strip()
    if not text:
        return None

    # Strip markdown code fences
    if text.startswith("```"):
        lines = [line for line in text.split("\n") if not line.strip().startswith("```")]
        text = "\n".join(lines).strip()

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    closer = "}" if opener == "{" else "]"
    start = text.find(opener)
    end = text.rfind(closer)
    if start == -1 or end <= start:
        return None
    try:
        return json.loads(text[start:end + 1])
    except json.JSONDecodeError as exc:
        logger.warning(f"[LLM] JSON parse error: {exc}")
        return None
