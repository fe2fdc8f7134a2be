"""Natural-language estimation insight from an external text model."""

from __future__ import annotations

import logging
from typing import Any, Sequence

import httpx

logger = logging.getLogger(__name__)

GEMINI_API_URL = "https://generativelanguage.googleapis.com/v1beta"
UNAVAILABLE_MESSAGE = "The AI coach is currently unavailable to analyze these votes."
EMPTY_MESSAGE = "No insights available at this time."

PROMPT_TEMPLATE = """As an Agile Coach, analyze the following Planning Poker estimation results:
Task: "{title}"
Description: "{description}"
Votes Received: {votes}

Provide a concise 2-3 sentence analysis.
If there is high variance (e.g., someone voted 3 and someone voted 13), suggest what technical risks or misunderstandings might be causing the gap.
If consensus is high, suggest why the task is well-understood.
Do not use markdown formatting, just plain text."""


def build_prompt(title: str, description: str, votes: Sequence[str]) -> str:
    return PROMPT_TEMPLATE.format(title=title, description=description, votes=", ".join(votes))


def extract_text(payload: Any) -> str:
    candidates = payload.get("candidates") if isinstance(payload, dict) else None
    if not isinstance(candidates, list) or not candidates:
        return ""
    content = candidates[0].get("content") if isinstance(candidates[0], dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return ""
    return "".join(str(part.get("text") or "") for part in parts if isinstance(part, dict)).strip()


class InsightGenerator:
    """Calls the Gemini ``generateContent`` endpoint; every failure maps to a fallback string."""

    def __init__(
        self,
        api_key: str | None,
        *,
        model: str = "gemini-3-flash-preview",
        base_url: str = GEMINI_API_URL,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def summarize(self, title: str, description: str, votes: Sequence[str]) -> str:
        if not self.api_key:
            logger.info("Insight requested without an API key")
            return UNAVAILABLE_MESSAGE

        body = {"contents": [{"parts": [{"text": build_prompt(title, description, votes)}]}]}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}/models/{self.model}:generateContent",
                    params={"key": self.api_key},
                    json=body,
                )
                response.raise_for_status()
                text = extract_text(response.json())
        except (httpx.HTTPError, ValueError):
            logger.exception("Insight request failed (model=%s)", self.model)
            return UNAVAILABLE_MESSAGE
        return text or EMPTY_MESSAGE
