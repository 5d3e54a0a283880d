# services/llm_service.py

import asyncio
import json
import logging
import re
from datetime import date
from typing import Any, Dict, List, Optional

from openai import OpenAI
from pydantic import ValidationError as PydanticValidationError

from app.conversation.models import ExtractedTravelParams, SessionContext
from services.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


EXTRACTION_PROMPT = """Extract flight search parameters from the user's message.
Today's date is {today}. Resolve relative dates ("tomorrow", "next Friday") against it.
Use 3-letter IATA airport codes where you can.

Previous search (may be partially filled): {previous}

Return JSON with these keys (omit or null what the user did not say):
- origin
- destination
- departure_date (YYYY-MM-DD)
- return_date (YYYY-MM-DD)
- passengers (integer, default 1)
- travel_class (economy, premium_economy, business, first)
- flexibility ("exact" or "flexible", default "exact")"""

ASSISTANT_PROMPT = """You are a friendly, concise flight booking assistant.
Answer in at most 4 sentences. Never invent flight prices or schedules."""


class OpenAILanguageOracle:
    """
    Language oracle backed by the OpenAI Responses API.

    The SDK client is synchronous, so calls run in a worker thread. No retries
    here: the llm circuit breaker owns retry and fallback policy.
    """

    def __init__(
        self, api_key: str, model: str = "gpt-4o", max_output_tokens: int = 500, timeout_s: float = 20.0
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.max_output_tokens = max_output_tokens
        self.timeout_s = timeout_s
        self._client: Optional[OpenAI] = None

    @property
    def client(self) -> OpenAI:
        if not self.api_key:
            raise ExternalServiceError("llm", "OpenAI API key is not configured")
        if self._client is None:
            self._client = OpenAI(api_key=self.api_key, timeout=self.timeout_s)
        return self._client

    async def _call_openai(self, messages: List[Dict[str, str]]) -> str:
        client = self.client

        # Responses API is synchronous -> run in thread
        def sync_call():
            response = client.responses.create(
                model=self.model,
                input=messages,
                max_output_tokens=self.max_output_tokens,
            )
            return response.output_text

        return await asyncio.to_thread(sync_call)

    @staticmethod
    def _clean_json_response(raw_text: str) -> str:
        """Clean markdown code fences etc."""
        raw_text = raw_text.strip()
        if raw_text.startswith("```"):
            lines = raw_text.split("\n")[1:]
            if lines and lines[-1].strip() == "```":
                lines = lines[:-1]
            raw_text = "\n".join(lines).strip()

        match = re.search(r"\{.*\}", raw_text, re.DOTALL)
        return match.group(0) if match else raw_text

    @staticmethod
    def _context_messages(context: Optional[SessionContext]) -> List[Dict[str, str]]:
        if not context:
            return []
        return [{"role": m["role"], "content": m["content"]} for m in context.recent_messages]

    async def generate_json(self, system_prompt: str, user_prompt: str) -> Dict[str, Any]:
        messages = [
            {
                "role": "system",
                "content": system_prompt.strip()
                + "\n\nSTRICT INSTRUCTION: Respond ONLY with valid JSON. No text outside JSON.",
            },
            {"role": "user", "content": user_prompt.strip()},
        ]
        raw_text = await self._call_openai(messages)
        cleaned = self._clean_json_response(raw_text)
        try:
            data = json.loads(cleaned)
        except ValueError as e:
            logger.error(f"[OpenAI-LLM] JSON decode failed: {e}\nRaw: {cleaned[:300]}")
            raise ExternalServiceError("llm", "Language oracle returned invalid JSON") from e
        if not isinstance(data, dict):
            raise ExternalServiceError("llm", "Language oracle returned a non-object JSON value")
        return data

    async def extract_params(
        self, message: str, context: Optional[SessionContext] = None
    ) -> ExtractedTravelParams:
        previous = "none"
        if context and context.current_query:
            previous = context.current_query.model_dump_json(exclude_none=True)

        data = await self.generate_json(
            EXTRACTION_PROMPT.format(today=date.today().isoformat(), previous=previous),
            message,
        )
        # Keys the model set to null count as "not mentioned"
        data = {k: v for k, v in data.items() if v is not None}
        try:
            return ExtractedTravelParams.model_validate(data)
        except PydanticValidationError as e:
            logger.error(f"[OpenAI-LLM] Extraction failed validation: {e}")
            raise ExternalServiceError("llm", "Language oracle returned unusable parameters") from e

    async def generate_text(self, prompt: str, context: Optional[SessionContext] = None) -> str:
        messages = [{"role": "system", "content": ASSISTANT_PROMPT}]
        messages.extend(self._context_messages(context))
        messages.append({"role": "user", "content": prompt})
        text = (await self._call_openai(messages)).strip()
        if not text:
            raise ExternalServiceError("llm", "Language oracle returned an empty response")
        return text
