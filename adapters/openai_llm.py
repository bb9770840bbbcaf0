"""
OpenAI chat completions via REST API.

Implements the Analyst contract: structured analysis, conversational
replies and persona generation. JSON answers are validated by
adapters.schema before anything leaves this module.
"""
from typing import List, Optional

import aiohttp

from logging_setup import Component

from .base import ConversationContext
from .config import AdapterConfig
from .errors import AdapterError
from .http import HTTPAdapter
from .prompts import (
    PERSONA_SYSTEM,
    build_analysis_prompt,
    build_analysis_system,
    build_conversation_messages,
    build_persona_prompt,
)
from .schema import GeneratedPersona, InsightAnalysis, parse_analysis, parse_persona, parse_reply


class OpenAIAnalyst(HTTPAdapter):
    provider = "openai"
    component = Component.LLM

    def __init__(self, config: AdapterConfig, *, session: Optional[aiohttp.ClientSession] = None):
        super().__init__(config, session=session)
        if not config.openai_api_key:
            raise ValueError("OpenAI requires a valid API key in OPENAI_API_KEY")

    async def _chat(self, messages: List[dict], *, operation: str, json_mode: bool) -> str:
        payload = {
            "model": self.config.openai_model,
            "messages": messages,
            "temperature": self.config.openai_temperature,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        data = await self._request(
            "POST",
            f"{self.config.openai_base_url}/chat/completions",
            operation=operation,
            headers={"Authorization": f"Bearer {self.config.openai_api_key}"},
            json=payload,
        )
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise AdapterError(self.provider, f"unexpected completion shape: {e!r}", status=200) from e
        if content is None:
            raise AdapterError(self.provider, "completion has no content", status=200)
        return content

    async def analyze(self, transcript: str, instruction_text: str, feedback_style: str) -> InsightAnalysis:
        messages = [
            {"role": "system", "content": build_analysis_system(instruction_text)},
            {"role": "user", "content": build_analysis_prompt(transcript, feedback_style)},
        ]
        self.logger.debug("Analysis call started", transcript_length=len(transcript))
        content = await self._chat(messages, operation="analysis", json_mode=True)
        return parse_analysis(content, provider=self.provider)

    async def converse(self, instruction_text: str, context: ConversationContext, user_text: str) -> str:
        messages = build_conversation_messages(instruction_text, context, user_text)
        self.logger.debug(
            "Conversation call started",
            history_turns=len(context.history),
            user_text_length=len(user_text),
        )
        content = await self._chat(messages, operation="conversation", json_mode=False)
        return parse_reply(content, provider=self.provider)

    async def generate_persona(self, description: str) -> GeneratedPersona:
        messages = [
            {"role": "system", "content": PERSONA_SYSTEM},
            {"role": "user", "content": build_persona_prompt(description)},
        ]
        content = await self._chat(messages, operation="persona_generation", json_mode=True)
        return parse_persona(content, provider=self.provider)
