"""
LLM client abstraction supporting Gemini (default), Claude and OpenAI.

Every provider is asked for schema-constrained JSON:
- Gemini: response_mime_type="application/json" + response_json_schema
- Claude: tool_use (tools parameter, forced tool_choice)
- OpenAI: function calling (tools parameter with type "function")

A client cannot be built without a credential; that is a fatal
configuration problem, not something a retry can fix.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from errors import ConfigurationError, GenerationError

logger = logging.getLogger(__name__)


class LLMProvider(str, Enum):
    GEMINI = "gemini"
    CLAUDE = "claude"
    OPENAI = "openai"


_DEFAULT_MODELS = {
    LLMProvider.GEMINI: "gemini-2.5-flash",
    LLMProvider.CLAUDE: "claude-sonnet-4-6",
    LLMProvider.OPENAI: "gpt-4.1-mini",
}


@dataclass
class LLMResponse:
    """Raw response from an LLM API call."""

    provider: LLMProvider
    raw_content: str
    tool_call_result: Optional[dict]
    model: str
    input_tokens: int
    output_tokens: int

    @property
    def text_content(self) -> str:
        """Return the plain text content of the response."""
        return self.raw_content


def _decode_json(provider: LLMProvider, text: str) -> Any:
    if not text.strip():
        raise GenerationError(f"{provider.value} returned an empty response")
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise GenerationError(f"{provider.value} returned unparseable JSON: {e}") from e


class LLMClient:
    """Unified LLM client."""

    def __init__(
        self,
        provider: LLMProvider,
        api_key: Optional[str],
        model: Optional[str] = None,
    ):
        if not api_key:
            raise ConfigurationError(
                f"No API key configured for provider '{provider.value}'."
            )
        self.provider = provider
        self.api_key = api_key
        self.model = model or _DEFAULT_MODELS[provider]

    async def call(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 4096,
        temperature: float = 0.2,
    ) -> LLMResponse:
        """Send a prompt and return a plain text response (no schema)."""
        if self.provider == LLMProvider.GEMINI:
            return await self._call_gemini_text(
                system_prompt, user_prompt, max_tokens, temperature,
            )
        elif self.provider == LLMProvider.CLAUDE:
            return await self._call_claude_text(
                system_prompt, user_prompt, max_tokens, temperature,
            )
        else:
            return await self._call_openai_text(
                system_prompt, user_prompt, max_tokens, temperature,
            )

    async def call_with_tool(
        self,
        system_prompt: str,
        user_prompt: str,
        tool_name: str,
        tool_schema: dict[str, Any],
        max_tokens: int = 4096,
        temperature: float = 0.2,
    ) -> LLMResponse:
        """Send a prompt and force a response matching ``tool_schema``."""
        if self.provider == LLMProvider.GEMINI:
            return await self._call_gemini(
                system_prompt, user_prompt, tool_schema, max_tokens, temperature,
            )
        elif self.provider == LLMProvider.CLAUDE:
            return await self._call_claude(
                system_prompt,
                user_prompt,
                tool_name,
                tool_schema,
                max_tokens,
                temperature,
            )
        else:
            return await self._call_openai(
                system_prompt,
                user_prompt,
                tool_name,
                tool_schema,
                max_tokens,
                temperature,
            )

    # --- Gemini ---

    async def _call_gemini(
        self,
        system_prompt: str,
        user_prompt: str,
        tool_schema: dict[str, Any],
        max_tokens: int,
        temperature: float,
    ) -> LLMResponse:
        from google import genai
        from google.genai import types

        client = genai.Client(api_key=self.api_key)
        response = await client.aio.models.generate_content(
            model=self.model,
            contents=user_prompt,
            config=types.GenerateContentConfig(
                system_instruction=system_prompt,
                temperature=temperature,
                max_output_tokens=max_tokens,
                response_mime_type="application/json",
                response_json_schema=tool_schema,
            ),
        )

        raw_text = response.text or ""
        usage = response.usage_metadata
        return LLMResponse(
            provider=LLMProvider.GEMINI,
            raw_content=raw_text,
            tool_call_result=_decode_json(LLMProvider.GEMINI, raw_text),
            model=response.model_version or self.model,
            input_tokens=(usage.prompt_token_count or 0) if usage else 0,
            output_tokens=(usage.candidates_token_count or 0) if usage else 0,
        )

    async def _call_gemini_text(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float,
    ) -> LLMResponse:
        from google import genai
        from google.genai import types

        client = genai.Client(api_key=self.api_key)
        response = await client.aio.models.generate_content(
            model=self.model,
            contents=user_prompt,
            config=types.GenerateContentConfig(
                system_instruction=system_prompt,
                temperature=temperature,
                max_output_tokens=max_tokens,
            ),
        )

        usage = response.usage_metadata
        return LLMResponse(
            provider=LLMProvider.GEMINI,
            raw_content=response.text or "",
            tool_call_result=None,
            model=response.model_version or self.model,
            input_tokens=(usage.prompt_token_count or 0) if usage else 0,
            output_tokens=(usage.candidates_token_count or 0) if usage else 0,
        )

    # --- Claude ---

    async def _call_claude(
        self,
        system_prompt: str,
        user_prompt: str,
        tool_name: str,
        tool_schema: dict[str, Any],
        max_tokens: int,
        temperature: float,
    ) -> LLMResponse:
        import anthropic

        client = anthropic.AsyncAnthropic(api_key=self.api_key)
        response = await client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
            tools=[
                {
                    "name": tool_name,
                    "description": "Generate a structured clinical assessment",
                    "input_schema": tool_schema,
                }
            ],
            tool_choice={"type": "tool", "name": tool_name},
        )

        tool_result = None
        raw_text = ""

        for block in response.content:
            if block.type == "tool_use" and block.name == tool_name:
                tool_result = block.input
            elif block.type == "text":
                raw_text = block.text

        return LLMResponse(
            provider=LLMProvider.CLAUDE,
            raw_content=raw_text,
            tool_call_result=tool_result,
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )

    async def _call_claude_text(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float,
    ) -> LLMResponse:
        import anthropic

        client = anthropic.AsyncAnthropic(api_key=self.api_key)
        response = await client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
        )

        raw_text = ""
        for block in response.content:
            if block.type == "text":
                raw_text += block.text

        return LLMResponse(
            provider=LLMProvider.CLAUDE,
            raw_content=raw_text,
            tool_call_result=None,
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )

    # --- OpenAI ---

    async def _call_openai(
        self,
        system_prompt: str,
        user_prompt: str,
        tool_name: str,
        tool_schema: dict[str, Any],
        max_tokens: int,
        temperature: float,
    ) -> LLMResponse:
        import openai

        client = openai.AsyncOpenAI(api_key=self.api_key)
        response = await client.chat.completions.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            tools=[
                {
                    "type": "function",
                    "function": {
                        "name": tool_name,
                        "description": "Generate a structured clinical assessment",
                        "parameters": tool_schema,
                    },
                }
            ],
            tool_choice={
                "type": "function",
                "function": {"name": tool_name},
            },
        )

        choice = response.choices[0]
        tool_result = None
        raw_text = choice.message.content or ""

        if choice.message.tool_calls:
            tc = choice.message.tool_calls[0]
            tool_result = _decode_json(LLMProvider.OPENAI, tc.function.arguments)

        return LLMResponse(
            provider=LLMProvider.OPENAI,
            raw_content=raw_text,
            tool_call_result=tool_result,
            model=response.model,
            input_tokens=response.usage.prompt_tokens,
            output_tokens=response.usage.completion_tokens,
        )

    async def _call_openai_text(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float,
    ) -> LLMResponse:
        import openai

        client = openai.AsyncOpenAI(api_key=self.api_key)
        response = await client.chat.completions.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        )

        choice = response.choices[0]
        raw_text = choice.message.content or ""

        return LLMResponse(
            provider=LLMProvider.OPENAI,
            raw_content=raw_text,
            tool_call_result=None,
            model=response.model,
            input_tokens=response.usage.prompt_tokens,
            output_tokens=response.usage.completion_tokens,
        )
