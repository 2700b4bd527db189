"""
OpenAI-backed language model for clinical structuring.
"""

import logging
from typing import Any, Dict, List, Optional

from openai import APIError, APIStatusError

from ...application.dto.structuring_dto import TokenUsage
from ...application.ports.services.language_model import LanguageModel, ModelResponse
from ...core.ai_client import ChatClient
from ...core.exceptions import LanguageModelError
from .llm_gateway import call_llm_with_telemetry
from .prompt_registry import PromptScenario

logger = logging.getLogger(__name__)


class OpenAILanguageModel(LanguageModel):
    """Chat-completions model in JSON mode. Returns raw, unvalidated text."""

    def __init__(self, client: ChatClient) -> None:
        self._client = client

    @property
    def is_configured(self) -> bool:
        return self._client.is_configured

    async def generate(
        self,
        prompt: str,
        schema_hint: Dict[str, Any],
        *,
        system: Optional[str] = None,
    ) -> ModelResponse:
        scenario = PromptScenario.STRUCTURING if "suggestions" in schema_hint else PromptScenario.ANAMNESIS
        messages: List[Dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        try:
            response = await call_llm_with_telemetry(
                ai_client=self._client,
                scenario=scenario,
                messages=messages,
                response_format={"type": "json_object"},
            )
        except APIStatusError as e:
            raise LanguageModelError(str(e), status_code=e.status_code) from e
        except APIError as e:
            raise LanguageModelError(str(e)) from e

        if not response.choices:
            raise LanguageModelError("Response contained no choices")
        content = response.choices[0].message.content or ""

        usage = TokenUsage()
        if response.usage is not None:
            usage = TokenUsage(
                prompt_tokens=response.usage.prompt_tokens or 0,
                completion_tokens=response.usage.completion_tokens or 0,
                total_tokens=response.usage.total_tokens or 0,
            )
        logger.debug(f"Model returned {len(content)} chars")
        return ModelResponse(text=content, usage=usage, model=getattr(response, "model", None))
