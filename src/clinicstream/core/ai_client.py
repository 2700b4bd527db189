"""
Thin chat-completion client over the OpenAI SDK.

Azure OpenAI is used when its endpoint and key are configured; otherwise the
public OpenAI API. Retries and output validation are handled by the
structuring engine, not here.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

from openai import AsyncAzureOpenAI, AsyncOpenAI

from .config import Settings, get_settings
from .exceptions import ConfigurationError


class ChatClient:
    """
    Wrapper around AsyncOpenAI / AsyncAzureOpenAI chat completions.

    ``is_configured`` is False when neither provider has credentials; calling
    ``chat`` in that state raises ``ConfigurationError``.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        settings = settings or get_settings()
        self._client: Optional[Any] = None
        self.provider = "none"

        azure = settings.azure_openai
        if azure.is_configured:
            self._client = AsyncAzureOpenAI(
                api_key=azure.api_key,
                api_version=azure.api_version,
                # SDK does not expect a trailing slash
                azure_endpoint=azure.endpoint.rstrip("/"),
            )
            self.default_model = azure.deployment_name
            self.provider = "azure_openai"
        elif settings.openai.api_key:
            self._client = AsyncOpenAI(api_key=settings.openai.api_key)
            self.default_model = settings.openai.model
            self.provider = "openai"
        else:
            self.default_model = settings.openai.model

        self.temperature = settings.openai.temperature
        self.max_tokens = settings.openai.max_tokens

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    async def chat(
        self,
        messages: Sequence[Dict[str, str]],
        *,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs: Any,
    ):
        """
        Generic chat completion helper.

        Args:
            messages: OpenAI chat messages list.
            model: Optional model/deployment override.
            temperature: Sampling temperature, defaults to configuration.
            max_tokens: Max tokens for the response, defaults to configuration.
            **kwargs: Passed directly to the SDK.
        """
        if self._client is None:
            raise ConfigurationError(
                "No language model provider is configured",
                {"required": ["OPENAI_API_KEY", "AZURE_OPENAI_ENDPOINT + AZURE_OPENAI_API_KEY"]},
            )
        return await self._client.chat.completions.create(
            model=model or self.default_model,
            messages=list(messages),
            temperature=self.temperature if temperature is None else temperature,
            max_tokens=max_tokens or self.max_tokens,
            **kwargs,
        )


__all__ = ["ChatClient"]
