# ============================================================================
# src/care_ingestion/extractors/client.py
# ============================================================================
"""
AI Extraction Client Interface

The extraction capability is opaque to the pipeline: given a system prompt
and user content (text and/or base64 images), stream text back or fail.

Backends:
- openai: OpenAI chat completions
- azure: Azure OpenAI deployment (same wire format)

Retries are owned by the job queue, so the SDK is created with
max_retries=0 and a request timeout bounds a stuck call.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Union

from ..config import ai_settings
from ..utils.exceptions import ConfigurationError, ModelError


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class ImagePart:
    data: str  # base64
    media_type: str = "image/png"


ContentPart = Union[TextPart, ImagePart]


class BaseExtractionClient(ABC):
    """
    Abstract base class for extraction backends.

    All backends must implement:
    - stream_completion(): Async iterator of text chunks
    - model_name: Model identifier reported in status events
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self.logger = logging.getLogger(self.__class__.__name__)

        self._request_count = 0
        self._error_count = 0
        self._total_request_time = 0.0

    @property
    @abstractmethod
    def model_name(self) -> str:
        pass

    @abstractmethod
    def _stream(self, system_prompt: str, content: List[ContentPart]) -> AsyncIterator[str]:
        """Backend-specific streaming; raise ModelError on provider failure."""
        pass

    async def stream_completion(
        self,
        system_prompt: str,
        content: List[ContentPart]
    ) -> AsyncIterator[str]:
        """
        Stream the model's answer chunk by chunk.

        Raises:
            ModelError: provider, network or timeout failure
            ConfigurationError: backend credentials missing
        """
        start = time.time()
        self._request_count += 1
        try:
            async for chunk in self._stream(system_prompt, content):
                yield chunk
        except (ModelError, ConfigurationError):
            self._error_count += 1
            raise
        finally:
            self._total_request_time += time.time() - start

    async def close(self) -> None:
        """Release network resources."""
        return None

    def get_statistics(self) -> Dict[str, Any]:
        avg_time = (
            self._total_request_time / self._request_count
            if self._request_count > 0
            else 0.0
        )
        return {
            "model": self.model_name,
            "request_count": self._request_count,
            "error_count": self._error_count,
            "total_request_time": self._total_request_time,
            "avg_request_time": avg_time,
        }


class OpenAIExtractionClient(BaseExtractionClient):
    """Streams chat completions from OpenAI or an Azure OpenAI deployment."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        self.provider = self.config.get("provider", ai_settings.AI_PROVIDER).lower()
        self.max_tokens = self.config.get("max_tokens", ai_settings.AI_MAX_TOKENS)
        self.temperature = self.config.get("temperature", ai_settings.AI_TEMPERATURE)
        self.timeout = self.config.get("timeout", ai_settings.AI_TIMEOUT_SECONDS)
        self._client = None

        if self.provider == "azure":
            self.api_key = self.config.get("api_key", ai_settings.AZURE_OPENAI_API_KEY)
            self.endpoint = self.config.get("endpoint", ai_settings.AZURE_OPENAI_ENDPOINT)
            self.api_version = self.config.get("api_version", ai_settings.AZURE_OPENAI_API_VERSION)
            self._model = self.config.get("model", ai_settings.AZURE_OPENAI_CHAT_MODEL_DEPLOYMENT)
        elif self.provider == "openai":
            self.api_key = self.config.get("api_key", ai_settings.OPENAI_API_KEY)
            self.endpoint = None
            self.api_version = None
            self._model = self.config.get("model", ai_settings.OPENAI_MODEL)
        else:
            raise ConfigurationError(f"Unknown AI provider: {self.provider}")

    @property
    def model_name(self) -> str:
        return self._model

    def is_configured(self) -> bool:
        if self.provider == "azure":
            return bool(self.api_key and self.endpoint)
        return bool(self.api_key)

    @property
    def client(self):
        """Lazy load the async OpenAI client."""
        if self._client is None:
            if not self.is_configured():
                raise ConfigurationError(
                    f"{self.provider} credentials not configured "
                    "(set OPENAI_API_KEY or AZURE_OPENAI_ENDPOINT/AZURE_OPENAI_API_KEY)"
                )
            from openai import AsyncAzureOpenAI, AsyncOpenAI

            if self.provider == "azure":
                self._client = AsyncAzureOpenAI(
                    azure_endpoint=self.endpoint,
                    api_key=self.api_key,
                    api_version=self.api_version,
                    timeout=self.timeout,
                    max_retries=0,
                )
            else:
                self._client = AsyncOpenAI(
                    api_key=self.api_key,
                    timeout=self.timeout,
                    max_retries=0,
                )
            self.logger.info(f"OpenAI client initialized: provider={self.provider}, model={self._model}")
        return self._client

    @staticmethod
    def _to_message_content(content: List[ContentPart]) -> List[Dict[str, Any]]:
        parts = []
        for part in content:
            if isinstance(part, ImagePart):
                parts.append({
                    "type": "image_url",
                    "image_url": {
                        "url": f"data:{part.media_type};base64,{part.data}",
                        "detail": "high",
                    },
                })
            else:
                parts.append({"type": "text", "text": part.text})
        return parts

    async def _stream(self, system_prompt: str, content: List[ContentPart]) -> AsyncIterator[str]:
        import openai

        try:
            stream = await self.client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": self._to_message_content(content)},
                ],
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                stream=True,
            )
            async for chunk in stream:
                # Azure sends a leading chunk with no choices (content filter results)
                if not chunk.choices:
                    continue
                text = chunk.choices[0].delta.content
                if text:
                    yield text
        except openai.OpenAIError as e:
            self.logger.error(f"Chat completion failed: {type(e).__name__}: {e}")
            raise ModelError(f"{type(e).__name__}: {e}") from e

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None


def create_client(config: Optional[Dict[str, Any]] = None) -> BaseExtractionClient:
    """Build the configured extraction client."""
    return OpenAIExtractionClient(config)
