"""
OpenAI transport adapters.

These are the narrow provider boundaries used by the classification core:

    OpenAIEmbeddingClient.embed(text)      -> (raw vector, Usage)
    OpenAICompletionClient.complete(prompt) -> (text, Usage)

They own transport only: timeouts, credential checks and mapping SDK errors
onto the error taxonomy. Prompt construction, response parsing, normalization
and cost accounting live with the callers.
"""

import asyncio
from typing import Optional

from openai import AsyncOpenAI

from classification.usage import Usage
from config import get_settings
from errors import ProviderError, ProviderUnavailable


def _build_client(client: Optional[AsyncOpenAI]) -> Optional[AsyncOpenAI]:
    if client is not None:
        return client
    settings = get_settings()
    if not settings.openai_api_key:
        return None
    return AsyncOpenAI(api_key=settings.openai_api_key)


class OpenAIEmbeddingClient:
    """Turns text into a raw (unnormalized) embedding via the embeddings API."""

    def __init__(
        self,
        client: AsyncOpenAI = None,
        model: str = None,
        timeout: float = None
    ):
        settings = get_settings()
        self.client = _build_client(client)
        self.model = model or settings.openai_embedding_model
        self.timeout = timeout or settings.embedding_timeout_seconds

    async def embed(self, text: str) -> tuple[list[float], Usage]:
        if self.client is None:
            raise ProviderUnavailable("OPENAI_API_KEY is not configured")

        try:
            response = await asyncio.wait_for(
                self.client.embeddings.create(model=self.model, input=text),
                timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            raise ProviderError(
                f"Embedding request timed out after {self.timeout}s"
            ) from e
        except Exception as e:
            raise ProviderError(f"Embedding request failed: {e}") from e

        try:
            raw = response.data[0].embedding
            vector = [float(x) for x in raw]
        except (AttributeError, IndexError, TypeError, ValueError) as e:
            raise ProviderError("Embedding provider returned invalid vector") from e

        usage = getattr(response, "usage", None)
        tokens = (
            getattr(usage, "total_tokens", None)
            or getattr(usage, "prompt_tokens", None)
            or 0
        )
        return vector, Usage(input_tokens=int(tokens))

    async def close(self):
        if self.client is not None:
            await self.client.close()


class OpenAICompletionClient:
    """Sends a single-turn prompt to the chat completions API."""

    def __init__(
        self,
        client: AsyncOpenAI = None,
        model: str = None,
        timeout: float = None
    ):
        settings = get_settings()
        self.client = _build_client(client)
        self.model = model or settings.openai_model
        self.timeout = timeout or settings.llm_timeout_seconds

    async def complete(
        self,
        prompt: str,
        max_tokens: int = 1024,
        temperature: float = 0.2
    ) -> tuple[str, Usage]:
        if self.client is None:
            raise ProviderUnavailable("OPENAI_API_KEY is not configured")

        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=self.model,
                    messages=[{"role": "user", "content": prompt}],
                    max_tokens=max_tokens,
                    temperature=temperature
                ),
                timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            raise ProviderError(
                f"LLM request timed out after {self.timeout}s"
            ) from e
        except Exception as e:
            raise ProviderError(f"LLM request failed: {e}") from e

        try:
            text = response.choices[0].message.content
        except (AttributeError, IndexError) as e:
            raise ProviderError("Unexpected response shape from LLM") from e

        if not isinstance(text, str):
            raise ProviderError("Unexpected response type from LLM")

        usage = getattr(response, "usage", None)
        return text.strip(), Usage(
            input_tokens=int(getattr(usage, "prompt_tokens", 0) or 0),
            output_tokens=int(getattr(usage, "completion_tokens", 0) or 0)
        )

    async def close(self):
        if self.client is not None:
            await self.client.close()
