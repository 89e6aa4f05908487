from collections.abc import AsyncIterator
import os
import logging

import httpx
import openai
from openai import AsyncOpenAI

from chatstream.config import StreamConfig
from chatstream.errors import TransportError

logger = logging.getLogger(__name__)


class ModelProvider:
    """Transport for one streamed chat completion.

    ``stream_bytes()`` yields the raw response body in whatever chunks
    the connection delivers; exhausting it is the end-of-stream signal.
    """

    async def stream_bytes(self, body: dict) -> AsyncIterator[bytes]:
        raise NotImplementedError


class OpenAIProvider(ModelProvider):

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        max_retries: int = 2,
        timeout: float = 600.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        if not api_key:
            api_key = os.getenv("OPENAI_API_KEY")
        self.client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            max_retries=max_retries,
            timeout=timeout,
            http_client=http_client,
        )

    @classmethod
    def from_config(cls, config: StreamConfig, **kwargs) -> "OpenAIProvider":
        return cls(api_key=config.api_key, base_url=config.base_url, **kwargs)

    async def stream_bytes(self, body: dict) -> AsyncIterator[bytes]:
        model = body.get("model")
        try:
            async with self.client.chat.completions.with_streaming_response.create(
                **body,
            ) as response:
                logger.info(f"Streaming {model} (status {response.status_code})")
                async for chunk in response.iter_bytes():
                    yield chunk
        except openai.APIStatusError as e:
            logger.error(f"{model} request failed with status {e.status_code}: {e.message}")
            raise TransportError(e.message, status_code=e.status_code) from e
        except openai.APIError as e:
            logger.error(f"{model} request failed: {e.message}")
            raise TransportError(e.message) from e
        except httpx.HTTPError as e:
            logger.error(f"{model} stream interrupted: {e}")
            raise TransportError(f"stream interrupted: {e}") from e


class OpenRouter(OpenAIProvider):

    def __init__(self, api_key: str | None = None, **kwargs):
        if not api_key:
            api_key = os.getenv("OPENROUTER_API_KEY")
        kwargs.setdefault("timeout", 180.0)
        super().__init__(
            api_key=api_key,
            base_url="https://openrouter.ai/api/v1",
            **kwargs,
        )
