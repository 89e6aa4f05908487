import os

from pydantic import BaseModel, Field


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class StreamConfig(BaseModel):
    """Settings shared by the provider, runner and session.

    Example:
        config = StreamConfig.from_env()
        session = DrawingSession(OpenAIProvider.from_config(config), config)
    """

    api_key: str | None = None
    base_url: str | None = None
    max_images: int | None = Field(default=8, ge=0)
    raise_upstream_errors: bool = False

    @classmethod
    def from_env(cls) -> "StreamConfig":
        max_images = os.getenv("CHATSTREAM_MAX_IMAGES")
        return cls(
            api_key=os.getenv("CHATSTREAM_API_KEY") or os.getenv("OPENAI_API_KEY"),
            base_url=os.getenv("CHATSTREAM_BASE_URL"),
            max_images=int(max_images) if max_images else 8,
            raise_upstream_errors=_env_bool("CHATSTREAM_RAISE_UPSTREAM_ERRORS"),
        )
