"""Generation clients behind a provider-agnostic call interface.

The provider is chosen once in build_llm_client(); callers only see
LLMClient.call(), ProviderError and StageTimeoutError.
"""

from typing import Optional, Protocol

import openai
from openai import OpenAI
from pydantic import BaseModel

from ..config import Settings
from ..log import get_logger
from ..schemas.options import GenerationConfig
from .errors import ProviderError, StageTimeoutError

logger = get_logger("llm")


class LLMResponse(BaseModel):
    text: str
    tokens_used: Optional[int] = None


class LLMClient(Protocol):
    def call(self, system_prompt: str, user_prompt: str, config: GenerationConfig) -> LLMResponse:
        ...


class OpenAIChatClient:
    """Chat-completions client for OpenAI and OpenAI-compatible endpoints (OpenRouter)."""

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        timeout_s: Optional[float] = None,
        client: Optional[OpenAI] = None,
    ):
        # Retries are owned by StageCaller. The request timeout bounds how long
        # a call abandoned by StageCaller keeps its thread busy.
        if client is None:
            options = {"timeout": timeout_s} if timeout_s else {}
            client = OpenAI(api_key=api_key, base_url=base_url, max_retries=0, **options)
        self.client = client

    def call(self, system_prompt: str, user_prompt: str, config: GenerationConfig) -> LLMResponse:
        kwargs = dict(
            model=config.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=config.temperature,
            max_tokens=config.max_output_tokens,
        )
        if config.json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            completion = self.client.chat.completions.create(**kwargs)
        except openai.APITimeoutError as e:
            raise StageTimeoutError(f"Request timed out: {e}") from e
        except openai.APIConnectionError as e:
            raise ProviderError(f"Connection error: {e}") from e
        except openai.APIStatusError as e:
            raise ProviderError(str(e), status_code=e.status_code) from e
        except openai.OpenAIError as e:
            raise ProviderError(str(e)) from e

        text = completion.choices[0].message.content or ""
        usage = getattr(completion, "usage", None)
        return LLMResponse(text=text, tokens_used=usage.total_tokens if usage else None)


def build_llm_client(settings: Settings) -> LLMClient:
    timeout_s = settings.STAGE_TIMEOUT_MS / 1000
    if settings.LLM_PROVIDER == "openrouter":
        logger.info("Using OpenRouter generation client")
        return OpenAIChatClient(
            api_key=settings.OPENROUTER_API_KEY, base_url=settings.OPENROUTER_BASE_URL, timeout_s=timeout_s
        )
    logger.info("Using OpenAI generation client")
    return OpenAIChatClient(api_key=settings.OPENAI_API_KEY, timeout_s=timeout_s)
