"""OpenRouter model invoker using the openai SDK."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from typing import Final

from openai import AsyncOpenAI

from coursegen.ai.pipeline.contracts import ModelTier
from coursegen.ai.providers.base import ModelInvoker, ParameterProfile
from coursegen.config import Settings
from coursegen.telemetry.context import describe_call_context

logger = logging.getLogger(__name__)

_DEFAULT_BASE_URL: Final[str] = "https://openrouter.ai/api/v1"


class OpenRouterInvoker(ModelInvoker):
  """Invoke tiered OpenRouter models through the OpenAI-compatible chat API."""

  name = "openrouter"

  def __init__(self, tier_models: Mapping[ModelTier, str], *, api_key: str | None = None, base_url: str | None = None, client: AsyncOpenAI | None = None) -> None:
    missing = [tier.name for tier in ModelTier if tier not in tier_models]
    if missing:
      raise ValueError(f"No model configured for tiers: {', '.join(missing)}")
    self._tier_models = dict(tier_models)

    if client is not None:
      self._client = client
      return

    api_key = api_key or os.getenv("OPENROUTER_API_KEY")
    if not api_key:
      raise ValueError("OPENROUTER_API_KEY environment variable is required")

    # OpenRouter uses the OpenAI-compatible API; we add optional attribution headers.
    default_headers = {}
    referer = os.getenv("OPENROUTER_HTTP_REFERER")
    if referer:
      default_headers["HTTP-Referer"] = referer
    title = os.getenv("OPENROUTER_TITLE")
    if title:
      default_headers["X-Title"] = title

    self._client = AsyncOpenAI(api_key=api_key, base_url=base_url or _DEFAULT_BASE_URL, default_headers=default_headers or None)

  @classmethod
  def from_settings(cls, settings: Settings) -> OpenRouterInvoker:
    tier_models = {tier: settings.tier_models[tier.name.lower()] for tier in ModelTier}
    return cls(tier_models, api_key=settings.openrouter_api_key, base_url=settings.openrouter_base_url)

  def model_for(self, tier: ModelTier) -> str:
    return self._tier_models[tier]

  async def invoke(self, prompt: str, profile: ParameterProfile) -> str:
    """Send a single-turn chat completion and return the raw message text."""
    model = self.model_for(profile.model_tier)
    response = await self._client.chat.completions.create(
      model=model,
      messages=[{"role": "user", "content": prompt}],
      temperature=profile.temperature,
      top_p=profile.nucleus_threshold,
      frequency_penalty=profile.frequency_penalty,
      presence_penalty=profile.presence_penalty,
      max_tokens=profile.max_output_tokens,
    )

    content = response.choices[0].message.content or ""
    usage = response.usage
    if usage is not None:
      logger.info("OpenRouter response model=%s %s prompt_tokens=%s completion_tokens=%s chars=%d", model, describe_call_context(), usage.prompt_tokens, usage.completion_tokens, len(content))
    else:
      logger.info("OpenRouter response model=%s %s chars=%d", model, describe_call_context(), len(content))
    return content
