"""Model invoker abstractions."""

from __future__ import annotations

import dataclasses
from abc import ABC, abstractmethod
from dataclasses import dataclass

from coursegen.ai.pipeline.contracts import ModelTier, RetryAttemptConfig


@dataclass(frozen=True)
class ParameterProfile:
  """Sampling parameters passed to the model for one call."""

  temperature: float = 0.7
  nucleus_threshold: float = 0.95
  frequency_penalty: float = 0.0
  presence_penalty: float = 0.0
  max_output_tokens: int = 4096
  model_tier: ModelTier = ModelTier.STANDARD

  def escalate(self, config: RetryAttemptConfig) -> ParameterProfile:
    """Apply a retry attempt's temperature and tier on top of this profile."""
    return dataclasses.replace(self, temperature=config.temperature, model_tier=config.model_tier)


class ModelInvoker(ABC):
  """Opaque text generator; the pipeline only ever sees raw text back."""

  name: str = "model"

  @abstractmethod
  async def invoke(self, prompt: str, profile: ParameterProfile) -> str:
    """Generate raw text for a prompt under the given parameter profile."""
