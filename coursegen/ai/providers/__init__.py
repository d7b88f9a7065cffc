"""Model invoker implementations."""

from coursegen.ai.providers.base import ModelInvoker, ParameterProfile

__all__ = ["ModelInvoker", "ParameterProfile"]
