"""
Retry, fallback and provider-priority logic around the adapters.
"""
from .fallback import FallbackOrchestrator
from .registry import DEFAULT_PRIORITY, ProviderRegistry
from .retry import RetryController

__all__ = ["DEFAULT_PRIORITY", "FallbackOrchestrator", "ProviderRegistry", "RetryController"]
