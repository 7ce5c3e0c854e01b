"""
Provider adapters, one per backend protocol shape, plus hosted background removal.
"""
from .base import ProviderAdapter
from .dashscope import DashScopeClient
from .fal import FalQueueClient
from .gemini import GeminiImageClient
from .grok import GrokImageClient
from .novelai import NovelAIClient
from .replicate import ReplicateClient
from .runpod import RunPodComfyClient
from .stability import StabilityMattingClient

__all__ = [
    "ProviderAdapter",
    "DashScopeClient",
    "FalQueueClient",
    "GeminiImageClient",
    "GrokImageClient",
    "NovelAIClient",
    "ReplicateClient",
    "RunPodComfyClient",
    "StabilityMattingClient",
]
