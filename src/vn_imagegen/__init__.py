"""
Multi-backend image generation with fallback and sprite background removal.
"""
from .config import AppConfig, load_config
from .matting import remove_background
from .orchestration import FallbackOrchestrator, ProviderRegistry, RetryController
from .pipeline import ImageGenerationPipeline
from .types import Asset, GenerationRequest, GenerationResult, Purpose, StyleParameters

__all__ = [
    "AppConfig",
    "Asset",
    "FallbackOrchestrator",
    "GenerationRequest",
    "GenerationResult",
    "ImageGenerationPipeline",
    "ProviderRegistry",
    "Purpose",
    "RetryController",
    "StyleParameters",
    "load_config",
    "remove_background",
]
