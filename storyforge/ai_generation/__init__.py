"""
AI image generation providers for storyforge.
"""

from .base import (
    GenerationRequest,
    GenerationResult,
    ImageProvider,
    ProviderConfig,
    ReferenceImage,
)
from .factory import ProviderRegistry, build_provider
from .flux_service import FluxKontextProvider
from .images import fetch_reference_images
from .openai_service import OpenAIImageProvider
from .polling import JobStatus, PollingImageProvider, PollResult
from .prompting import (
    build_character_thumbnail_prompt,
    build_cover_prompt,
    build_cover_variant_prompt,
    build_page_prompt,
    render_template,
)
from .replicate_service import ReplicateImageGenerator

__all__ = [
    "FluxKontextProvider",
    "GenerationRequest",
    "GenerationResult",
    "ImageProvider",
    "JobStatus",
    "OpenAIImageProvider",
    "PollResult",
    "PollingImageProvider",
    "ProviderConfig",
    "ProviderRegistry",
    "ReferenceImage",
    "ReplicateImageGenerator",
    "build_character_thumbnail_prompt",
    "build_cover_prompt",
    "build_cover_variant_prompt",
    "build_page_prompt",
    "build_provider",
    "fetch_reference_images",
    "render_template",
]
