"""
storyforge: asset generation and fulfillment for personalized picture books.
"""

from .ai_generation import GenerationRequest, GenerationResult, ProviderConfig, ReferenceImage
from .common import Activity, ErrorKind, GenerationError, Stage
from .common.settings import Settings, load_settings
from .fulfillment import FulfillmentProcessor, FulfillmentReport
from .pdf_generation import StorybookPDFBuilder, StoryPdfExporter
from .pipeline import (
    AssetGenerationService,
    FeatureFlagGate,
    GenerationOrchestrator,
    GenerationRequestHandler,
    InFlightRegistry,
    MetricsSink,
    WizardService,
)
from .runtime import Runtime, build_runtime

__all__ = [
    "Activity",
    "AssetGenerationService",
    "ErrorKind",
    "FeatureFlagGate",
    "FulfillmentProcessor",
    "FulfillmentReport",
    "GenerationError",
    "GenerationOrchestrator",
    "GenerationRequest",
    "GenerationRequestHandler",
    "GenerationResult",
    "InFlightRegistry",
    "MetricsSink",
    "ProviderConfig",
    "ReferenceImage",
    "Runtime",
    "Settings",
    "StoryPdfExporter",
    "Stage",
    "StorybookPDFBuilder",
    "WizardService",
    "build_runtime",
    "load_settings",
]
