"""
Generation orchestration: feature flags, in-flight tracking, metrics, the wizard
stage gate, and the asset services built on top of them.
"""

from .assets import AssetGenerationService
from .feature_flags import FLAGS_SETTINGS_KEY, FeatureFlagGate, FeatureFlagMatrix, load_flag_matrix
from .handlers import GenerationRequestHandler
from .inflight import InFlightRegistry
from .metrics import ActivitySummary, MetricsSink
from .orchestrator import GenerationOrchestrator, RetryPolicy, select_reference_images
from .wizard import (
    MIN_CHARACTERS,
    STAGE_ORDER,
    StageStatus,
    WizardService,
    WizardStage,
    WizardState,
    advance,
    apply_action,
    assign_character,
    require_completed,
    resume_stage,
)

__all__ = [
    "ActivitySummary",
    "AssetGenerationService",
    "FLAGS_SETTINGS_KEY",
    "FeatureFlagGate",
    "FeatureFlagMatrix",
    "GenerationOrchestrator",
    "GenerationRequestHandler",
    "InFlightRegistry",
    "MIN_CHARACTERS",
    "MetricsSink",
    "RetryPolicy",
    "STAGE_ORDER",
    "StageStatus",
    "WizardService",
    "WizardStage",
    "WizardState",
    "advance",
    "apply_action",
    "assign_character",
    "load_flag_matrix",
    "require_completed",
    "resume_stage",
    "select_reference_images",
]
