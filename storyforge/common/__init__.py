"""
Common utilities shared across storyforge modules.
"""

from .activities import Activity, Stage
from .errors import (
    ActivityDisabledError,
    ConfigurationError,
    ErrorKind,
    FulfillmentError,
    GenerationError,
    WizardPreconditionError,
    classify_status,
)

__all__ = [
    "Activity",
    "ActivityDisabledError",
    "ConfigurationError",
    "ErrorKind",
    "FulfillmentError",
    "GenerationError",
    "Stage",
    "WizardPreconditionError",
    "classify_status",
]
