"""Recipe definitions: typed multi-step pipelines and shipped presets.

A recipe step's config is a tagged variant selected by the step type
(stt, llm, image, video, output_format, drupal_publish).
"""

from .schemas import (
    RecipeDefinition,
    RecipeStep,
    RecipeSummary,
    StepCondition,
    StepType,
)
from .registry import PresetRegistry, get_preset_registry

__all__ = [
    "RecipeDefinition",
    "RecipeStep",
    "RecipeSummary",
    "StepCondition",
    "StepType",
    "PresetRegistry",
    "get_preset_registry",
]
