"""Step executors, one per step type.

Every executor has the signature
    execute_x(step: RecipeStep, context: StepContext, deps: StepDependencies) -> StepOutput
reads the shared context, may call a provider, and raises on failure.
"""

from typing import Callable

from recipe_engine.executor.context import StepContext
from recipe_engine.executor.schemas import StepOutput
from recipe_engine.executor.steps.base import StepDependencies, tracked_run
from recipe_engine.executor.steps.image import execute_image
from recipe_engine.executor.steps.output_format import execute_output_format
from recipe_engine.executor.steps.publish import execute_publish
from recipe_engine.executor.steps.text_generation import execute_text_generation
from recipe_engine.executor.steps.transcription import execute_transcription
from recipe_engine.executor.steps.video import execute_video
from recipe_engine.recipes.schemas import RecipeStep, StepType

StepExecutor = Callable[[RecipeStep, StepContext, StepDependencies], StepOutput]

STEP_EXECUTORS: dict[StepType, StepExecutor] = {
    StepType.TRANSCRIPTION: execute_transcription,
    StepType.TEXT_GENERATION: execute_text_generation,
    StepType.IMAGE: execute_image,
    StepType.VIDEO: execute_video,
    StepType.OUTPUT_FORMAT: execute_output_format,
    StepType.PUBLISH: execute_publish,
}


def execute_step(step: RecipeStep, context: StepContext, deps: StepDependencies) -> StepOutput:
    """Dispatch a step to the executor for its type."""
    return STEP_EXECUTORS[step.type](step, context, deps)


__all__ = [
    "STEP_EXECUTORS",
    "StepDependencies",
    "StepExecutor",
    "execute_step",
    "tracked_run",
]
