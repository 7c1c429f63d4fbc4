"""Output formatting step (output_format). No provider call."""

from recipe_engine.executor.context import StepContext
from recipe_engine.executor.formatter import format_output
from recipe_engine.executor.schemas import StepOutput
from recipe_engine.executor.steps.base import StepDependencies
from recipe_engine.recipes.schemas import RecipeStep


def execute_output_format(step: RecipeStep, context: StepContext, deps: StepDependencies) -> StepOutput:
    return StepOutput(text=format_output(context, step.config.formats))
