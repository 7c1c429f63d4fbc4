"""Step conditions and dynamic model resolution.

Both read fields from a prior step's parsed JSON output, never from the
running text output. A field of a skipped or missing step is absent,
and an absent field equals nothing (so `eq` is false and `neq` true).
"""

import logging
from typing import Any

from recipe_engine.executor.context import MISSING, StepContext, get_field
from recipe_engine.recipes.schemas import StepCondition, TextGenerationConfig

logger = logging.getLogger(__name__)


def _strict_equals(actual: Any, expected: Any) -> bool:
    if actual is MISSING or expected is MISSING:
        return False
    # Booleans never equal numbers (True == 1 in Python, not in JSON)
    if isinstance(actual, bool) or isinstance(expected, bool):
        return type(actual) is type(expected) and actual == expected
    return actual == expected


def evaluate(actual: Any, operator: str, expected: Any) -> bool:
    """Evaluate one comparison.

    - eq:  strict equality
    - neq: strict inequality
    - in:  membership, `expected` must be a list

    Anything else (unknown operator, or `in` without a list) returns True:
    the step runs unless it is provably excluded. Saved recipes cannot carry
    an unknown operator, since StepCondition.operator rejects it at load
    time; only direct callers reach that branch.
    """
    if operator == "eq":
        return _strict_equals(actual, expected)
    if operator == "neq":
        return not _strict_equals(actual, expected)
    if operator == "in" and isinstance(expected, list):
        return any(_strict_equals(actual, item) for item in expected)
    if operator not in ("eq", "neq", "in"):
        logger.warning(f"Unknown condition operator '{operator}', running step")
    return True


def evaluate_condition(condition: StepCondition, context: StepContext) -> bool:
    """Should the step guarded by `condition` run?"""
    actual = get_field(context.step_json(condition.step_index), condition.field)
    return evaluate(actual, condition.operator, condition.value)


def _lookup_key(value: Any) -> str:
    """String form of a JSON value used as a model-map key."""
    if value is MISSING or value is None or value is False or value == "" or value == 0:
        return ""
    if value is True:
        return "true"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def resolve_model(config: TextGenerationConfig, context: StepContext) -> str:
    """Pick the model for a text-generation step.

    With `model_strategy == "auto"`, a field of a prior step's JSON is looked
    up in `model_strategy_map`; a hit wins, anything else falls back to the
    static `model_id`.
    """
    if config.model_strategy == "auto" and config.model_strategy_source and config.model_strategy_map:
        source = config.model_strategy_source
        value = get_field(context.step_json(source.step_index), source.field)
        resolved = config.model_strategy_map.get(_lookup_key(value))
        if resolved:
            return resolved
    return config.model_id
