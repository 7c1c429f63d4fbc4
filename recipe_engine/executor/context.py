"""Execution-scoped step context.

The context accumulates step outputs during one run. It is never
persisted as a whole: step results are persisted individually by the
runner, and the context is rebuilt from the input on every run.

Invariant: `steps[i]` exists iff step i was executed (not skipped) and
completed successfully before the current step began.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from recipe_engine.executor.schemas import ExecutionInput

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")

# Sentinel for "field absent", distinct from an explicit JSON null.
MISSING = object()


@dataclass
class StepData:
    """Output of one executed step."""

    text: str
    parsed_json: Optional[Any] = None


@dataclass
class StepContext:
    """Accumulator of prior step outputs for interpolation and conditions."""

    original_input: str
    previous_output: str
    input: ExecutionInput = field(default_factory=ExecutionInput)
    steps: dict[int, StepData] = field(default_factory=dict)
    execution_id: Optional[str] = None
    workspace_id: Optional[str] = None

    @classmethod
    def from_input(
        cls,
        input_data: ExecutionInput,
        execution_id: Optional[str] = None,
        workspace_id: Optional[str] = None,
    ) -> "StepContext":
        """Seed the context: a transcript wins over plain text as the running output."""
        previous_output = input_data.transcript_text or input_data.text or ""
        original_input = input_data.text or input_data.transcript_text or ""
        return cls(
            original_input=original_input,
            previous_output=previous_output,
            input=input_data,
            execution_id=execution_id,
            workspace_id=workspace_id,
        )

    def record(self, step_index: int, text: str) -> StepData:
        """Store an executed step's output and advance the running output."""
        data = StepData(text=text, parsed_json=try_parse_json(text))
        self.steps[step_index] = data
        self.previous_output = text
        return data

    def step_json(self, step_index: int) -> Optional[Any]:
        step = self.steps.get(step_index)
        return step.parsed_json if step else None


def try_parse_json(text: str) -> Optional[Any]:
    """Parse the outermost `{...}` block of a text, or return None.

    Tolerates prose or code fences around a JSON object, which is how
    LLMs tend to return structured output.
    """
    if not text:
        return None
    match = _JSON_OBJECT_RE.search(text)
    if not match:
        return None
    try:
        return json.loads(match.group(0))
    except ValueError:
        return None


def get_field(data: Any, name: str) -> Any:
    """Top-level field lookup on parsed JSON. Returns MISSING when absent."""
    if isinstance(data, dict) and name in data:
        return data[name]
    return MISSING
