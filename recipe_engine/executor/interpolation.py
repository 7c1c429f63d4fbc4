"""Prompt template interpolation.

Recognized tokens:
- {{original_input}}  the execution's original text input
- {{input}}           the running output of the last executed step
- {{step.N.text}}     text output of step N (empty if absent or skipped)
- {{step.N.json}}     compact JSON of step N's parsed output (empty if none)

Tokens are matched in a single left-to-right pass. Substituted text is
never re-scanned, so a step output containing "{{input}}" stays literal.
"""

import json
import re

from recipe_engine.executor.context import StepContext

_TOKEN_RE = re.compile(r"\{\{(original_input|input|step\.(\d+)\.(text|json))\}\}")


def interpolate(template: str, context: StepContext) -> str:
    """Substitute context references into a template. Never raises."""

    def _replace(match: re.Match) -> str:
        token = match.group(1)
        if token == "original_input":
            return context.original_input or ""
        if token == "input":
            return context.previous_output or ""

        step = context.steps.get(int(match.group(2)))
        if step is None:
            return ""
        if match.group(3) == "text":
            return step.text or ""
        if step.parsed_json is None:
            return ""
        return json.dumps(step.parsed_json, ensure_ascii=False, separators=(",", ":"))

    return _TOKEN_RE.sub(_replace, template)
