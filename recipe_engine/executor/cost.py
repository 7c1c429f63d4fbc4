"""Cost estimation and per-execution cost ledger.

Every provider call logs a usage event with its units and an estimated
cost in cents. The runner sums usage per provider-call reference into a
per-step breakdown; the execution total is the sum of that breakdown.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Optional

from recipe_engine.executor.schemas import CostEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelPrice:
    """Dollar price of one unit of work.

    unit is one of "1M_tokens", "per_minute", "per_image", "per_second".
    For token pricing `input`/`output` are per million tokens; for the
    other units only `input` is used.
    """

    unit: str
    input: float
    output: float = 0.0


PRICING: dict[str, ModelPrice] = {
    # Text generation
    "claude-sonnet-4-5": ModelPrice("1M_tokens", 3.0, 15.0),
    "gemini-2.0-flash": ModelPrice("1M_tokens", 0.10, 0.40),
    "gpt-5-mini": ModelPrice("1M_tokens", 0.25, 2.0),
    "gpt-5.2": ModelPrice("1M_tokens", 1.75, 14.0),
    "gpt-4o": ModelPrice("1M_tokens", 2.5, 10.0),
    # Transcription
    "stt-async-v4": ModelPrice("per_minute", 0.0017),
    # Image generation
    "fal-ai/flux/schnell": ModelPrice("per_image", 0.025),
    "fal-ai/flux/dev": ModelPrice("per_image", 0.055),
    # Video generation
    "grok-imagine-video-480p": ModelPrice("per_second", 0.05),
    "grok-imagine-video-720p": ModelPrice("per_second", 0.07),
}


def _find_price(model: str) -> Optional[ModelPrice]:
    if model in PRICING:
        return PRICING[model]
    # Dated model ids (claude-sonnet-4-5-20250929) price like their base id
    for key in sorted(PRICING, key=len, reverse=True):
        if model.startswith(key):
            return PRICING[key]
    return None


def estimate_cost_cents(model: str, units: dict[str, Any]) -> int:
    """Estimated cost in whole cents for the given usage units.

    Units: input_tokens, output_tokens, seconds, images, video_seconds.
    Unknown models cost nothing.
    """
    price = _find_price(model)
    if price is None:
        logger.warning(f"No pricing for model '{model}', recording zero cost")
        return 0

    if price.unit == "1M_tokens":
        dollars = (
            units.get("input_tokens", 0) * price.input
            + units.get("output_tokens", 0) * price.output
        ) / 1_000_000
    elif price.unit == "per_minute":
        dollars = units.get("seconds", 0) / 60 * price.input
    elif price.unit == "per_image":
        dollars = units.get("images", 0) * price.input
    elif price.unit == "per_second":
        dollars = units.get("video_seconds", 0) * price.input
    else:
        dollars = 0.0

    # Half-up, so 2.5 cents bills as 3
    return int(math.floor(dollars * 100 + 0.5))


def log_provider_usage(
    store,
    run_id: str,
    provider: str,
    model: str,
    units: dict[str, Any],
    latency_ms: int,
) -> int:
    """Price a provider call and record it against its run. Returns cents."""
    cost_cents = estimate_cost_cents(model, units)
    store.log_usage(run_id, provider, model, units, latency_ms, cost_cents)
    logger.info(
        f"Usage run={run_id} {provider}/{model}: {units}, {latency_ms}ms, {cost_cents}c"
    )
    return cost_cents


class CostLedger:
    """Running per-step cost breakdown for one execution."""

    def __init__(self):
        self.entries: list[CostEntry] = []

    def add(self, step_index: int, model: str, cost_cents: int) -> CostEntry:
        entry = CostEntry(step_index=step_index, model=model, cost_cents=cost_cents)
        self.entries.append(entry)
        return entry

    @property
    def total_cents(self) -> int:
        return sum(e.cost_cents for e in self.entries)
