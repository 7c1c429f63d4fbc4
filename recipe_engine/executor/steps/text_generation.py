"""Text-generation step (llm)."""

import base64
import logging
from typing import Optional

from recipe_engine.executor.conditions import resolve_model
from recipe_engine.executor.context import StepContext
from recipe_engine.executor.cost import log_provider_usage
from recipe_engine.executor.interpolation import interpolate
from recipe_engine.executor.schemas import StepOutput
from recipe_engine.executor.steps.base import StepDependencies, tracked_run
from recipe_engine.llm.backends import ImageAttachment
from recipe_engine.llm.factory import provider_for_model
from recipe_engine.recipes.schemas import RecipeStep

logger = logging.getLogger(__name__)

# 4MB of base64 is about 3MB raw, accepted by every provider
MAX_IMAGE_BASE64_SIZE = 4 * 1024 * 1024


def _load_image(context: StepContext, deps: StepDependencies, label: str) -> Optional[ImageAttachment]:
    key = context.input.image_storage_key
    if not key:
        return None
    try:
        encoded = base64.b64encode(deps.storage.get(key)).decode("ascii")
    except Exception as e:
        logger.warning(f"[{label}] Failed to load image {key} for multimodal call: {e}")
        return None
    if len(encoded) > MAX_IMAGE_BASE64_SIZE:
        logger.warning(
            f"[{label}] Image too large for multimodal "
            f"({len(encoded) / 1024 / 1024:.1f}MB base64), skipping image"
        )
        return None
    return ImageAttachment(base64=encoded, mime_type=context.input.image_mime_type or "image/jpeg")


def execute_text_generation(step: RecipeStep, context: StepContext, deps: StepDependencies) -> StepOutput:
    """Build the prompt, resolve the model and call the text generator."""
    config = step.config
    label = f"step {step.index}"

    model_id = resolve_model(config, context)
    provider = provider_for_model(model_id)

    user_content = context.previous_output
    if config.user_prompt_template:
        user_content = interpolate(config.user_prompt_template, context)
    system_prompt = interpolate(config.system_prompt, context) if config.system_prompt else ""

    if config.fetch_urls and deps.url_fetcher is not None:
        url_context = deps.url_fetcher.fetch_context(user_content)
        if url_context:
            user_content = url_context + "\n\n" + user_content

    image = _load_image(context, deps, label)
    web_search = config.web_search and provider == "openai"
    if config.web_search and not web_search:
        logger.info(f"[{label}] Web search requested but {model_id} is not an OpenAI model, ignoring")

    logger.info(f"[{label}] {step.name}: model={model_id} web_search={web_search}")

    with tracked_run(
        deps.store, "llm", provider, model_id,
        execution_id=context.execution_id, step_index=step.index,
    ) as run_id:
        result = deps.text_generator.generate(
            model_id,
            user_content,
            system_prompt=system_prompt,
            images=[image] if image else None,
            web_search=web_search,
            max_tokens=config.max_tokens,
            label=label,
        )
        log_provider_usage(
            deps.store, run_id, provider, model_id,
            {"input_tokens": result.input_tokens, "output_tokens": result.output_tokens},
            result.duration_ms,
        )

    return StepOutput(
        text=result.content,
        run_id=run_id,
        provider_response_id=result.response_id,
        citations=result.citations or None,
    )
