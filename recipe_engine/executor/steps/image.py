"""Image generation step (image): fal.ai queue submit, poll, fetch, store."""

import json
import logging
import uuid

from recipe_engine.errors import ProviderError, StepError
from recipe_engine.executor.context import StepContext
from recipe_engine.executor.cost import log_provider_usage
from recipe_engine.executor.poller import IMAGE_POLL_POLICY, poll_until_complete
from recipe_engine.executor.schemas import StepOutput
from recipe_engine.executor.steps.base import StepDependencies, tracked_run
from recipe_engine.recipes.schemas import RecipeStep

logger = logging.getLogger(__name__)

PROVIDER = "fal"


def execute_image(step: RecipeStep, context: StepContext, deps: StepDependencies) -> StepOutput:
    """Generate one image from the running output used as prompt."""
    config = step.config
    prompt = context.previous_output.strip()
    if not prompt:
        raise StepError("Image step requires a prompt from the previous step")

    model_id = config.image_model
    label = f"step {step.index} image"

    with tracked_run(
        deps.store, "image", PROVIDER, model_id,
        execution_id=context.execution_id, step_index=step.index,
    ) as run_id:
        start = deps.scheduler.now()
        job = deps.queue.submit(model_id, {
            "prompt": prompt,
            "image_size": config.image_size,
            "num_images": 1,
            "output_format": "jpeg",
            "enable_safety_checker": True,
        })
        deps.store.update_run(run_id, "running", provider_job_id=job.request_id)

        poll_until_complete(
            lambda: deps.queue.poll_status(job.status_url),
            IMAGE_POLL_POLICY,
            deps.scheduler,
            timeout_message="Image generation timed out",
            label=label,
        )

        result = deps.queue.fetch_result(job.response_url)
        latency_ms = int((deps.scheduler.now() - start) * 1000)
        images = result.get("images") or []
        if not images:
            raise ProviderError("No images returned from generation", provider=PROVIDER)

        image = images[0]
        artifact = deps.queue.download(image["url"])
        content_type = (
            artifact.content_type if artifact.content_type.startswith("image/")
            else image.get("content_type") or "image/jpeg"
        )
        ext = "png" if "png" in content_type else "jpg"
        storage_key = f"image/output/{run_id}/{uuid.uuid4()}.{ext}"
        deps.storage.put(storage_key, artifact.data, content_type)
        file_id = deps.store.create_file(run_id, "output", content_type, len(artifact.data), storage_key)

        log_provider_usage(deps.store, run_id, PROVIDER, model_id, {"images": 1}, latency_ms)

    output = {
        "imageFileId": file_id,
        "imageUrl": f"/api/files/{file_id}",
        "storageKey": storage_key,
        "width": image.get("width"),
        "height": image.get("height"),
    }
    logger.info(f"[{label}] Stored {storage_key} ({len(artifact.data):,} bytes)")
    return StepOutput(text=json.dumps(output), run_id=run_id)
