"""Video generation step (video): fal.ai queue submit, poll, fetch, store.

Operations map to the grok-imagine-video endpoints:
- text2video:  prompt only
- img2video:   prompt + input image (aspect ratio follows the image)
- video2video: prompt + input video
"""

import json
import logging
import uuid

from recipe_engine.errors import ProviderError, StepError
from recipe_engine.executor.context import StepContext
from recipe_engine.executor.cost import log_provider_usage
from recipe_engine.executor.poller import VIDEO_POLL_POLICY, poll_until_complete
from recipe_engine.executor.schemas import StepOutput
from recipe_engine.executor.steps.base import StepDependencies, tracked_run
from recipe_engine.recipes.schemas import RecipeStep

logger = logging.getLogger(__name__)

PROVIDER = "fal"

VIDEO_ENDPOINTS = {
    "text2video": "xai/grok-imagine-video/text-to-video",
    "img2video": "xai/grok-imagine-video/image-to-video",
    "video2video": "xai/grok-imagine-video/edit-video",
}

SIGNED_URL_TTL = 600  # seconds
MIN_DURATION, MAX_DURATION = 1, 15


def _build_params(step: RecipeStep, context: StepContext, deps: StepDependencies, prompt: str) -> dict:
    config = step.config
    duration = max(MIN_DURATION, min(MAX_DURATION, config.video_duration or 5))
    params = {"prompt": prompt, "duration": duration, "resolution": config.video_resolution}

    if config.video_operation == "img2video":
        image_key = context.input.image_storage_key
        if not image_key:
            raise StepError("img2video requires an image (image_storage_key in input)")
        params["aspect_ratio"] = "auto"
        params["image_url"] = deps.storage.signed_url(image_key, SIGNED_URL_TTL)
    else:
        params["aspect_ratio"] = config.video_aspect_ratio or "16:9"

    if config.video_operation == "video2video":
        video_key = context.input.video_storage_key
        if not video_key:
            raise StepError("video2video requires a video (video_storage_key in input)")
        params["video_url"] = deps.storage.signed_url(video_key, SIGNED_URL_TTL)

    return params


def execute_video(step: RecipeStep, context: StepContext, deps: StepDependencies) -> StepOutput:
    """Generate a video from the running output used as prompt."""
    config = step.config
    prompt = context.previous_output.strip()
    if not prompt:
        raise StepError("Video step requires a prompt from the previous step")

    params = _build_params(step, context, deps, prompt)
    endpoint = VIDEO_ENDPOINTS[config.video_operation]
    pricing_model = f"grok-imagine-video-{config.video_resolution}"
    label = f"step {step.index} video"

    with tracked_run(
        deps.store, "video", PROVIDER, pricing_model,
        execution_id=context.execution_id, step_index=step.index,
    ) as run_id:
        start = deps.scheduler.now()
        job = deps.queue.submit(endpoint, params)
        deps.store.update_run(run_id, "running", provider_job_id=job.request_id)

        poll_until_complete(
            lambda: deps.queue.poll_status(job.status_url),
            VIDEO_POLL_POLICY,
            deps.scheduler,
            timeout_message="Video generation timed out. Try shorter duration or lower resolution.",
            label=label,
        )

        result = deps.queue.fetch_result(job.response_url)
        latency_ms = int((deps.scheduler.now() - start) * 1000)
        video = result.get("video") or {}
        if not video.get("url"):
            raise ProviderError("No video returned from generation", provider=PROVIDER)

        artifact = deps.queue.download(video["url"])
        content_type = artifact.content_type if artifact.content_type.startswith("video/") else "video/mp4"
        storage_key = f"video/output/{run_id}/{uuid.uuid4()}.mp4"
        deps.storage.put(storage_key, artifact.data, content_type)
        file_id = deps.store.create_file(run_id, "output", content_type, len(artifact.data), storage_key)

        log_provider_usage(
            deps.store, run_id, PROVIDER, pricing_model,
            {"video_seconds": video.get("duration") or params["duration"]}, latency_ms,
        )

    output = {
        "videoFileId": file_id,
        "videoUrl": f"/api/files/{file_id}",
        "storageKey": storage_key,
        "width": video.get("width"),
        "height": video.get("height"),
        "duration": video.get("duration"),
        "fps": video.get("fps"),
        "frameCount": video.get("num_frames"),
    }
    logger.info(f"[{label}] Stored {storage_key} ({len(artifact.data):,} bytes)")
    return StepOutput(text=json.dumps(output), run_id=run_id)
