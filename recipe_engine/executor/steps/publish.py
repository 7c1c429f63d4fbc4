"""Publish step (drupal_publish).

Publishing is optional: a missing workspace, integration, credentials
or drupal_json payload produces a bracketed skip marker as the step
output instead of an error.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Optional

from recipe_engine.executor.context import StepContext
from recipe_engine.executor.formatter import find_step_json
from recipe_engine.executor.schemas import StepOutput
from recipe_engine.executor.steps.base import StepDependencies
from recipe_engine.providers.ports import DownloadedArtifact, PublishRequest
from recipe_engine.publish.sanitize import sanitize_html
from recipe_engine.recipes.schemas import RecipeStep

logger = logging.getLogger(__name__)

SKIP_NO_WORKSPACE = "[Skipped: no workspace, publishing requires a workspace integration]"
SKIP_NO_INTEGRATION = "[Skipped: no Drupal integration configured for this workspace]"
SKIP_NO_CREDENTIALS = "[Skipped: Drupal integration has no credentials configured]"
SKIP_NO_PAYLOAD = "[Skipped: no drupal_json output found in previous steps]"


def _is_article_payload(data: dict) -> bool:
    return data.get("format") == "drupal_article" and bool(data.get("title"))


def _load_featured_image(
    payload: dict, deps: StepDependencies, label: str
) -> tuple[Optional[DownloadedArtifact], str]:
    featured = payload.get("featuredImage")
    storage_key = featured.get("storageKey") if isinstance(featured, dict) else None
    if not storage_key:
        return None, "featured-image.jpg"

    ext = storage_key.rsplit(".", 1)[-1] if "." in storage_key else "jpg"
    try:
        data = deps.storage.get(storage_key)
    except Exception as e:
        logger.error(f"[{label}] Failed to load featured image {storage_key}: {e}")
        return None, "featured-image.jpg"

    content_type = f"image/{'jpeg' if ext == 'jpg' else ext}"
    return DownloadedArtifact(data=data, content_type=content_type), f"featured-image.{ext}"


def execute_publish(step: RecipeStep, context: StepContext, deps: StepDependencies) -> StepOutput:
    """Publish the drupal_json payload of an earlier step to the workspace's Drupal site."""
    label = f"step {step.index} publish"

    if not context.workspace_id:
        return StepOutput(text=SKIP_NO_WORKSPACE)

    integration = deps.store.get_publish_integration(context.workspace_id)
    if integration is None or not integration.is_enabled:
        return StepOutput(text=SKIP_NO_INTEGRATION)
    if not integration.credentials_enc:
        return StepOutput(text=SKIP_NO_CREDENTIALS)

    payload = find_step_json(context, _is_article_payload, last=True)
    if payload is None or not payload.get("body"):
        return StepOutput(text=SKIP_NO_PAYLOAD)

    mode = step.config.mode or integration.publish_mode or "draft"
    if mode != "publish":
        mode = "draft"

    credentials = deps.decrypt_credentials(integration.credentials_enc)
    publisher = deps.publisher_factory(integration, credentials)

    image, image_name = _load_featured_image(payload, deps, label)
    request = PublishRequest(
        title=payload["title"],
        body_html=sanitize_html(payload["body"]),
        summary=payload.get("summary") or payload.get("subtitle") or "",
        status=mode,
        featured_image=image,
        featured_image_name=image_name,
    )

    logger.info(f"[{label}] Publishing '{request.title[:80]}' to {integration.base_url} ({mode})")
    result = publisher.publish(request)

    output = {
        "nodeId": result.node_id,
        "nodeUuid": result.node_uuid,
        "url": result.url,
        "drupalStatus": result.status,
        "imageUploaded": result.image_uploaded,
        "publishedAt": datetime.now(timezone.utc).isoformat(),
    }
    if result.image_error:
        output["imageError"] = result.image_error
    return StepOutput(text=json.dumps(output, ensure_ascii=False))
