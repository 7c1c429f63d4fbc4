"""Speech-to-text step (stt)."""

import logging

from recipe_engine.errors import ProviderError, StepError
from recipe_engine.executor.context import StepContext
from recipe_engine.executor.cost import log_provider_usage
from recipe_engine.executor.schemas import InputMode, StepOutput
from recipe_engine.executor.steps.base import StepDependencies, tracked_run
from recipe_engine.recipes.schemas import RecipeStep

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE = "sl"
DEFAULT_AUDIO_MIME = "audio/mpeg"

# Used only when the input does not declare its mode
MIN_TEXT_PASSTHROUGH_LENGTH = 10


def _passthrough(context: StepContext) -> bool:
    mode = context.input.input_mode
    if mode in (InputMode.TEXT, InputMode.TRANSCRIPT):
        return True
    if mode is None:
        return len(context.previous_output.strip()) > MIN_TEXT_PASSTHROUGH_LENGTH
    return False


def execute_transcription(step: RecipeStep, context: StepContext, deps: StepDependencies) -> StepOutput:
    """Transcribe the execution's audio, unless text is already available.

    Fast paths, in order:
    1. the input carries a transcript: use it verbatim
    2. the input is text (declared, or inferred from the running output): pass it through

    Both return a skipped output: the running output already holds the text.
    """
    config = step.config
    input_data = context.input

    if input_data.transcript_text:
        logger.info(f"[step {step.index}] Transcript provided, skipping transcription")
        return StepOutput(text=input_data.transcript_text, skipped=True)

    if _passthrough(context):
        logger.info(f"[step {step.index}] Text input, skipping transcription")
        return StepOutput(text=context.previous_output, skipped=True)

    language = input_data.language or config.language or DEFAULT_LANGUAGE

    if input_data.audio_storage_key:
        audio = deps.storage.get(input_data.audio_storage_key)
        mime_type = input_data.audio_mime_type or DEFAULT_AUDIO_MIME
    elif input_data.audio_url:
        artifact = deps.downloader(input_data.audio_url)
        audio = artifact.data
        mime_type = input_data.audio_mime_type or artifact.content_type or DEFAULT_AUDIO_MIME
    else:
        raise StepError("No audio source provided (audio_storage_key or audio_url)")

    with tracked_run(
        deps.store, "stt", config.provider, config.model,
        execution_id=context.execution_id, step_index=step.index,
    ) as run_id:
        result = deps.transcriber.transcribe(
            audio, mime_type=mime_type, language=language, model=config.model
        )
        log_provider_usage(
            deps.store, run_id, config.provider, config.model,
            {"seconds": result.duration_seconds}, result.latency_ms,
        )
        if not result.text or not result.text.strip():
            raise ProviderError(
                "Transcription returned an empty transcript. "
                "The audio may be silent or in an unsupported format.",
                provider=config.provider,
            )

    return StepOutput(text=result.text, run_id=run_id)
