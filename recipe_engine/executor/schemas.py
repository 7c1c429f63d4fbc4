"""Executor-side schemas for execution lifecycle, step results and cost.

These are distinct from the recipe schemas (which describe pipelines).
Executor schemas describe what happens during and after a run.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class ExecutionStatus(str, Enum):
    """Execution lifecycle states.

    pending -> running -> {done | error | cancelled}
    """
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.DONE, ExecutionStatus.ERROR, ExecutionStatus.CANCELLED)


class StepResultStatus(str, Enum):
    """Per-step states. running -> {done | error | skipped}"""
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"
    SKIPPED = "skipped"


class InputMode(str, Enum):
    """How the transcription step should treat the execution input."""
    AUDIO = "audio"
    TEXT = "text"
    TRANSCRIPT = "transcript"


class ExecutionInput(BaseModel):
    """Free-form input payload of an execution."""

    text: Optional[str] = None
    transcript_text: Optional[str] = None
    audio_storage_key: Optional[str] = None
    audio_mime_type: Optional[str] = None
    audio_url: Optional[str] = None
    language: Optional[str] = None
    image_storage_key: Optional[str] = None
    image_mime_type: Optional[str] = None
    video_storage_key: Optional[str] = None
    input_mode: Optional[InputMode] = Field(
        default=None,
        description="Explicit input mode; when unset, the transcription step "
        "infers text input from the running output length",
    )


class StepOutput(BaseModel):
    """Normalized result of one step executor."""

    text: str
    run_id: Optional[str] = Field(
        default=None,
        description="Provider-call reference used for cost lookup",
    )
    provider_response_id: Optional[str] = None
    citations: Optional[list[dict[str, Any]]] = None
    skipped: bool = Field(
        default=False,
        description="Fast path taken: the step had nothing to do and leaves the context untouched",
    )


class CostEntry(BaseModel):
    """Cost attributed to one executed step."""

    step_index: int
    model: str
    cost_cents: int = 0


class Execution(BaseModel):
    """One run of a recipe against a concrete input."""

    id: str
    recipe_id: str
    recipe_name: str = ""
    user_id: Optional[str] = None
    workspace_id: Optional[str] = None
    notify_chat_id: Optional[str] = None
    status: ExecutionStatus = ExecutionStatus.PENDING
    current_step: int = 0
    progress: int = 0
    input: ExecutionInput = Field(default_factory=ExecutionInput)
    total_cost_cents: int = 0
    cost_breakdown: list[CostEntry] = Field(default_factory=list)
    confidence_score: Optional[int] = None
    warning_flag: Optional[str] = None
    preview_hash: Optional[str] = None
    error_message: Optional[str] = None
    created_at: str = ""
    started_at: Optional[str] = None
    finished_at: Optional[str] = None

    @property
    def preview_url(self) -> Optional[str]:
        return f"/preview/{self.preview_hash}" if self.preview_hash else None


class StepResult(BaseModel):
    """Persisted record of one step of one execution."""

    execution_id: str
    step_index: int
    status: StepResultStatus = StepResultStatus.RUNNING
    input_preview: str = ""
    output_preview: Optional[str] = None
    output_full: Optional[dict[str, Any]] = None
    input_hash: Optional[str] = None
    output_hash: Optional[str] = None
    run_id: Optional[str] = None
    provider_response_id: Optional[str] = None
    error_message: Optional[str] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None


class PublishIntegration(BaseModel):
    """Per-workspace Drupal publish settings."""

    workspace_id: str
    base_url: str
    adapter_type: str = "jsonapi"
    auth_type: str = "basic"
    credentials_enc: Optional[str] = None
    default_content_type: str = "article"
    body_format: str = "basic_html"
    publish_mode: str = "draft"
    is_enabled: bool = True


class ExecutionStatusResponse(BaseModel):
    """API view of an execution with its step results."""

    execution: Execution
    preview_url: Optional[str] = None
    step_results: list[StepResult] = Field(default_factory=list)
