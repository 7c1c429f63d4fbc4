"""Schemas for recipe (pipeline) definitions.

A recipe is an ordered, immutable list of steps. Each step carries a
typed config: the config shape is selected by the step type, so an
`llm` step can never carry video knobs and vice versa.

Structural rules enforced at load time:
- step indices are contiguous from 0 and appear in order
- conditions, model-strategy sources and prompt templates only
  reference steps with a strictly smaller index
"""

import re
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator


class StepType(str, Enum):
    """Step types, keyed by their wire identifiers."""
    TRANSCRIPTION = "stt"
    TEXT_GENERATION = "llm"
    IMAGE = "image"
    VIDEO = "video"
    OUTPUT_FORMAT = "output_format"
    PUBLISH = "drupal_publish"


class StepCondition(BaseModel):
    """Run the step only if a field of a prior step's JSON output matches."""

    step_index: int = Field(description="Index of the prior step whose JSON is read")
    field: str = Field(description="Top-level key in that step's parsed JSON")
    operator: Literal["eq", "neq", "in"] = "eq"
    value: Any = None


class ModelStrategySource(BaseModel):
    """Where an `auto` model strategy reads its lookup key from."""

    step_index: int
    field: str


class _StepConfigBase(BaseModel):
    condition: Optional[StepCondition] = None
    description: str = ""


class TranscriptionConfig(_StepConfigBase):
    type: Literal["stt"] = "stt"
    provider: str = "soniox"
    model: str = "stt-async-v4"
    language: Optional[str] = Field(
        default=None,
        description="Language hint; input language wins, then this, then 'sl'",
    )


class TextGenerationConfig(_StepConfigBase):
    type: Literal["llm"] = "llm"
    model_id: str = "gpt-5-mini"
    model_strategy: Literal["fixed", "auto"] = "fixed"
    model_strategy_source: Optional[ModelStrategySource] = None
    model_strategy_map: dict[str, str] = Field(default_factory=dict)
    system_prompt: Optional[str] = None
    user_prompt_template: Optional[str] = None
    web_search: bool = False
    fetch_urls: bool = False
    max_tokens: int = 8000

    @model_validator(mode="after")
    def _check_strategy(self) -> "TextGenerationConfig":
        if self.model_strategy == "auto" and (
            self.model_strategy_source is None or not self.model_strategy_map
        ):
            raise ValueError(
                "model_strategy 'auto' requires model_strategy_source and model_strategy_map"
            )
        return self


class ImageConfig(_StepConfigBase):
    type: Literal["image"] = "image"
    image_model: str = "fal-ai/flux/schnell"
    image_size: str = "landscape_16_9"


class VideoConfig(_StepConfigBase):
    type: Literal["video"] = "video"
    video_operation: Literal["text2video", "img2video", "video2video"] = "img2video"
    video_duration: int = Field(default=5, description="Seconds; clamped to 1-15 at run time")
    video_resolution: Literal["480p", "720p"] = "480p"
    video_aspect_ratio: str = "16:9"


class OutputFormatConfig(_StepConfigBase):
    type: Literal["output_format"] = "output_format"
    formats: list[Literal["markdown", "html", "json", "drupal_json"]] = Field(
        default_factory=lambda: ["markdown"]
    )


class PublishConfig(_StepConfigBase):
    type: Literal["drupal_publish"] = "drupal_publish"
    mode: Optional[Literal["draft", "publish"]] = Field(
        default=None,
        description="Overrides the integration's default publish mode",
    )


StepConfig = Annotated[
    Union[
        TranscriptionConfig,
        TextGenerationConfig,
        ImageConfig,
        VideoConfig,
        OutputFormatConfig,
        PublishConfig,
    ],
    Field(discriminator="type"),
]


_TEMPLATE_REF_RE = re.compile(r"\{\{step\.(\d+)\.(?:text|json)\}\}")


class RecipeStep(BaseModel):
    """One step of a recipe."""

    index: int
    name: str
    type: StepType
    config: StepConfig

    @model_validator(mode="before")
    @classmethod
    def _tag_config(cls, data: Any) -> Any:
        # The outer `type` selects the config variant.
        if isinstance(data, dict) and "type" in data:
            config = dict(data.get("config") or {})
            step_type = data["type"]
            config["type"] = step_type.value if isinstance(step_type, StepType) else step_type
            data = {**data, "config": config}
        return data

    def referenced_steps(self) -> set[int]:
        """Indices of prior steps this step reads from."""
        refs: set[int] = set()
        config = self.config
        if config.condition is not None:
            refs.add(config.condition.step_index)
        if isinstance(config, TextGenerationConfig):
            if config.model_strategy_source is not None:
                refs.add(config.model_strategy_source.step_index)
            for template in (config.user_prompt_template, config.system_prompt):
                if template:
                    refs.update(int(m) for m in _TEMPLATE_REF_RE.findall(template))
        return refs


class RecipeDefinition(BaseModel):
    """A complete pipeline definition."""

    key: Optional[str] = Field(default=None, description="Preset key, if loaded from a preset")
    name: str
    description: str = ""
    input_kind: Literal["audio", "text", "image", "image_text"] = "text"
    default_lang: str = "sl"
    steps: list[RecipeStep] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_steps(self) -> "RecipeDefinition":
        for position, step in enumerate(self.steps):
            if step.index != position:
                raise ValueError(
                    f"Step indices must be contiguous from 0: "
                    f"expected {position}, got {step.index} ('{step.name}')"
                )
            forward = sorted(i for i in step.referenced_steps() if i >= step.index)
            if forward:
                raise ValueError(
                    f"Step {step.index} ('{step.name}') references steps {forward}; "
                    f"only earlier steps may be referenced"
                )
        return self

    @property
    def has_output_format(self) -> bool:
        return any(s.type == StepType.OUTPUT_FORMAT for s in self.steps)


class RecipeSummary(BaseModel):
    """Lightweight preset listing entry."""

    key: str
    name: str
    description: str
    input_kind: str
    step_count: int
