"""Preset registry: ready-to-use recipe definitions shipped as JSON."""

import json
import logging
from pathlib import Path
from typing import Optional

from .schemas import RecipeDefinition, RecipeSummary

logger = logging.getLogger(__name__)


class PresetRegistry:
    """Registry for recipe presets.

    Loads recipe definitions from JSON files in the definitions directory.
    """

    def __init__(self, definitions_dir: Optional[Path] = None):
        self.definitions_dir = definitions_dir or (
            Path(__file__).parent / "definitions"
        )
        self._presets: dict[str, RecipeDefinition] = {}
        self._loaded = False

    def load(self) -> None:
        """Load all preset definitions from JSON files."""
        if self._loaded:
            return

        if not self.definitions_dir.exists():
            self._loaded = True
            return

        for json_file in sorted(self.definitions_dir.glob("*.json")):
            try:
                with open(json_file, "r", encoding="utf-8") as f:
                    data = json.load(f)
                preset = RecipeDefinition.model_validate(data)
            except Exception as e:
                logger.error(f"Failed to load preset {json_file}: {e}")
                continue
            if not preset.key:
                logger.error(f"Preset {json_file} has no key, skipping")
                continue
            self._presets[preset.key] = preset

        self._loaded = True
        logger.info(f"Loaded {len(self._presets)} recipe presets")

    def get(self, key: str) -> Optional[RecipeDefinition]:
        """Get a preset by key."""
        self.load()
        return self._presets.get(key)

    def list_all(self) -> list[RecipeSummary]:
        """List all preset summaries."""
        self.load()
        return [
            RecipeSummary(
                key=p.key,
                name=p.name,
                description=p.description,
                input_kind=p.input_kind,
                step_count=len(p.steps),
            )
            for p in self._presets.values()
        ]

    def count(self) -> int:
        self.load()
        return len(self._presets)


_registry: Optional[PresetRegistry] = None


def get_preset_registry() -> PresetRegistry:
    """Get the global preset registry instance."""
    global _registry
    if _registry is None:
        _registry = PresetRegistry()
        _registry.load()
    return _registry
