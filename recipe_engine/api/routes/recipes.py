"""Recipe API routes.

Endpoints:
    GET  /v1/recipes/presets      List shipped preset recipes
    POST /v1/recipes              Save a recipe from a preset key or a full definition
    GET  /v1/recipes/{recipe_id}  Get a saved recipe definition
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from recipe_engine.api.dependencies import get_registry, get_store
from recipe_engine.executor.store import ExecutionStore
from recipe_engine.recipes.registry import PresetRegistry
from recipe_engine.recipes.schemas import RecipeDefinition, RecipeSummary

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/recipes", tags=["recipes"])


class CreateRecipeRequest(BaseModel):
    preset_key: Optional[str] = None
    definition: Optional[RecipeDefinition] = None
    workspace_id: Optional[str] = None


class CreateRecipeResponse(BaseModel):
    recipe_id: str
    name: str
    step_count: int


@router.get("/presets", response_model=list[RecipeSummary])
async def list_presets(registry: PresetRegistry = Depends(get_registry)):
    """List all preset recipes."""
    return registry.list_all()


@router.post("", response_model=CreateRecipeResponse)
async def create_recipe(
    request: CreateRecipeRequest,
    store: ExecutionStore = Depends(get_store),
    registry: PresetRegistry = Depends(get_registry),
):
    """Save a recipe. Exactly one of preset_key and definition is required."""
    if (request.preset_key is None) == (request.definition is None):
        raise HTTPException(
            status_code=422, detail="Provide exactly one of preset_key or definition"
        )

    definition = request.definition
    if request.preset_key is not None:
        definition = registry.get(request.preset_key)
        if definition is None:
            raise HTTPException(status_code=404, detail=f"Preset not found: {request.preset_key}")

    recipe_id = store.save_recipe(definition, workspace_id=request.workspace_id)
    return CreateRecipeResponse(
        recipe_id=recipe_id, name=definition.name, step_count=len(definition.steps)
    )


@router.get("/{recipe_id}", response_model=RecipeDefinition)
async def get_recipe(recipe_id: str, store: ExecutionStore = Depends(get_store)):
    """Get a saved recipe definition."""
    definition = store.get_recipe(recipe_id)
    if definition is None:
        raise HTTPException(status_code=404, detail=f"Recipe not found: {recipe_id}")
    return definition
