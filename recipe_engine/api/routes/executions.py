"""Execution API routes.

Endpoints:
    POST /v1/executions                       Create an execution and start it
    GET  /v1/executions/{execution_id}        Poll status, progress, step results
    POST /v1/executions/{execution_id}/cancel Request cooperative cancellation
"""

import logging
from typing import Callable, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from recipe_engine.api.dependencies import get_launcher, get_store
from recipe_engine.executor.schemas import (
    ExecutionInput,
    ExecutionStatus,
    ExecutionStatusResponse,
)
from recipe_engine.executor.store import ExecutionStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/executions", tags=["executions"])


class StartExecutionRequest(BaseModel):
    recipe_id: str
    input: ExecutionInput = Field(default_factory=ExecutionInput)
    user_id: Optional[str] = None
    workspace_id: Optional[str] = None
    notify_chat_id: Optional[str] = None


class StartExecutionResponse(BaseModel):
    execution_id: str
    status: ExecutionStatus


class CancelResponse(BaseModel):
    execution_id: str
    status: ExecutionStatus


@router.post("", response_model=StartExecutionResponse, status_code=202)
async def start_execution(
    request: StartExecutionRequest,
    store: ExecutionStore = Depends(get_store),
    launch: Callable[[str], None] = Depends(get_launcher),
):
    """Create an execution for a saved recipe and start it in the background.

    Returns the execution ID for polling.
    """
    if store.get_recipe(request.recipe_id) is None:
        raise HTTPException(status_code=404, detail=f"Recipe not found: {request.recipe_id}")

    execution = store.create_execution(
        request.recipe_id,
        request.input,
        user_id=request.user_id,
        workspace_id=request.workspace_id,
        notify_chat_id=request.notify_chat_id,
    )
    launch(execution.id)
    return StartExecutionResponse(execution_id=execution.id, status=execution.status)


@router.get("/{execution_id}", response_model=ExecutionStatusResponse)
async def get_execution(execution_id: str, store: ExecutionStore = Depends(get_store)):
    """Poll an execution."""
    execution = store.get_execution(execution_id)
    if execution is None:
        raise HTTPException(status_code=404, detail=f"Execution not found: {execution_id}")
    return ExecutionStatusResponse(
        execution=execution,
        preview_url=execution.preview_url,
        step_results=store.list_step_results(execution_id),
    )


@router.post("/{execution_id}/cancel", response_model=CancelResponse)
async def cancel_execution(execution_id: str, store: ExecutionStore = Depends(get_store)):
    """Request cancellation. Takes effect at the next step boundary."""
    execution = store.get_execution(execution_id)
    if execution is None:
        raise HTTPException(status_code=404, detail=f"Execution not found: {execution_id}")
    if not store.request_cancel(execution_id):
        raise HTTPException(
            status_code=409,
            detail=f"Execution {execution_id} is {execution.status.value} and cannot be cancelled",
        )
    return CancelResponse(execution_id=execution_id, status=ExecutionStatus.CANCELLED)
