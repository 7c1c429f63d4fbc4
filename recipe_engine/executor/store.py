"""Execution persistence.

`ExecutionStore` is the persistence port the controller and step
executors depend on. `SqlExecutionStore` implements it over the
`Database` helper (SQLite or Postgres).

Every mutation is a single-row statement keyed by execution id (plus
step index for step results), so concurrent executions never contend.
Status reads go straight to the database, which gives the cancellation
check read-after-write consistency.
"""

import logging
import uuid
from typing import Any, Optional, Protocol, runtime_checkable

from recipe_engine.executor.db import Database, _json_dumps, _json_loads, _now
from recipe_engine.executor.schemas import (
    CostEntry,
    Execution,
    ExecutionInput,
    ExecutionStatus,
    PublishIntegration,
    StepResult,
    StepResultStatus,
)
from recipe_engine.recipes.schemas import RecipeDefinition

logger = logging.getLogger(__name__)


@runtime_checkable
class ExecutionStore(Protocol):
    """Persistence port used by the recipe runner and step executors."""

    # Recipes
    def save_recipe(self, definition: RecipeDefinition, workspace_id: Optional[str] = None) -> str: ...
    def get_recipe(self, recipe_id: str) -> Optional[RecipeDefinition]: ...

    # Executions
    def create_execution(
        self,
        recipe_id: str,
        input_data: ExecutionInput,
        *,
        user_id: Optional[str] = None,
        workspace_id: Optional[str] = None,
        notify_chat_id: Optional[str] = None,
    ) -> Execution: ...
    def get_execution(self, execution_id: str) -> Optional[Execution]: ...
    def get_status(self, execution_id: str) -> Optional[ExecutionStatus]: ...
    def mark_running(self, execution_id: str) -> bool: ...
    def update_progress(self, execution_id: str, current_step: int, progress: int) -> None: ...
    def write_cost(self, execution_id: str, breakdown: list[CostEntry]) -> None: ...
    def set_metadata(self, execution_id: str, confidence_score: int, warning_flag: Optional[str]) -> None: ...
    def set_preview_hash(self, execution_id: str, preview_hash: str) -> None: ...
    def finish_execution(
        self,
        execution_id: str,
        status: ExecutionStatus,
        *,
        error_message: Optional[str] = None,
        current_step: Optional[int] = None,
    ) -> bool: ...
    def request_cancel(self, execution_id: str) -> bool: ...

    # Step results
    def create_step_result(self, execution_id: str, step_index: int, input_preview: str) -> None: ...
    def complete_step_result(
        self,
        execution_id: str,
        step_index: int,
        *,
        output_preview: str,
        output_full: dict[str, Any],
        input_hash: Optional[str],
        output_hash: Optional[str],
        run_id: Optional[str],
        provider_response_id: Optional[str],
    ) -> None: ...
    def skip_step_result(self, execution_id: str, step_index: int, output_preview: str) -> None: ...
    def fail_step_result(self, execution_id: str, step_index: int, error_message: str) -> None: ...
    def list_step_results(self, execution_id: str) -> list[StepResult]: ...

    # Provider calls, usage, files
    def create_run(
        self,
        run_type: str,
        provider: str,
        model: str,
        *,
        execution_id: Optional[str] = None,
        step_index: Optional[int] = None,
    ) -> str: ...
    def update_run(
        self,
        run_id: str,
        status: str,
        *,
        provider_job_id: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None: ...
    def log_usage(
        self,
        run_id: str,
        provider: str,
        model: str,
        units: dict[str, Any],
        latency_ms: int,
        cost_cents: int,
    ) -> None: ...
    def get_run_usage(self, run_id: str) -> tuple[int, Optional[str]]: ...
    def create_file(self, run_id: str, kind: str, mime: str, size: int, storage_key: str) -> str: ...

    # Integrations
    def get_publish_integration(self, workspace_id: str) -> Optional[PublishIntegration]: ...


def _new_id() -> str:
    return uuid.uuid4().hex


class SqlExecutionStore:
    """SQL implementation of the persistence port."""

    def __init__(self, db: Database):
        self.db = db
        self.db.init_db()

    # ── Recipes ──────────────────────────────────────────────

    def save_recipe(self, definition: RecipeDefinition, workspace_id: Optional[str] = None) -> str:
        recipe_id = _new_id()
        self.db.execute(
            """INSERT INTO recipes (id, preset_key, name, workspace_id, definition, created_at)
               VALUES (%s, %s, %s, %s, %s, %s)""",
            (recipe_id, definition.key, definition.name, workspace_id,
             _json_dumps(definition.model_dump(mode="json")), _now()),
        )
        logger.info(f"Saved recipe {recipe_id} ({definition.name}, {len(definition.steps)} steps)")
        return recipe_id

    def get_recipe(self, recipe_id: str) -> Optional[RecipeDefinition]:
        row = self.db.execute(
            "SELECT definition FROM recipes WHERE id = %s", (recipe_id,), fetch="one"
        )
        if row is None:
            return None
        return RecipeDefinition.model_validate(_json_loads(row["definition"]))

    # ── Executions ───────────────────────────────────────────

    def create_execution(
        self,
        recipe_id: str,
        input_data: ExecutionInput,
        *,
        user_id: Optional[str] = None,
        workspace_id: Optional[str] = None,
        notify_chat_id: Optional[str] = None,
    ) -> Execution:
        execution_id = _new_id()
        self.db.execute(
            """INSERT INTO executions
               (id, recipe_id, user_id, workspace_id, notify_chat_id, status,
                current_step, progress, input_data, total_cost_cents, cost_breakdown, created_at)
               VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)""",
            (execution_id, recipe_id, user_id, workspace_id, notify_chat_id,
             ExecutionStatus.PENDING.value, 0, 0,
             _json_dumps(input_data.model_dump(mode="json", exclude_none=True)),
             0, "[]", _now()),
        )
        logger.info(f"Created execution {execution_id} for recipe {recipe_id}")
        return self.get_execution(execution_id)

    def get_execution(self, execution_id: str) -> Optional[Execution]:
        row = self.db.execute(
            """SELECT e.*, r.name AS recipe_name
               FROM executions e JOIN recipes r ON r.id = e.recipe_id
               WHERE e.id = %s""",
            (execution_id,),
            fetch="one",
        )
        if row is None:
            return None
        return Execution(
            id=row["id"],
            recipe_id=row["recipe_id"],
            recipe_name=row.get("recipe_name") or "",
            user_id=row.get("user_id"),
            workspace_id=row.get("workspace_id"),
            notify_chat_id=row.get("notify_chat_id"),
            status=ExecutionStatus(row["status"]),
            current_step=row.get("current_step") or 0,
            progress=row.get("progress") or 0,
            input=ExecutionInput.model_validate(_json_loads(row.get("input_data")) or {}),
            total_cost_cents=row.get("total_cost_cents") or 0,
            cost_breakdown=[
                CostEntry.model_validate(e) for e in (_json_loads(row.get("cost_breakdown")) or [])
            ],
            confidence_score=row.get("confidence_score"),
            warning_flag=row.get("warning_flag"),
            preview_hash=row.get("preview_hash"),
            error_message=row.get("error_message"),
            created_at=row.get("created_at") or "",
            started_at=row.get("started_at"),
            finished_at=row.get("finished_at"),
        )

    def get_status(self, execution_id: str) -> Optional[ExecutionStatus]:
        row = self.db.execute(
            "SELECT status FROM executions WHERE id = %s", (execution_id,), fetch="one"
        )
        return ExecutionStatus(row["status"]) if row else None

    def mark_running(self, execution_id: str) -> bool:
        """Atomically move pending -> running. False if another worker got there first."""
        updated = self.db.execute(
            """UPDATE executions SET status = %s, started_at = %s
               WHERE id = %s AND status = %s""",
            (ExecutionStatus.RUNNING.value, _now(), execution_id, ExecutionStatus.PENDING.value),
        )
        return updated == 1

    def update_progress(self, execution_id: str, current_step: int, progress: int) -> None:
        self.db.execute(
            "UPDATE executions SET current_step = %s, progress = %s WHERE id = %s",
            (current_step, progress, execution_id),
        )

    def write_cost(self, execution_id: str, breakdown: list[CostEntry]) -> None:
        total = sum(e.cost_cents for e in breakdown)
        self.db.execute(
            "UPDATE executions SET total_cost_cents = %s, cost_breakdown = %s WHERE id = %s",
            (total, _json_dumps([e.model_dump() for e in breakdown]), execution_id),
        )

    def set_metadata(self, execution_id: str, confidence_score: int, warning_flag: Optional[str]) -> None:
        self.db.execute(
            "UPDATE executions SET confidence_score = %s, warning_flag = %s WHERE id = %s",
            (confidence_score, warning_flag, execution_id),
        )

    def set_preview_hash(self, execution_id: str, preview_hash: str) -> None:
        self.db.execute(
            "UPDATE executions SET preview_hash = %s WHERE id = %s",
            (preview_hash, execution_id),
        )

    def finish_execution(
        self,
        execution_id: str,
        status: ExecutionStatus,
        *,
        error_message: Optional[str] = None,
        current_step: Optional[int] = None,
    ) -> bool:
        """Move a pending or running execution to a terminal status.

        Terminal executions are left alone, so a cancel that lands while a
        step is in flight is never overwritten. Returns False in that case.
        """
        open_statuses = (ExecutionStatus.PENDING.value, ExecutionStatus.RUNNING.value)
        if status == ExecutionStatus.DONE:
            updated = self.db.execute(
                """UPDATE executions SET status = %s, progress = 100, current_step = %s,
                   finished_at = %s WHERE id = %s AND status IN (%s, %s)""",
                (status.value, current_step or 0, _now(), execution_id, *open_statuses),
            )
        else:
            updated = self.db.execute(
                """UPDATE executions SET status = %s, error_message = %s, finished_at = %s
                   WHERE id = %s AND status IN (%s, %s)""",
                (status.value, error_message, _now(), execution_id, *open_statuses),
            )
        if updated != 1:
            logger.info(f"Execution {execution_id} already terminal, kept its status")
            return False
        logger.info(f"Execution {execution_id} -> {status.value}")
        return True

    def request_cancel(self, execution_id: str) -> bool:
        """Flag a pending or running execution as cancelled.

        The runner observes the flag at the next step boundary.
        """
        updated = self.db.execute(
            """UPDATE executions SET status = %s, finished_at = %s
               WHERE id = %s AND status IN (%s, %s)""",
            (ExecutionStatus.CANCELLED.value, _now(), execution_id,
             ExecutionStatus.PENDING.value, ExecutionStatus.RUNNING.value),
        )
        if updated:
            logger.info(f"Cancellation requested for execution {execution_id}")
        return updated == 1

    # ── Step results ─────────────────────────────────────────

    def create_step_result(self, execution_id: str, step_index: int, input_preview: str) -> None:
        self.db.execute(
            """INSERT INTO step_results (execution_id, step_index, status, input_preview, started_at)
               VALUES (%s, %s, %s, %s, %s)""",
            (execution_id, step_index, StepResultStatus.RUNNING.value, input_preview, _now()),
        )

    def complete_step_result(
        self,
        execution_id: str,
        step_index: int,
        *,
        output_preview: str,
        output_full: dict[str, Any],
        input_hash: Optional[str],
        output_hash: Optional[str],
        run_id: Optional[str],
        provider_response_id: Optional[str],
    ) -> None:
        self.db.execute(
            """UPDATE step_results SET status = %s, output_preview = %s, output_full = %s,
               input_hash = %s, output_hash = %s, run_id = %s, provider_response_id = %s,
               finished_at = %s
               WHERE execution_id = %s AND step_index = %s""",
            (StepResultStatus.DONE.value, output_preview, _json_dumps(output_full),
             input_hash, output_hash, run_id, provider_response_id, _now(),
             execution_id, step_index),
        )

    def skip_step_result(self, execution_id: str, step_index: int, output_preview: str) -> None:
        self.db.execute(
            """UPDATE step_results SET status = %s, output_preview = %s, finished_at = %s
               WHERE execution_id = %s AND step_index = %s""",
            (StepResultStatus.SKIPPED.value, output_preview, _now(), execution_id, step_index),
        )

    def fail_step_result(self, execution_id: str, step_index: int, error_message: str) -> None:
        self.db.execute(
            """UPDATE step_results SET status = %s, error_message = %s, finished_at = %s
               WHERE execution_id = %s AND step_index = %s""",
            (StepResultStatus.ERROR.value, error_message, _now(), execution_id, step_index),
        )

    def list_step_results(self, execution_id: str) -> list[StepResult]:
        rows = self.db.execute(
            "SELECT * FROM step_results WHERE execution_id = %s ORDER BY step_index",
            (execution_id,),
            fetch="all",
        )
        results = []
        for row in rows:
            row["output_full"] = _json_loads(row.get("output_full"))
            results.append(StepResult.model_validate(row))
        return results

    # ── Provider calls, usage, files ─────────────────────────

    def create_run(
        self,
        run_type: str,
        provider: str,
        model: str,
        *,
        execution_id: Optional[str] = None,
        step_index: Optional[int] = None,
    ) -> str:
        run_id = _new_id()
        self.db.execute(
            """INSERT INTO runs (id, execution_id, step_index, type, provider, model, status, created_at)
               VALUES (%s, %s, %s, %s, %s, %s, %s, %s)""",
            (run_id, execution_id, step_index, run_type, provider, model, "running", _now()),
        )
        return run_id

    def update_run(
        self,
        run_id: str,
        status: str,
        *,
        provider_job_id: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        finished_at = _now() if status in ("done", "error") else None
        self.db.execute(
            """UPDATE runs SET status = %s,
               provider_job_id = COALESCE(%s, provider_job_id),
               error_message = %s,
               finished_at = COALESCE(%s, finished_at)
               WHERE id = %s""",
            (status, provider_job_id, error_message, finished_at, run_id),
        )

    def log_usage(
        self,
        run_id: str,
        provider: str,
        model: str,
        units: dict[str, Any],
        latency_ms: int,
        cost_cents: int,
    ) -> None:
        self.db.execute(
            """INSERT INTO usage_events (run_id, provider, model, units, latency_ms, cost_cents, created_at)
               VALUES (%s, %s, %s, %s, %s, %s, %s)""",
            (run_id, provider, model, _json_dumps(units), latency_ms, cost_cents, _now()),
        )

    def get_run_usage(self, run_id: str) -> tuple[int, Optional[str]]:
        """Total cost in cents and the model of the first usage event for a run."""
        rows = self.db.execute(
            "SELECT model, cost_cents FROM usage_events WHERE run_id = %s ORDER BY id",
            (run_id,),
            fetch="all",
        )
        total = sum(r["cost_cents"] or 0 for r in rows)
        model = rows[0]["model"] if rows else None
        return total, model

    def create_file(self, run_id: str, kind: str, mime: str, size: int, storage_key: str) -> str:
        file_id = _new_id()
        self.db.execute(
            """INSERT INTO files (id, run_id, kind, mime, size, storage_key, created_at)
               VALUES (%s, %s, %s, %s, %s, %s, %s)""",
            (file_id, run_id, kind, mime, size, storage_key, _now()),
        )
        return file_id

    def count_files(self, run_id: Optional[str] = None) -> int:
        if run_id is None:
            row = self.db.execute("SELECT COUNT(*) AS n FROM files", fetch="one")
        else:
            row = self.db.execute(
                "SELECT COUNT(*) AS n FROM files WHERE run_id = %s", (run_id,), fetch="one"
            )
        return row["n"] if row else 0

    # ── Integrations ─────────────────────────────────────────

    def save_publish_integration(self, integration: PublishIntegration) -> None:
        self.db.execute(
            "DELETE FROM publish_integrations WHERE workspace_id = %s",
            (integration.workspace_id,),
        )
        self.db.execute(
            """INSERT INTO publish_integrations
               (workspace_id, base_url, adapter_type, auth_type, credentials_enc,
                default_content_type, body_format, publish_mode, is_enabled)
               VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)""",
            (integration.workspace_id, integration.base_url, integration.adapter_type,
             integration.auth_type, integration.credentials_enc,
             integration.default_content_type, integration.body_format,
             integration.publish_mode, integration.is_enabled),
        )

    def get_publish_integration(self, workspace_id: str) -> Optional[PublishIntegration]:
        row = self.db.execute(
            "SELECT * FROM publish_integrations WHERE workspace_id = %s",
            (workspace_id,),
            fetch="one",
        )
        if row is None:
            return None
        row["is_enabled"] = bool(row.get("is_enabled"))
        return PublishIntegration.model_validate(row)
