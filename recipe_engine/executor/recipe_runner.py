"""Recipe execution: runs the steps of one execution in order.

The runner is the entry point for executing a RecipeExecution. It:

1. Loads the execution and its recipe definition
2. Moves the execution pending -> running (no-op for anything else)
3. Seeds the StepContext from the execution input
4. For each step: checks for cancellation, records a StepResult,
   evaluates the step condition, dispatches to the step executor and
   folds the step's provider cost into the ledger
5. Fails fast on the first step error (no retries at this level)
6. Extracts confidence metadata and a preview handle (non-fatal),
   writes the cost breakdown and marks the execution done
7. Sends a best-effort completion notification

Cancellation is cooperative: the status is re-read from the store at
every step boundary, never mid-call.

This runs in a background thread, spawned by the API route.
"""

import hashlib
import logging
import math
import threading
import uuid
from typing import Optional

from recipe_engine.executor.conditions import evaluate_condition
from recipe_engine.executor.context import StepContext
from recipe_engine.executor.cost import CostLedger
from recipe_engine.executor.formatter import find_step_json
from recipe_engine.executor.notifier import Notifier, NullNotifier
from recipe_engine.executor.schemas import Execution, ExecutionStatus, StepOutput
from recipe_engine.executor.steps import StepDependencies, execute_step
from recipe_engine.executor.store import ExecutionStore
from recipe_engine.recipes.schemas import RecipeDefinition, RecipeStep

logger = logging.getLogger(__name__)

PREVIEW_LIMIT = 500
AUDIO_INPUT_PLACEHOLDER = "[audio input]"
SKIPPED_PLACEHOLDER = "[Skipped by condition]"

# Thread-safe guard against double-execution of the same execution id.
_active_executions: set[str] = set()
_active_executions_lock = threading.Lock()


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class RecipeRunner:
    """Drives one execution at a time through its recipe steps."""

    def __init__(
        self,
        store: ExecutionStore,
        deps: StepDependencies,
        notifier: Optional[Notifier] = None,
    ):
        self.store = store
        self.deps = deps
        self.notifier = notifier or NullNotifier()

    # ── Entry point ──────────────────────────────────────────

    def run(self, execution_id: str) -> None:
        """Execute all steps of an execution. Safe to call twice: the second call is a no-op."""
        with _active_executions_lock:
            if execution_id in _active_executions:
                logger.warning(
                    f"DUPLICATE EXECUTION BLOCKED: execution {execution_id} is already running."
                )
                return
            _active_executions.add(execution_id)

        try:
            execution = self.store.get_execution(execution_id)
            if execution is None:
                logger.warning(f"[exec {execution_id}] Not found, nothing to run")
                return
            if execution.status != ExecutionStatus.PENDING:
                logger.info(
                    f"[exec {execution_id}] Status is {execution.status.value}, not runnable"
                )
                return

            recipe = self.store.get_recipe(execution.recipe_id)
            if recipe is None:
                self.store.finish_execution(
                    execution_id, ExecutionStatus.ERROR,
                    error_message=f"Recipe not found: {execution.recipe_id}",
                )
                return

            if not self.store.mark_running(execution_id):
                logger.info(f"[exec {execution_id}] Already claimed by another worker")
                return

            self._run_steps(execution, recipe)

        except Exception as e:
            # Store or wiring failure outside any step
            logger.error(f"[exec {execution_id}] Execution failed: {e}", exc_info=True)
            try:
                self.store.finish_execution(execution_id, ExecutionStatus.ERROR, error_message=str(e))
            except Exception as store_error:
                logger.error(f"[exec {execution_id}] Could not record failure: {store_error}")

        finally:
            with _active_executions_lock:
                _active_executions.discard(execution_id)

    # ── Step loop ────────────────────────────────────────────

    def _cancelled(self, execution_id: str, ledger: CostLedger) -> bool:
        if self.store.get_status(execution_id) != ExecutionStatus.CANCELLED:
            return False
        self.store.write_cost(execution_id, ledger.entries)
        logger.info(f"[exec {execution_id}] Cancelled, stopping at step boundary")
        return True

    def _run_steps(self, execution: Execution, recipe: RecipeDefinition) -> None:
        execution_id = execution.id
        steps = recipe.steps
        total = len(steps)
        context = StepContext.from_input(execution.input, execution_id, execution.workspace_id)
        ledger = CostLedger()

        logger.info(f"[exec {execution_id}] Starting recipe '{recipe.name}' ({total} steps)")

        for i, step in enumerate(steps):
            if self._cancelled(execution_id, ledger):
                return

            self.store.create_step_result(
                execution_id, step.index,
                context.previous_output[:PREVIEW_LIMIT] or AUDIO_INPUT_PLACEHOLDER,
            )
            self.store.update_progress(execution_id, i, _round_half_up(i / total * 100))

            condition = step.config.condition
            if condition is not None and not evaluate_condition(condition, context):
                logger.info(f"[exec {execution_id}] Step {step.index} ({step.name}) skipped by condition")
                self.store.skip_step_result(execution_id, step.index, SKIPPED_PLACEHOLDER)
                continue

            try:
                output = execute_step(step, context, self.deps)
            except InterruptedError:
                self.store.fail_step_result(execution_id, step.index, "Interrupted")
                self.store.write_cost(execution_id, ledger.entries)
                self.store.finish_execution(execution_id, ExecutionStatus.CANCELLED)
                logger.info(f"[exec {execution_id}] Interrupted during step {step.index}")
                return
            except Exception as e:
                self._fail(execution_id, step, i, e, ledger)
                return

            if output.skipped:
                logger.info(f"[exec {execution_id}] Step {step.index} ({step.name}) skipped: nothing to do")
                self.store.skip_step_result(execution_id, step.index, output.text[:PREVIEW_LIMIT])
                continue

            self._complete_step(execution_id, step, context, output, ledger)

        # Cancellation requested while the last step was running
        if self._cancelled(execution_id, ledger):
            return

        self._extract_metadata(execution_id, context)
        if recipe.has_output_format:
            self._generate_preview(execution_id, context)

        self.store.write_cost(execution_id, ledger.entries)
        self.store.finish_execution(execution_id, ExecutionStatus.DONE, current_step=total)
        logger.info(
            f"[exec {execution_id}] Done: {total} steps, {ledger.total_cents}c total"
        )
        self._notify(execution_id)

    def _complete_step(
        self,
        execution_id: str,
        step: RecipeStep,
        context: StepContext,
        output: StepOutput,
        ledger: CostLedger,
    ) -> None:
        input_hash = _sha256(context.previous_output) if context.previous_output else None
        output_hash = _sha256(output.text) if output.text else None

        output_full = {"text": output.text}
        if output.citations:
            output_full["citations"] = output.citations

        self.store.complete_step_result(
            execution_id, step.index,
            output_preview=output.text[:PREVIEW_LIMIT],
            output_full=output_full,
            input_hash=input_hash,
            output_hash=output_hash,
            run_id=output.run_id,
            provider_response_id=output.provider_response_id,
        )

        if output.run_id:
            cost_cents, usage_model = self.store.get_run_usage(output.run_id)
            model = usage_model or getattr(step.config, "model_id", None) or "unknown"
            ledger.add(step.index, model, cost_cents)

        context.record(step.index, output.text)
        logger.info(
            f"[exec {execution_id}] Step {step.index} ({step.name}) done: "
            f"{len(output.text):,} chars"
        )

    def _fail(
        self,
        execution_id: str,
        step: RecipeStep,
        position: int,
        error: Exception,
        ledger: CostLedger,
    ) -> None:
        message = str(error) or type(error).__name__
        logger.error(
            f"[exec {execution_id}] Step {step.index} ({step.name}) failed: {message}",
            exc_info=True,
        )
        self.store.fail_step_result(execution_id, step.index, message)
        self.store.write_cost(execution_id, ledger.entries)
        finished = self.store.finish_execution(
            execution_id, ExecutionStatus.ERROR,
            error_message=f"Step {position + 1} ({step.name}) failed: {message}",
        )
        if finished:
            self._notify(execution_id)

    # ── Post-run (non-fatal) ─────────────────────────────────

    def _notify(self, execution_id: str) -> None:
        try:
            self.notifier.notify(execution_id)
        except Exception as e:
            logger.warning(f"[exec {execution_id}] Notification failed (non-fatal): {e}")

    def _extract_metadata(self, execution_id: str, context: StepContext) -> None:
        """Copy the first fact-check confidence score and verdict onto the execution."""
        try:
            fact_check = find_step_json(context, lambda j: _is_number(j.get("confidence_score")))
            if fact_check is None:
                return
            verdict = fact_check.get("overall_verdict")
            warning_flag = None if verdict == "safe" else (verdict or None)
            self.store.set_metadata(
                execution_id, _round_half_up(fact_check["confidence_score"]), warning_flag
            )
        except Exception as e:
            logger.warning(f"[exec {execution_id}] Metadata extraction failed (non-fatal): {e}")

    def _generate_preview(self, execution_id: str, context: StepContext) -> None:
        """Store a public preview handle when the run produced structured output."""
        try:
            if find_step_json(context, lambda j: True, last=True) is None:
                return
            preview_hash = uuid.uuid4().hex[:12]
            self.store.set_preview_hash(execution_id, preview_hash)
            logger.info(f"[exec {execution_id}] Preview available at /preview/{preview_hash}")
        except Exception as e:
            logger.warning(f"[exec {execution_id}] Preview generation failed (non-fatal): {e}")


def start_execution_thread(runner: RecipeRunner, execution_id: str) -> threading.Thread:
    """Spawn a background thread to run the execution.

    Returns the thread (for testing). In production, the caller
    doesn't need to join: the thread updates the store directly.
    """
    thread = threading.Thread(
        target=runner.run,
        args=(execution_id,),
        name=f"recipe-{execution_id}",
        daemon=True,
    )
    thread.start()
    logger.info(f"Started execution thread for {execution_id}")
    return thread
