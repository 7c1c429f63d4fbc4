"""Tests for the SQL execution store (SQLite)."""

from datetime import datetime

from conftest import make_recipe

from recipe_engine.executor.schemas import (
    CostEntry,
    ExecutionInput,
    ExecutionStatus,
    InputMode,
    PublishIntegration,
    StepResultStatus,
)


def _recipe():
    return make_recipe(("Write", "llm", {"model_id": "gpt-5-mini"}), name="Store test")


def test_recipe_round_trip(store):
    recipe = _recipe()
    recipe_id = store.save_recipe(recipe)
    assert store.get_recipe(recipe_id) == recipe
    assert store.get_recipe("missing") is None


def test_execution_lifecycle(store):
    recipe_id = store.save_recipe(_recipe())
    execution = store.create_execution(
        recipe_id, ExecutionInput(text="hello", input_mode=InputMode.TEXT), user_id="u1"
    )
    assert execution.status == ExecutionStatus.PENDING
    assert execution.recipe_name == "Store test"
    assert execution.input.text == "hello"
    assert execution.input.input_mode == InputMode.TEXT

    assert store.mark_running(execution.id) is True
    assert store.mark_running(execution.id) is False

    store.update_progress(execution.id, 1, 50)
    store.write_cost(execution.id, [CostEntry(step_index=0, model="gpt-5-mini", cost_cents=4),
                                    CostEntry(step_index=1, model="gpt-4o", cost_cents=6)])
    store.finish_execution(execution.id, ExecutionStatus.DONE, current_step=2)

    finished = store.get_execution(execution.id)
    assert finished.status == ExecutionStatus.DONE
    assert finished.progress == 100
    assert finished.current_step == 2
    assert finished.total_cost_cents == 10
    assert [e.cost_cents for e in finished.cost_breakdown] == [4, 6]
    assert finished.started_at and finished.finished_at
    assert datetime.fromisoformat(finished.finished_at).tzinfo is not None


def test_cancel_only_non_terminal(store):
    recipe_id = store.save_recipe(_recipe())
    execution = store.create_execution(recipe_id, ExecutionInput(text="x"))
    assert store.request_cancel(execution.id) is True
    assert store.get_status(execution.id) == ExecutionStatus.CANCELLED
    assert store.request_cancel(execution.id) is False
    assert store.mark_running(execution.id) is False


def test_step_results(store):
    recipe_id = store.save_recipe(_recipe())
    execution = store.create_execution(recipe_id, ExecutionInput(text="x"))

    store.create_step_result(execution.id, 0, "in")
    store.complete_step_result(
        execution.id, 0,
        output_preview="out", output_full={"text": "out"},
        input_hash="a" * 64, output_hash="b" * 64,
        run_id="run-1", provider_response_id="resp-1",
    )
    store.create_step_result(execution.id, 1, "out")
    store.skip_step_result(execution.id, 1, "[Skipped by condition]")
    store.create_step_result(execution.id, 2, "out")
    store.fail_step_result(execution.id, 2, "boom")

    results = store.list_step_results(execution.id)
    assert [r.status for r in results] == [
        StepResultStatus.DONE, StepResultStatus.SKIPPED, StepResultStatus.ERROR,
    ]
    assert results[0].output_full == {"text": "out"}
    assert results[0].run_id == "run-1"
    assert results[1].output_preview == "[Skipped by condition]"
    assert results[2].error_message == "boom"


def test_run_usage_sums_events(store):
    run_id = store.create_run("image", "fal", "fal-ai/flux/schnell", execution_id=None, step_index=0)
    store.log_usage(run_id, "fal", "fal-ai/flux/schnell", {"images": 1}, 900, 3)
    store.log_usage(run_id, "fal", "fal-ai/flux/schnell", {"images": 1}, 800, 2)
    assert store.get_run_usage(run_id) == (5, "fal-ai/flux/schnell")
    assert store.get_run_usage("unknown") == (0, None)


def test_files(store):
    run_id = store.create_run("image", "fal", "fal-ai/flux/schnell")
    store.create_file(run_id, "output", "image/jpeg", 10, "image/output/x.jpg")
    assert store.count_files(run_id) == 1
    assert store.count_files() == 1


def test_publish_integration_upsert(store):
    store.save_publish_integration(PublishIntegration(workspace_id="ws", base_url="https://a.example"))
    store.save_publish_integration(
        PublishIntegration(workspace_id="ws", base_url="https://b.example", is_enabled=False)
    )
    integration = store.get_publish_integration("ws")
    assert integration.base_url == "https://b.example"
    assert integration.is_enabled is False
    assert store.get_publish_integration("other") is None


def test_finish_does_not_overwrite_terminal_status(store):
    recipe_id = store.save_recipe(_recipe())
    execution = store.create_execution(recipe_id, ExecutionInput(text="x"))
    assert store.mark_running(execution.id)
    assert store.request_cancel(execution.id)

    assert store.finish_execution(execution.id, ExecutionStatus.ERROR, error_message="late") is False
    assert store.get_status(execution.id) == ExecutionStatus.CANCELLED
