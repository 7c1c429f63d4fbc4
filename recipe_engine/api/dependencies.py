"""Process-wide collaborators for the API routes.

Each getter lazily builds a singleton. Routes take them through
FastAPI `Depends`, so tests swap them with `app.dependency_overrides`.
"""

import logging
import threading
from typing import Callable, Optional

from recipe_engine.executor.db import Database
from recipe_engine.executor.notifier import TelegramNotifier
from recipe_engine.executor.recipe_runner import RecipeRunner, start_execution_thread
from recipe_engine.executor.steps import StepDependencies
from recipe_engine.executor.store import ExecutionStore, SqlExecutionStore
from recipe_engine.recipes.registry import PresetRegistry, get_preset_registry

logger = logging.getLogger(__name__)

_store: Optional[SqlExecutionStore] = None
_runner: Optional[RecipeRunner] = None
_lock = threading.Lock()


def get_store() -> ExecutionStore:
    global _store
    with _lock:
        if _store is None:
            _store = SqlExecutionStore(Database())
        return _store


def get_runner() -> RecipeRunner:
    global _runner
    store = get_store()
    with _lock:
        if _runner is None:
            _runner = RecipeRunner(
                store,
                StepDependencies.from_env(store),
                notifier=TelegramNotifier(store),
            )
        return _runner


def get_registry() -> PresetRegistry:
    return get_preset_registry()


def get_launcher() -> Callable[[str], None]:
    """How a created execution is started: a background thread per execution."""
    runner = get_runner()

    def _launch(execution_id: str) -> None:
        start_execution_thread(runner, execution_id)

    return _launch
