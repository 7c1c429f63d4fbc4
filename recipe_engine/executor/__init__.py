"""Execution engine for recipes.

Takes a persisted execution and runs its recipe's steps in order,
threading each step's output into the next, recording step results and
cost, and deciding the terminal state.

Architecture (bottom-up):
- context: StepContext accumulator of prior step outputs
- interpolation: {{...}} prompt template substitution
- conditions: step conditions and dynamic model resolution
- poller: backoff polling loop for queue-based providers
- cost: pricing table and per-execution cost ledger
- formatter: output_format rendering and the drupal_json payload
- steps: one executor per step type
- notifier: best-effort completion notifications
- recipe_runner: the step loop, cancellation, terminal state
- db / store: SQL persistence (SQLite or Postgres)
"""
