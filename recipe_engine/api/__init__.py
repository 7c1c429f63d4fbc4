"""HTTP API for creating, polling and cancelling recipe executions."""
