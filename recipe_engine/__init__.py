"""Recipe engine: multi-step AI pipelines (transcribe, write, illustrate, publish)."""

__version__ = "0.1.0"
