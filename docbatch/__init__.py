"""docbatch — token-budgeted batch planner and task orchestrator."""

__version__ = "0.4.0"
