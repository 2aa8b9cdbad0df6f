"""Account orchestrator: distribute LLM tasks across several backend accounts."""

__version__ = "0.1.0"
