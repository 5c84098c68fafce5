"""Risk-aware orchestration engine for multi-agent mental-health conversations."""

__version__ = "0.1.0"
