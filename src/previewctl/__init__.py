"""previewctl - per-pull-request preview environment orchestrator."""

__version__ = "0.1.0"
