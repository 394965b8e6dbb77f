"""Utilities for previewctl."""

from previewctl.utils.pool import TaskOutcome, run_bounded

__all__ = ["TaskOutcome", "run_bounded"]
