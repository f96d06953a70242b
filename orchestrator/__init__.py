"""Workflow orchestration: phases, progress, background tasks and schedules."""

from .periodic import run_periodically
from .progress import ProgressReporter
from .service import PipelineOrchestrator, error_message
from .tasks import BackgroundTaskRegistry

__all__ = [
    "BackgroundTaskRegistry",
    "PipelineOrchestrator",
    "ProgressReporter",
    "error_message",
    "run_periodically",
]
