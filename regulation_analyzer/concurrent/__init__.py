"""
Bounded-concurrency task runner.
"""

from .runner import RunChannels, RunnerConfig, RunResult, TaskRunner, WorkerFunc

__all__ = [
    "RunChannels",
    "RunResult",
    "RunnerConfig",
    "TaskRunner",
    "WorkerFunc",
]
