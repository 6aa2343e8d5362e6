from __future__ import annotations

import logging
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Generic, Iterable, List, Optional, TypeVar

from ..events import LoggingObserver, RunObserver

T = TypeVar("T")
R = TypeVar("R")

logger = logging.getLogger(__name__)

# Marks the end of a collector stream.
_CLOSED = object()


@dataclass
class RunnerConfig:
    max_concurrency: int = 0  # 0 means unlimited
    log_prefix: str = "Runner"

    def __post_init__(self) -> None:
        if self.max_concurrency < 0:
            raise ValueError(f"max_concurrency must be >= 0, got {self.max_concurrency}")
        if not self.log_prefix:
            self.log_prefix = "Runner"


@dataclass
class RunResult(Generic[R]):
    results: List[R] = field(default_factory=list)
    errors: List[BaseException] = field(default_factory=list)


class RunChannels(Generic[R]):
    """
    Write side of the three collector streams handed to every worker call.
    A worker reports any number of messages followed by exactly one result
    or error.
    """

    def __init__(self) -> None:
        self.messages: "queue.SimpleQueue[object]" = queue.SimpleQueue()
        self.results: "queue.SimpleQueue[object]" = queue.SimpleQueue()
        self.errors: "queue.SimpleQueue[object]" = queue.SimpleQueue()

    def message(self, text: str) -> None:
        self.messages.put(text)

    def result(self, value: R) -> None:
        self.results.put(value)

    def error(self, exc: BaseException) -> None:
        self.errors.put(exc)

    def close(self) -> None:
        self.messages.put(_CLOSED)
        self.results.put(_CLOSED)
        self.errors.put(_CLOSED)


WorkerFunc = Callable[[T, RunChannels[R]], None]


class TaskRunner(Generic[T, R]):
    """
    Runs a worker function once per item on a thread pool.

    When ``max_concurrency`` is positive a bounded semaphore gates admission:
    the dispatcher takes a permit before submitting each item and the task
    gives it back when the worker returns or raises. Messages, results and
    errors are drained by one collector thread each while the workers run.
    Both ``run`` and ``run_with_callbacks`` return only after every worker
    has finished and every collector has emptied its stream.
    """

    def __init__(self, config: Optional[RunnerConfig] = None, observer: Optional[RunObserver] = None):
        self.config = config or RunnerConfig()
        self.observer = observer or LoggingObserver()

    def run(self, items: Iterable[T], worker: WorkerFunc) -> RunResult[R]:
        items = list(items)
        if not items:
            return RunResult()

        result: RunResult[R] = RunResult()
        self._execute(
            items,
            worker,
            on_message=None,
            on_result=result.results.append,
            on_error=result.errors.append,
        )
        return result

    def run_with_callbacks(
        self,
        items: Iterable[T],
        worker: WorkerFunc,
        on_message: Optional[Callable[[str], None]] = None,
        on_result: Optional[Callable[[R], None]] = None,
        on_error: Optional[Callable[[BaseException], None]] = None,
    ) -> None:
        items = list(items)
        if not items:
            return
        self._execute(items, worker, on_message=on_message, on_result=on_result, on_error=on_error)

    def _execute(
        self,
        items: List[T],
        worker: WorkerFunc,
        on_message: Optional[Callable[[str], None]],
        on_result: Optional[Callable[[R], None]],
        on_error: Optional[Callable[[BaseException], None]],
    ) -> None:
        prefix = self.config.log_prefix
        counts = {"results": 0, "errors": 0}

        def handle_message(message: str) -> None:
            if on_message is not None:
                on_message(message)
            self.observer.on_message(prefix, message)

        def handle_result(value: R) -> None:
            counts["results"] += 1
            if on_result is not None:
                on_result(value)

        def handle_error(exc: BaseException) -> None:
            counts["errors"] += 1
            if on_error is not None:
                on_error(exc)

        channels: RunChannels[R] = RunChannels()
        collectors = [
            threading.Thread(target=_drain, args=(channels.messages, handle_message), name=f"{prefix}-messages", daemon=True),
            threading.Thread(target=_drain, args=(channels.results, handle_result), name=f"{prefix}-results", daemon=True),
            threading.Thread(target=_drain, args=(channels.errors, handle_error), name=f"{prefix}-errors", daemon=True),
        ]
        for collector in collectors:
            collector.start()

        self.observer.on_run_started(prefix, len(items))

        limit = self.config.max_concurrency
        permits = threading.BoundedSemaphore(limit) if limit > 0 else None
        pool_size = min(limit, len(items)) if limit > 0 else len(items)

        try:
            with ThreadPoolExecutor(max_workers=pool_size, thread_name_prefix=prefix) as executor:
                for item in items:
                    if permits is not None:
                        permits.acquire()
                    executor.submit(_invoke, worker, item, channels, permits)
        finally:
            channels.close()
            for collector in collectors:
                collector.join()

        self.observer.on_run_finished(prefix, counts["results"], counts["errors"])


def _invoke(
    worker: WorkerFunc,
    item: T,
    channels: RunChannels[R],
    permits: Optional[threading.BoundedSemaphore],
) -> None:
    try:
        worker(item, channels)
    except Exception as exc:  # noqa: BLE001
        channels.error(exc)
    finally:
        if permits is not None:
            permits.release()


def _drain(stream: "queue.SimpleQueue[object]", handler: Callable[[object], None]) -> None:
    while True:
        item = stream.get()
        if item is _CLOSED:
            return
        try:
            handler(item)
        except Exception:
            # The stream keeps draining after a failing handler.
            logger.exception("Collector %s: handler failed for %r", threading.current_thread().name, item)
