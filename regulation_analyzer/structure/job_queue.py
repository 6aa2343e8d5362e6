from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import List, Optional

from redis import Redis
from rq import Queue, Worker

from ..concurrent import RunnerConfig
from .changes import ChangeTracker
from .indexing import WhooshIndexer
from .repository import SqlAlchemyStructureRepository
from .storage import LocalTitleStorage, StoragePaths
from .worker import StructureWorker

DEFAULT_DATABASE_URL = "sqlite+pysqlite:///./data/regulation_analyzer.db"


@dataclass
class WorkerConfig:
    database_url: str = DEFAULT_DATABASE_URL
    title_storage_root: str = "./data"
    whoosh_index_dir: str = "./data/whoosh"
    max_concurrency: int = 5

    @classmethod
    def from_env(cls) -> "WorkerConfig":
        return cls(
            database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
            title_storage_root=os.getenv("TITLE_STORAGE_ROOT", "./data"),
            whoosh_index_dir=os.getenv("WHOOSH_DIR", "./data/whoosh"),
            max_concurrency=int(os.getenv("MAX_CONCURRENCY", "5")),
        )


def build_structure_worker(config: WorkerConfig) -> StructureWorker:
    return StructureWorker(
        repository=SqlAlchemyStructureRepository(config.database_url),
        storage=LocalTitleStorage(StoragePaths(Path(config.title_storage_root))),
        indexer=WhooshIndexer(Path(config.whoosh_index_dir)),
        runner_config=RunnerConfig(max_concurrency=config.max_concurrency, log_prefix="CFR Structure Parser"),
    )


def build_change_tracker(config: WorkerConfig) -> ChangeTracker:
    return ChangeTracker(
        repository=SqlAlchemyStructureRepository(config.database_url),
        storage=LocalTitleStorage(StoragePaths(Path(config.title_storage_root))),
        max_concurrency=config.max_concurrency,
    )


def run_structure_batch(titles_filter: Optional[List[str]], config: WorkerConfig) -> List[int]:
    """
    RQ task entrypoint. Parses and stores the structure of every filtered title.
    Returns the title numbers that succeeded; failures are logged by the worker.
    """
    result = build_structure_worker(config).process_all_titles(titles_filter)
    return sorted(result.results)


def run_change_computation(
    start_date: str,
    end_date: str,
    titles_filter: Optional[List[str]],
    config: WorkerConfig,
) -> int:
    """
    RQ task entrypoint. Dates are ISO strings so the job payload stays plain.
    """
    tracker = build_change_tracker(config)
    changes = tracker.compute_changes(date.fromisoformat(start_date), date.fromisoformat(end_date), titles_filter)
    return len(changes)


class RQJobQueue:
    """
    Redis-backed job queue using RQ. The queue pushes jobs to Redis and workers
    can be started by calling `work()` in a dedicated process.
    """

    def __init__(self, redis_url: str = "redis://localhost:6379/0", queue_name: str = "structure-jobs"):
        self.redis = Redis.from_url(redis_url)
        self.queue = Queue(queue_name, connection=self.redis)

    def enqueue_structure_batch(self, titles_filter: Optional[List[str]], config: WorkerConfig):
        return self.queue.enqueue(run_structure_batch, titles_filter, config, retry=None)

    def enqueue_change_computation(
        self,
        start_date: date,
        end_date: date,
        titles_filter: Optional[List[str]],
        config: WorkerConfig,
    ):
        # One job per date range; RQ job id doubles as an idempotency key.
        job_id = f"changes-{start_date.isoformat()}-{end_date.isoformat()}"
        return self.queue.enqueue(
            run_change_computation,
            start_date.isoformat(),
            end_date.isoformat(),
            titles_filter,
            config,
            job_id=job_id,
            retry=None,
        )

    def work(self):
        worker = Worker([self.queue], connection=self.redis)
        worker.work(with_scheduler=True)
