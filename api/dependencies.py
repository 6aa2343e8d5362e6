from __future__ import annotations

import os
from datetime import date
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from regulation_analyzer.concurrent import RunnerConfig
from regulation_analyzer.structure import (
    ChangeTracker,
    LocalTitleStorage,
    RQJobQueue,
    SqlAlchemyStructureRepository,
    StoragePaths,
    StructureRepository,
    StructureWorker,
    WhooshIndexer,
    WorkerConfig,
)


@lru_cache(maxsize=1)
def get_config() -> WorkerConfig:
    return WorkerConfig.from_env()


@lru_cache(maxsize=1)
def get_repo() -> StructureRepository:
    return SqlAlchemyStructureRepository(get_config().database_url)


@lru_cache(maxsize=1)
def get_storage() -> LocalTitleStorage:
    return LocalTitleStorage(StoragePaths(Path(get_config().title_storage_root)))


@lru_cache(maxsize=1)
def get_indexer() -> WhooshIndexer:
    return WhooshIndexer(Path(get_config().whoosh_index_dir))


@lru_cache(maxsize=1)
def get_job_queue() -> RQJobQueue:
    return RQJobQueue(os.getenv("REDIS_URL", "redis://localhost:6379/0"))


def build_worker() -> StructureWorker:
    config = get_config()
    return StructureWorker(
        repository=get_repo(),
        storage=get_storage(),
        indexer=get_indexer(),
        runner_config=RunnerConfig(max_concurrency=config.max_concurrency, log_prefix="CFR Structure Parser"),
    )


def build_change_tracker() -> ChangeTracker:
    return ChangeTracker(
        repository=get_repo(),
        storage=get_storage(),
        max_concurrency=get_config().max_concurrency,
    )


def parse_titles_filter(titles: Optional[str]) -> List[str]:
    if not titles:
        return []
    return [t for t in titles.split(",") if t.strip()]


def parse_date(value: str, name: str) -> date:
    """Parse a YYYY-MM-DD query value. The app maps the ValueError to HTTP 400."""
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise ValueError(f"Invalid {name} format. Use YYYY-MM-DD") from exc
