"""
Example: parse a title XML file, store its structure in SQLite and index it with Whoosh.

Usage:
    python3 structure_demo.py --xml /path/to/title-12.xml --title-number 12 --title-name "Banks and Banking"
    python3 structure_demo.py --xml title-12.xml --title-number 12 --title-name "Banks" --enqueue
"""

import argparse
import logging
import os
from pathlib import Path

from regulation_analyzer.concurrent import RunnerConfig
from regulation_analyzer.structure import (
    LocalTitleStorage,
    RQJobQueue,
    SqlAlchemyStructureRepository,
    StoragePaths,
    StructureWorker,
    TitleRecord,
    WhooshIndexer,
    WorkerConfig,
    title_metrics_key,
)


def setup_logging(log_dir: Path) -> None:
    log_dir.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(log_dir / "app.log", encoding="utf-8"),
        ],
        force=True,
    )


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--xml", required=True, type=Path, help="Path to title XML")
    parser.add_argument("--title-number", required=True, type=int, help="Title number")
    parser.add_argument("--title-name", default="", help="Title name")
    parser.add_argument("--db", default=Path("./data/regulation_analyzer.db"), type=Path, help="SQLite DB path")
    parser.add_argument("--storage-root", default=Path("./data"), type=Path, help="Storage root for title XML")
    parser.add_argument("--whoosh-dir", default=Path("./data/whoosh"), type=Path, help="Whoosh index directory")
    parser.add_argument("--max-concurrency", default=5, type=int, help="Titles processed at once")
    parser.add_argument("--enqueue", action="store_true", help="Push the batch to RQ instead of running it here")
    parser.add_argument("--redis-url", default=os.getenv("REDIS_URL", "redis://localhost:6379/0"), help="Redis URL for --enqueue")
    args = parser.parse_args()

    if not args.xml.exists():
        raise FileNotFoundError(f"XML not found: {args.xml}")
    setup_logging(Path("./logs"))

    args.db.parent.mkdir(parents=True, exist_ok=True)
    config = WorkerConfig(
        database_url=f"sqlite+pysqlite:///{args.db}",
        title_storage_root=str(args.storage_root),
        whoosh_index_dir=str(args.whoosh_dir),
        max_concurrency=args.max_concurrency,
    )

    storage = LocalTitleStorage(StoragePaths(args.storage_root))
    storage.save_title_xml(args.title_number, args.xml.read_bytes())
    repo = SqlAlchemyStructureRepository(config.database_url)
    repo.save_title(TitleRecord(number=args.title_number, name=args.title_name))

    titles_filter = [str(args.title_number)]
    if args.enqueue:
        job = RQJobQueue(args.redis_url).enqueue_structure_batch(titles_filter, config)
        print(f"Enqueued structure job {job.id}")
        return

    worker = StructureWorker(
        repository=repo,
        storage=storage,
        indexer=WhooshIndexer(args.whoosh_dir),
        runner_config=RunnerConfig(max_concurrency=config.max_concurrency, log_prefix="CFR Structure Parser"),
    )
    result = worker.process_all_titles(titles_filter)
    print(f"Processed {len(result.results)} titles with {len(result.errors)} errors")
    for err in result.errors:
        print(f"  {err}")

    metrics = repo.get_computed_value(title_metrics_key(args.title_number))
    if metrics:
        print(f"Title {args.title_number}: {metrics.data['words']} words, {metrics.data['sections']} sections")


if __name__ == "__main__":
    main()
