from __future__ import annotations

import logging
import uuid
from typing import Iterable, List, Optional, Sequence

from ..concurrent import RunChannels, RunnerConfig, RunResult, TaskRunner
from ..events import LoggingObserver, RunObserver
from .indexing import Indexer, NoopIndexer
from .linkage import ParentLinkageResolver
from .models import (
    ParseResult,
    StructuralNode,
    StructureRecord,
    TitleRecord,
    metrics_payload,
    title_metrics_key,
)
from .parser import StructureParser
from .repository import StructureRepository
from .storage import LocalTitleStorage

logger = logging.getLogger(__name__)


class TitleProcessingError(RuntimeError):
    def __init__(self, title_number: int, message: str):
        super().__init__(f"title {title_number}: {message}")
        self.title_number = title_number


def filter_titles(titles: Iterable[TitleRecord], titles_filter: Optional[Iterable[str]]) -> List[TitleRecord]:
    wanted = {t.strip() for t in titles_filter or [] if t.strip()}
    if not wanted:
        return list(titles)
    return [t for t in titles if str(t.number) in wanted]


def log_run_summary(label: str, result: RunResult) -> None:
    if result.errors:
        logger.info("%s - Completed with %d errors", label, len(result.errors))
        for err in result.errors:
            logger.info("%s - Error: %s", label, err)
    else:
        logger.info("%s - Successfully processed %d items", label, len(result.results))


class StructureWorker:
    """
    Drives each title through parse -> parent linkage -> persistence -> indexing.
    The worker is stateless and relies on the repository for title and
    structure state and on the storage adapter for the stored XML.
    """

    def __init__(
        self,
        repository: StructureRepository,
        storage: LocalTitleStorage,
        indexer: Optional[Indexer] = None,
        parser: Optional[StructureParser] = None,
        resolver: Optional[ParentLinkageResolver] = None,
        runner_config: Optional[RunnerConfig] = None,
        observer: Optional[RunObserver] = None,
    ):
        self.repo = repository
        self.storage = storage
        self.indexer = indexer or NoopIndexer()
        self.parser = parser or StructureParser()
        self.resolver = resolver or ParentLinkageResolver(self.parser.separator)
        self.runner_config = runner_config or RunnerConfig(max_concurrency=5, log_prefix="CFR Structure Parser")
        self.observer = observer or LoggingObserver()

    def process_title(self, title_number: int) -> ParseResult:
        content = self.storage.read_title_xml(title_number)
        parsed = self.parser.parse(content, document_id=f"title-{title_number}")
        linked = self.resolver.resolve(parsed.nodes)
        records = self._map_structures(title_number, linked)

        self.repo.replace_structures(title_number, records)
        self.repo.save_computed_value(title_metrics_key(title_number), metrics_payload(parsed))
        self.indexer.index_title(title_number, records)
        return parsed

    def process_all_titles(self, titles_filter: Optional[Iterable[str]] = None) -> RunResult[int]:
        titles = filter_titles(self.repo.list_titles(), titles_filter)
        logger.info("Processing %d titles", len(titles))

        runner: TaskRunner[TitleRecord, int] = TaskRunner(self.runner_config, observer=self.observer)
        result = runner.run(titles, self._process_title_item)
        log_run_summary(self.runner_config.log_prefix, result)
        return result

    def _process_title_item(self, title: TitleRecord, channels: RunChannels[int]) -> None:
        channels.message(f"Processing: Title {title.number}")
        try:
            parsed = self.process_title(title.number)
        except Exception as exc:  # noqa: BLE001
            channels.message(f"Failed: Title {title.number} - {exc}")
            error = TitleProcessingError(title.number, str(exc))
            error.__cause__ = exc
            channels.error(error)
            return
        channels.message(f"Success: Title {title.number} ({len(parsed.nodes)} structures, {parsed.total_words} words)")
        channels.result(title.number)

    def _map_structures(self, title_number: int, nodes: Sequence[StructuralNode]) -> List[StructureRecord]:
        # Ids are assigned here, after the whole document is parsed; parents
        # are then translated from node indexes to those ids.
        ids = [str(uuid.uuid4()) for _ in nodes]
        records: List[StructureRecord] = []
        for record_id, node in zip(ids, nodes):
            records.append(
                StructureRecord(
                    id=record_id,
                    title_number=title_number,
                    division_type=node.division_type,
                    division_level=node.level,
                    identifier=node.identifier,
                    node_id=node.node_id,
                    heading=node.heading,
                    text_content=node.text,
                    word_count=node.word_count,
                    parent_id=ids[node.parent] if node.parent is not None else None,
                    path=node.path,
                )
            )
        return records
