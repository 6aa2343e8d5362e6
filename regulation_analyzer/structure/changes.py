from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from ..concurrent import RunChannels, RunnerConfig, TaskRunner
from ..events import LoggingObserver, RunObserver
from .models import TitleRecord, title_changes_key
from .parser import StructureParser
from .repository import StructureRepository
from .storage import LocalTitleStorage
from .worker import filter_titles

logger = logging.getLogger(__name__)


@dataclass
class VersionMetrics:
    total_words: int
    total_sections: int


@dataclass
class TitleChange:
    title_number: int
    start_date: date
    end_date: date
    word_count_change: int
    section_count_change: int
    total_words_start: int
    total_words_end: int
    total_sections_start: int
    total_sections_end: int
    percent_word_change: float
    percent_section_change: float

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["start_date"] = self.start_date.isoformat()
        data["end_date"] = self.end_date.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TitleChange":
        values = dict(data)
        values["start_date"] = date.fromisoformat(values["start_date"])
        values["end_date"] = date.fromisoformat(values["end_date"])
        return cls(**values)


def percent_change(start: int, change: int) -> float:
    if start <= 0:
        return 0.0
    return change / start * 100


class ChangeTracker:
    """
    Compares word and section counts of stored title versions and keeps the
    comparison as a computed value keyed by the date range.
    """

    def __init__(
        self,
        repository: StructureRepository,
        storage: LocalTitleStorage,
        parser: Optional[StructureParser] = None,
        max_concurrency: int = 3,
        observer: Optional[RunObserver] = None,
    ):
        self.repo = repository
        self.storage = storage
        self.parser = parser or StructureParser()
        self.max_concurrency = max_concurrency
        self.observer = observer or LoggingObserver()

    def compute_changes(
        self,
        start_date: date,
        end_date: date,
        titles_filter: Optional[Iterable[str]] = None,
    ) -> List[TitleChange]:
        logger.info("Computing changes from %s to %s", start_date.isoformat(), end_date.isoformat())
        titles = filter_titles(self.repo.list_titles(), titles_filter)

        changes: List[TitleChange] = []
        runner: TaskRunner[TitleRecord, TitleChange] = TaskRunner(
            RunnerConfig(max_concurrency=self.max_concurrency, log_prefix="Change Tracking"),
            observer=self.observer,
        )

        def worker(title: TitleRecord, channels: RunChannels[TitleChange]) -> None:
            try:
                change = self.compute_title_change(title.number, start_date, end_date)
            except Exception as exc:  # noqa: BLE001
                channels.message(f"Failed to compute change for title {title.number}: {exc}")
                channels.error(exc)
                return
            channels.message(
                f"Title {title.number}: {change.word_count_change} words changed, "
                f"{change.section_count_change} sections changed"
            )
            channels.result(change)

        runner.run_with_callbacks(titles, worker, on_result=changes.append)
        changes.sort(key=lambda c: c.title_number)

        self.repo.save_computed_value(title_changes_key(start_date, end_date), [c.to_dict() for c in changes])
        logger.info("Successfully computed changes for %d titles", len(changes))
        return changes

    def compute_title_change(self, title_number: int, start_date: date, end_date: date) -> TitleChange:
        start = self._version_metrics(title_number, start_date)
        end = self._version_metrics(title_number, end_date)

        word_change = end.total_words - start.total_words
        section_change = end.total_sections - start.total_sections
        return TitleChange(
            title_number=title_number,
            start_date=start_date,
            end_date=end_date,
            word_count_change=word_change,
            section_count_change=section_change,
            total_words_start=start.total_words,
            total_words_end=end.total_words,
            total_sections_start=start.total_sections,
            total_sections_end=end.total_sections,
            percent_word_change=percent_change(start.total_words, word_change),
            percent_section_change=percent_change(start.total_sections, section_change),
        )

    def _version_metrics(self, title_number: int, version_date: date) -> VersionMetrics:
        content = self.storage.read_version_xml(title_number, version_date)
        parsed = self.parser.parse(content, document_id=f"title-{title_number}@{version_date.isoformat()}")
        return VersionMetrics(total_words=parsed.total_words, total_sections=parsed.section_count)

    def get_change_summary(self, start_date: date, end_date: date) -> List[TitleChange]:
        record = self.repo.get_computed_value(title_changes_key(start_date, end_date))
        if record is None:
            raise LookupError(
                f"no changes found for {start_date.isoformat()} to {end_date.isoformat()}"
            )
        return [TitleChange.from_dict(item) for item in record.data or []]

    def top_changing_titles(self, start_date: date, end_date: date, limit: int = 10) -> List[TitleChange]:
        changes = self.get_change_summary(start_date, end_date)
        ranked = sorted(changes, key=lambda c: abs(c.word_count_change), reverse=True)
        return ranked[: max(limit, 0)]

    def change_report(self, start_date: date, end_date: date) -> str:
        changes = self.get_change_summary(start_date, end_date)
        lines = [f"CFR Change Report: {start_date.isoformat()} to {end_date.isoformat()}", ""]
        total_words = 0
        total_sections = 0
        for change in changes:
            total_words += change.word_count_change
            total_sections += change.section_count_change
            lines.append(f"Title {change.title_number}:")
            lines.append(
                f"  Words: {change.total_words_start} -> {change.total_words_end} "
                f"(change: {change.word_count_change:+d}, {change.percent_word_change:.2f}%)"
            )
            lines.append(
                f"  Sections: {change.total_sections_start} -> {change.total_sections_end} "
                f"(change: {change.section_count_change:+d}, {change.percent_section_change:.2f}%)"
            )
            lines.append("")
        lines.append("Total across all titles:")
        lines.append(f"  Word change: {total_words:+d}")
        lines.append(f"  Section change: {total_sections:+d}")
        return "\n".join(lines) + "\n"
