from __future__ import annotations

import logging
import uuid
from datetime import date
from typing import Iterable, List, Optional, Protocol

from ..concurrent import RunChannels, RunnerConfig, RunResult, TaskRunner
from ..events import LoggingObserver, RunObserver
from .models import TitleVersionRecord
from .repository import StructureRepository
from .storage import LocalTitleStorage
from .worker import TitleProcessingError, log_run_summary

logger = logging.getLogger(__name__)


class TitleSource(Protocol):
    """
    Remote bulk-data source for historical title XML. Concrete HTTP clients
    live outside this package.
    """

    def list_title_numbers(self, version_date: date) -> List[int]:
        ...

    def fetch_title_xml(self, title_number: int, version_date: date) -> bytes:
        ...


class VersionImporter:
    """
    Downloads one historical version of every (or every filtered) title and
    stores it for later change tracking.
    """

    def __init__(
        self,
        repository: StructureRepository,
        storage: LocalTitleStorage,
        source: TitleSource,
        max_concurrency: int = 5,
        observer: Optional[RunObserver] = None,
    ):
        self.repo = repository
        self.storage = storage
        self.source = source
        self.max_concurrency = max_concurrency
        self.observer = observer or LoggingObserver()

    def import_versions(self, version_date: date, titles_filter: Optional[Iterable[str]] = None) -> RunResult[int]:
        wanted = {t.strip() for t in titles_filter or [] if t.strip()}
        numbers = [
            n for n in self.source.list_title_numbers(version_date) if n > 0 and (not wanted or str(n) in wanted)
        ]
        logger.info("Found %d title files for %s", len(numbers), version_date.isoformat())

        config = RunnerConfig(
            max_concurrency=self.max_concurrency,
            log_prefix=f"Historical Import ({version_date.isoformat()})",
        )
        runner: TaskRunner[int, int] = TaskRunner(config, observer=self.observer)
        result = runner.run(numbers, lambda number, channels: self._import_one(number, version_date, channels))
        log_run_summary(config.log_prefix, result)
        return result

    def _import_one(self, title_number: int, version_date: date, channels: RunChannels[int]) -> None:
        channels.message(f"Fetching: Title {title_number}")
        if self.repo.get_title(title_number) is None:
            channels.message(f"failed to find title {title_number}")
            channels.error(TitleProcessingError(title_number, "title not found"))
            return

        try:
            content = self.source.fetch_title_xml(title_number, version_date)
            channels.message(f"Downloading: Title {title_number}")
            self.storage.save_version_xml(title_number, version_date, content)
            self.repo.save_title_version(
                TitleVersionRecord(id=str(uuid.uuid4()), title_number=title_number, version_date=version_date)
            )
        except Exception as exc:  # noqa: BLE001
            channels.message(f"failed to import title {title_number}: {exc}")
            error = TitleProcessingError(title_number, str(exc))
            error.__cause__ = exc
            channels.error(error)
            return

        channels.message(f"Success: Title {title_number}")
        channels.result(title_number)
