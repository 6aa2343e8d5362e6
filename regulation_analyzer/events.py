from __future__ import annotations

import logging
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


class RunObserver(Protocol):
    def on_run_started(self, prefix: str, item_count: int) -> None:
        ...

    def on_message(self, prefix: str, message: str) -> None:
        ...

    def on_run_finished(self, prefix: str, result_count: int, error_count: int) -> None:
        ...


class ParseObserver(Protocol):
    def on_document_parsed(self, document_id: Optional[str], node_count: int, total_words: int) -> None:
        ...

    def on_parse_failed(self, document_id: Optional[str], error: BaseException) -> None:
        ...


class NoopObserver:
    """
    Discards every event. Useful in tests and for callers that log on their own.
    """

    def on_run_started(self, prefix: str, item_count: int) -> None:
        return None

    def on_message(self, prefix: str, message: str) -> None:
        return None

    def on_run_finished(self, prefix: str, result_count: int, error_count: int) -> None:
        return None

    def on_document_parsed(self, document_id: Optional[str], node_count: int, total_words: int) -> None:
        return None

    def on_parse_failed(self, document_id: Optional[str], error: BaseException) -> None:
        return None


class LoggingObserver:
    """
    Default observer. Writes runner and parser events to the standard logging
    module so the core itself never formats log lines.
    """

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    def on_run_started(self, prefix: str, item_count: int) -> None:
        self.log.info("%s: Start (%d items)", prefix, item_count)

    def on_message(self, prefix: str, message: str) -> None:
        self.log.info("%s: %s", prefix, message)

    def on_run_finished(self, prefix: str, result_count: int, error_count: int) -> None:
        self.log.info("%s: Complete (%d succeeded, %d failed)", prefix, result_count, error_count)

    def on_document_parsed(self, document_id: Optional[str], node_count: int, total_words: int) -> None:
        self.log.debug("Parsed %s: %d nodes, %d words", document_id or "document", node_count, total_words)

    def on_parse_failed(self, document_id: Optional[str], error: BaseException) -> None:
        self.log.warning("Failed to parse %s: %s", document_id or "document", error)
