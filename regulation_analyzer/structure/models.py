from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DivisionType(str, Enum):
    TITLE = "TITLE"
    SUBTITLE = "SUBTITLE"
    CHAPTER = "CHAPTER"
    SUBCHAP = "SUBCHAP"
    PART = "PART"
    SUBPART = "SUBPART"
    SUBJGRP = "SUBJGRP"
    SECTION = "SECTION"
    APPENDIX = "APPENDIX"


_TYPE_BY_LEVEL = {
    1: DivisionType.TITLE,
    2: DivisionType.SUBTITLE,
    3: DivisionType.CHAPTER,
    4: DivisionType.SUBCHAP,
    5: DivisionType.PART,
    6: DivisionType.SUBPART,
    7: DivisionType.SUBJGRP,
    8: DivisionType.SECTION,
    9: DivisionType.APPENDIX,
}


def division_type_for_level(level: int) -> Optional[DivisionType]:
    """
    Conventional division type for a DIV level. Documents carry their own
    TYPE attribute, which always wins over this table.
    """
    return _TYPE_BY_LEVEL.get(level)


@dataclass(frozen=True)
class StructuralNode:
    division_type: str
    level: int
    identifier: str
    path: str
    node_id: Optional[str] = None
    heading: Optional[str] = None
    text: Optional[str] = None
    word_count: int = 0
    # Index of the parent inside the same document's node list.
    parent: Optional[int] = None


@dataclass(frozen=True)
class ParseResult:
    nodes: Tuple[StructuralNode, ...]
    total_words: int

    @property
    def section_count(self) -> int:
        return sum(1 for node in self.nodes if node.division_type == DivisionType.SECTION.value)


@dataclass
class TitleRecord:
    number: int
    name: str
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class TitleVersionRecord:
    id: str
    title_number: int
    version_date: date
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class StructureRecord:
    id: str
    title_number: int
    division_type: str
    division_level: int
    identifier: str
    node_id: Optional[str]
    heading: Optional[str]
    text_content: Optional[str]
    word_count: int
    parent_id: Optional[str]
    path: str
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class ComputedValueRecord:
    key: str
    data: Any
    updated_at: datetime = field(default_factory=_utcnow)


def title_metrics_key(title_number: int) -> str:
    return f"title-metrics__{title_number}"


def title_changes_key(start: date, end: date) -> str:
    return f"title-changes__{start.isoformat()}__{end.isoformat()}"


def metrics_payload(result: ParseResult) -> Dict[str, int]:
    return {"words": result.total_words, "sections": result.section_count}
