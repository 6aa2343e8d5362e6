from __future__ import annotations

import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol

from whoosh import index
from whoosh.fields import ID, NUMERIC, TEXT, Schema
from whoosh.qparser import MultifieldParser
from whoosh.query import Term

from .models import StructureRecord


class Indexer(Protocol):
    def index_title(self, title_number: int, structures: Iterable[StructureRecord]) -> None:
        ...


class NoopIndexer:
    """
    Default indexer. Accepts every title and stores nothing, for runs that
    do not need search.
    """

    def index_title(self, title_number: int, structures: Iterable[StructureRecord]) -> None:
        return None


class WhooshIndexer:
    """
    File-system backed Whoosh indexer over structure headings and text.
    Re-indexing a title first deletes its existing documents. Writes are
    serialized because several runner threads may index at once.
    """

    def __init__(self, index_dir: Path):
        self.index_dir = index_dir
        self.index_dir.mkdir(parents=True, exist_ok=True)
        self.schema = Schema(
            title_number=ID(stored=True),
            structure_id=ID(stored=True, unique=True),
            path=ID(stored=True),
            division_type=ID(stored=True),
            word_count=NUMERIC(stored=True),
            heading=TEXT(stored=True),
            text=TEXT(stored=True),
        )
        if index.exists_in(self.index_dir):
            self.ix = index.open_dir(self.index_dir)
        else:
            self.ix = index.create_in(self.index_dir, self.schema)
        self._write_lock = threading.Lock()

    def index_title(self, title_number: int, structures: Iterable[StructureRecord]) -> None:
        with self._write_lock:
            writer = self.ix.writer()
            writer.delete_by_term("title_number", str(title_number))
            for structure in structures:
                writer.add_document(
                    title_number=str(title_number),
                    structure_id=structure.id,
                    path=structure.path,
                    division_type=structure.division_type,
                    word_count=structure.word_count,
                    heading=structure.heading or "",
                    text=structure.text_content or "",
                )
            writer.commit()

    def delete_title(self, title_number: int) -> None:
        with self._write_lock:
            writer = self.ix.writer()
            writer.delete_by_term("title_number", str(title_number))
            writer.commit()

    def search(self, query_str: str, limit: int = 10, title_number: Optional[int] = None) -> List[Dict]:
        """
        Return a list of plain dicts so callers are safe after the searcher closes.
        """
        qp = MultifieldParser(["heading", "text"], schema=self.schema)
        q = qp.parse(query_str)
        title_filter = Term("title_number", str(title_number)) if title_number is not None else None
        with self.ix.searcher() as searcher:
            results = searcher.search(q, limit=limit, filter=title_filter)
            hits = []
            for hit in results:
                fields = hit.fields()
                hits.append(
                    {
                        "structure_id": fields.get("structure_id"),
                        "title_number": int(fields.get("title_number") or 0),
                        "path": fields.get("path"),
                        "division_type": fields.get("division_type"),
                        "heading": fields.get("heading"),
                        "text": fields.get("text"),
                    }
                )
            return hits
