from __future__ import annotations

import json
import threading
from copy import deepcopy
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    select,
)
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .models import (
    ComputedValueRecord,
    StructureRecord,
    TitleRecord,
    TitleVersionRecord,
)

Base = declarative_base()


class TitleModel(Base):
    __tablename__ = "titles"
    number = Column(Integer, primary_key=True)
    name = Column(String)
    created_at = Column(DateTime(timezone=True))


class TitleVersionModel(Base):
    __tablename__ = "title_versions"
    __table_args__ = (UniqueConstraint("title_number", "version_date"),)
    id = Column(String, primary_key=True)
    title_number = Column(Integer, index=True)
    version_date = Column(Date, index=True)
    created_at = Column(DateTime(timezone=True))


class StructureModel(Base):
    __tablename__ = "structures"
    id = Column(String, primary_key=True)
    title_number = Column(Integer, index=True)
    division_type = Column(String, index=True)
    division_level = Column(Integer)
    identifier = Column(String, index=True)
    node_id = Column(String)
    heading = Column(Text)
    text_content = Column(Text)
    word_count = Column(Integer, default=0)
    parent_id = Column(String, index=True)
    path = Column(String, index=True)
    created_at = Column(DateTime(timezone=True))


class ComputedValueModel(Base):
    __tablename__ = "computed_values"
    key = Column(String, primary_key=True)
    data = Column(Text)
    updated_at = Column(DateTime(timezone=True))


class StructureRepository:
    """
    Abstract persistence boundary for titles, their parsed structure and the
    computed values derived from it. All methods are synchronous; callers may
    use one repository from several runner threads at once.
    """

    # Titles
    def save_title(self, title: TitleRecord) -> None:
        raise NotImplementedError

    def get_title(self, number: int) -> Optional[TitleRecord]:
        raise NotImplementedError

    def list_titles(self) -> List[TitleRecord]:
        raise NotImplementedError

    # Title versions
    def save_title_version(self, version: TitleVersionRecord) -> None:
        raise NotImplementedError

    def get_title_version(self, title_number: int, version_date: date) -> Optional[TitleVersionRecord]:
        raise NotImplementedError

    def list_title_versions(self, title_number: int) -> List[TitleVersionRecord]:
        raise NotImplementedError

    # Structures
    def replace_structures(self, title_number: int, structures: Iterable[StructureRecord]) -> None:
        """Delete the title's existing structure and insert the new one in a single transaction."""
        raise NotImplementedError

    def delete_structures_for_title(self, title_number: int) -> None:
        raise NotImplementedError

    def list_structures_for_title(self, title_number: int) -> List[StructureRecord]:
        raise NotImplementedError

    def list_structures_by_type(self, title_number: int, division_type: str) -> List[StructureRecord]:
        raise NotImplementedError

    def find_structure_by_path(self, title_number: int, path: str) -> Optional[StructureRecord]:
        raise NotImplementedError

    # Computed values
    def save_computed_value(self, key: str, data: Any) -> None:
        raise NotImplementedError

    def get_computed_value(self, key: str) -> Optional[ComputedValueRecord]:
        raise NotImplementedError


class InMemoryStructureRepository(StructureRepository):
    """
    Simple in-memory store for local runs and tests. It mirrors the DB shape
    and keeps copies of dataclasses to avoid cross-mutation between calls.
    """

    def __init__(self):
        self.titles: Dict[int, TitleRecord] = {}
        self.versions: Dict[str, TitleVersionRecord] = {}
        self.structures: Dict[str, StructureRecord] = {}
        self.computed_values: Dict[str, ComputedValueRecord] = {}
        self._lock = threading.RLock()

    def _clone(self, obj):
        return deepcopy(obj)

    def save_title(self, title: TitleRecord) -> None:
        with self._lock:
            self.titles[title.number] = self._clone(title)

    def get_title(self, number: int) -> Optional[TitleRecord]:
        with self._lock:
            title = self.titles.get(number)
            return self._clone(title) if title else None

    def list_titles(self) -> List[TitleRecord]:
        with self._lock:
            return [self._clone(t) for t in sorted(self.titles.values(), key=lambda t: t.number)]

    def save_title_version(self, version: TitleVersionRecord) -> None:
        with self._lock:
            existing = self._find_version(version.title_number, version.version_date)
            if existing:
                del self.versions[existing.id]
            self.versions[version.id] = self._clone(version)

    def get_title_version(self, title_number: int, version_date: date) -> Optional[TitleVersionRecord]:
        with self._lock:
            version = self._find_version(title_number, version_date)
            return self._clone(version) if version else None

    def list_title_versions(self, title_number: int) -> List[TitleVersionRecord]:
        with self._lock:
            versions = [v for v in self.versions.values() if v.title_number == title_number]
            return [self._clone(v) for v in sorted(versions, key=lambda v: v.version_date)]

    def _find_version(self, title_number: int, version_date: date) -> Optional[TitleVersionRecord]:
        for version in self.versions.values():
            if version.title_number == title_number and version.version_date == version_date:
                return version
        return None

    def replace_structures(self, title_number: int, structures: Iterable[StructureRecord]) -> None:
        with self._lock:
            self.delete_structures_for_title(title_number)
            for structure in structures:
                self.structures[structure.id] = self._clone(structure)

    def delete_structures_for_title(self, title_number: int) -> None:
        with self._lock:
            stale = [sid for sid, s in self.structures.items() if s.title_number == title_number]
            for sid in stale:
                del self.structures[sid]

    def list_structures_for_title(self, title_number: int) -> List[StructureRecord]:
        with self._lock:
            matches = [s for s in self.structures.values() if s.title_number == title_number]
            return [self._clone(s) for s in sorted(matches, key=lambda s: s.path)]

    def list_structures_by_type(self, title_number: int, division_type: str) -> List[StructureRecord]:
        return [s for s in self.list_structures_for_title(title_number) if s.division_type == division_type]

    def find_structure_by_path(self, title_number: int, path: str) -> Optional[StructureRecord]:
        with self._lock:
            for structure in self.structures.values():
                if structure.title_number == title_number and structure.path == path:
                    return self._clone(structure)
            return None

    def save_computed_value(self, key: str, data: Any) -> None:
        with self._lock:
            self.computed_values[key] = ComputedValueRecord(key=key, data=self._clone(data))

    def get_computed_value(self, key: str) -> Optional[ComputedValueRecord]:
        with self._lock:
            value = self.computed_values.get(key)
            return self._clone(value) if value else None


class SqlAlchemyStructureRepository(StructureRepository):
    """
    SQL-backed repository using SQLAlchemy. Works with SQLite/Postgres URLs.
    """

    def __init__(self, database_url: str):
        self.engine = create_engine(database_url, future=True)
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False, future=True)

    def _session(self) -> Session:
        return self.SessionLocal()

    # region Title operations
    def save_title(self, title: TitleRecord) -> None:
        with self._session() as session:
            session.merge(TitleModel(number=title.number, name=title.name, created_at=title.created_at))
            session.commit()

    def get_title(self, number: int) -> Optional[TitleRecord]:
        with self._session() as session:
            model = session.get(TitleModel, number)
            if not model:
                return None
            return TitleRecord(number=model.number, name=model.name, created_at=model.created_at)

    def list_titles(self) -> List[TitleRecord]:
        with self._session() as session:
            models = session.execute(select(TitleModel).order_by(TitleModel.number)).scalars().all()
            return [TitleRecord(number=m.number, name=m.name, created_at=m.created_at) for m in models]

    # endregion

    # region Version operations
    def save_title_version(self, version: TitleVersionRecord) -> None:
        with self._session() as session:
            session.execute(
                delete(TitleVersionModel).where(
                    TitleVersionModel.title_number == version.title_number,
                    TitleVersionModel.version_date == version.version_date,
                )
            )
            session.add(
                TitleVersionModel(
                    id=version.id,
                    title_number=version.title_number,
                    version_date=version.version_date,
                    created_at=version.created_at,
                )
            )
            session.commit()

    def get_title_version(self, title_number: int, version_date: date) -> Optional[TitleVersionRecord]:
        with self._session() as session:
            stmt = select(TitleVersionModel).where(
                TitleVersionModel.title_number == title_number,
                TitleVersionModel.version_date == version_date,
            )
            model = session.execute(stmt).scalars().first()
            return self._to_version(model) if model else None

    def list_title_versions(self, title_number: int) -> List[TitleVersionRecord]:
        with self._session() as session:
            stmt = (
                select(TitleVersionModel)
                .where(TitleVersionModel.title_number == title_number)
                .order_by(TitleVersionModel.version_date)
            )
            return [self._to_version(m) for m in session.execute(stmt).scalars().all()]

    def _to_version(self, model: TitleVersionModel) -> TitleVersionRecord:
        return TitleVersionRecord(
            id=model.id,
            title_number=model.title_number,
            version_date=model.version_date,
            created_at=model.created_at,
        )

    # endregion

    # region Structure operations
    def replace_structures(self, title_number: int, structures: Iterable[StructureRecord]) -> None:
        with self._session() as session:
            session.execute(delete(StructureModel).where(StructureModel.title_number == title_number))
            session.add_all(
                StructureModel(
                    id=s.id,
                    title_number=s.title_number,
                    division_type=s.division_type,
                    division_level=s.division_level,
                    identifier=s.identifier,
                    node_id=s.node_id,
                    heading=s.heading,
                    text_content=s.text_content,
                    word_count=s.word_count,
                    parent_id=s.parent_id,
                    path=s.path,
                    created_at=s.created_at,
                )
                for s in structures
            )
            session.commit()

    def delete_structures_for_title(self, title_number: int) -> None:
        with self._session() as session:
            session.execute(delete(StructureModel).where(StructureModel.title_number == title_number))
            session.commit()

    def list_structures_for_title(self, title_number: int) -> List[StructureRecord]:
        stmt = select(StructureModel).where(StructureModel.title_number == title_number).order_by(StructureModel.path)
        return self._query_structures(stmt)

    def list_structures_by_type(self, title_number: int, division_type: str) -> List[StructureRecord]:
        stmt = (
            select(StructureModel)
            .where(StructureModel.title_number == title_number, StructureModel.division_type == division_type)
            .order_by(StructureModel.path)
        )
        return self._query_structures(stmt)

    def find_structure_by_path(self, title_number: int, path: str) -> Optional[StructureRecord]:
        stmt = select(StructureModel).where(StructureModel.title_number == title_number, StructureModel.path == path)
        matches = self._query_structures(stmt)
        return matches[0] if matches else None

    def _query_structures(self, stmt) -> List[StructureRecord]:
        with self._session() as session:
            models = session.execute(stmt).scalars().all()
            return [
                StructureRecord(
                    id=m.id,
                    title_number=m.title_number,
                    division_type=m.division_type,
                    division_level=m.division_level,
                    identifier=m.identifier,
                    node_id=m.node_id,
                    heading=m.heading,
                    text_content=m.text_content,
                    word_count=int(m.word_count or 0),
                    parent_id=m.parent_id,
                    path=m.path,
                    created_at=m.created_at,
                )
                for m in models
            ]

    # endregion

    # region Computed values
    def save_computed_value(self, key: str, data: Any) -> None:
        record = ComputedValueRecord(key=key, data=data)
        with self._session() as session:
            session.merge(ComputedValueModel(key=record.key, data=json.dumps(record.data), updated_at=record.updated_at))
            session.commit()

    def get_computed_value(self, key: str) -> Optional[ComputedValueRecord]:
        with self._session() as session:
            model = session.get(ComputedValueModel, key)
            if not model:
                return None
            return ComputedValueRecord(key=model.key, data=json.loads(model.data or "null"), updated_at=model.updated_at)

    # endregion
