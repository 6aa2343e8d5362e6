"""
Structure subsystem exports.
"""

from .changes import ChangeTracker, TitleChange, VersionMetrics
from .indexing import Indexer, NoopIndexer, WhooshIndexer
from .job_queue import RQJobQueue, WorkerConfig, run_change_computation, run_structure_batch
from .linkage import ParentLinkageResolver, parent_path
from .models import (
    ComputedValueRecord,
    DivisionType,
    ParseResult,
    StructuralNode,
    StructureRecord,
    TitleRecord,
    TitleVersionRecord,
    division_type_for_level,
    title_changes_key,
    title_metrics_key,
)
from .parser import DuplicatePathError, StructureParseError, StructureParser
from .repository import InMemoryStructureRepository, SqlAlchemyStructureRepository, StructureRepository
from .storage import LocalTitleStorage, StoragePaths
from .versions import TitleSource, VersionImporter
from .worker import StructureWorker, TitleProcessingError

__all__ = [
    "ChangeTracker",
    "ComputedValueRecord",
    "DivisionType",
    "DuplicatePathError",
    "Indexer",
    "InMemoryStructureRepository",
    "LocalTitleStorage",
    "NoopIndexer",
    "ParentLinkageResolver",
    "ParseResult",
    "RQJobQueue",
    "SqlAlchemyStructureRepository",
    "StoragePaths",
    "StructuralNode",
    "StructureParseError",
    "StructureParser",
    "StructureRecord",
    "StructureRepository",
    "StructureWorker",
    "TitleChange",
    "TitleProcessingError",
    "TitleRecord",
    "TitleSource",
    "TitleVersionRecord",
    "VersionImporter",
    "VersionMetrics",
    "WhooshIndexer",
    "WorkerConfig",
    "division_type_for_level",
    "parent_path",
    "run_change_computation",
    "run_structure_batch",
    "title_changes_key",
    "title_metrics_key",
]
