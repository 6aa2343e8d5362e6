from dataclasses import replace
from datetime import date

import pytest

from regulation_analyzer.events import NoopObserver
from regulation_analyzer.concurrent import RunnerConfig
from regulation_analyzer.structure import (
    ChangeTracker,
    InMemoryStructureRepository,
    LocalTitleStorage,
    NoopIndexer,
    RQJobQueue,
    SqlAlchemyStructureRepository,
    StoragePaths,
    StructureRecord,
    StructureWorker,
    TitleProcessingError,
    TitleRecord,
    TitleVersionRecord,
    VersionImporter,
    WhooshIndexer,
    WorkerConfig,
    run_change_computation,
    run_structure_batch,
    title_changes_key,
    title_metrics_key,
)


def title_xml(number, sections):
    body = "".join(
        f'<DIV8 N="§ {number}.{i}" TYPE="SECTION"><HEAD>§ {number}.{i} Heading.</HEAD><P>{text}</P></DIV8>'
        for i, text in enumerate(sections, start=1)
    )
    return (
        f'<ECFR><DIV1 N="{number}" TYPE="TITLE"><HEAD>Title {number}</HEAD>'
        f'<DIV5 N="1" TYPE="PART"><HEAD>PART 1</HEAD>{body}</DIV5></DIV1></ECFR>'
    )


def make_structure(structure_id, path, parent_id=None, text="Hello", division_type="SECTION"):
    return StructureRecord(
        id=structure_id,
        title_number=7,
        division_type=division_type,
        division_level=8,
        identifier=path.rsplit("/", 1)[-1],
        node_id=None,
        heading=f"Heading {path}",
        text_content=text,
        word_count=len(text.split()),
        parent_id=parent_id,
        path=path,
    )


@pytest.fixture
def storage(tmp_path):
    return LocalTitleStorage(StoragePaths(tmp_path / "data"))


def make_worker(repo, storage, indexer=None):
    return StructureWorker(
        repository=repo,
        storage=storage,
        indexer=indexer or NoopIndexer(),
        runner_config=RunnerConfig(max_concurrency=2, log_prefix="test"),
        observer=NoopObserver(),
    )


def test_sqlalchemy_repository_roundtrip(tmp_path):
    repo = SqlAlchemyStructureRepository(f"sqlite+pysqlite:///{tmp_path / 'test.db'}")

    repo.save_title(TitleRecord(number=7, name="Agriculture"))
    assert repo.get_title(7).name == "Agriculture"
    assert [t.number for t in repo.list_titles()] == [7]

    repo.replace_structures(
        7,
        [
            make_structure("a", "7", division_type="TITLE"),
            make_structure("b", "7/1", parent_id="a"),
            make_structure("c", "7/2", parent_id="a", text="one two three"),
        ],
    )
    structures = repo.list_structures_for_title(7)
    assert [s.path for s in structures] == ["7", "7/1", "7/2"]
    assert repo.find_structure_by_path(7, "7/2").word_count == 3
    assert repo.find_structure_by_path(7, "7/2").parent_id == "a"
    assert repo.find_structure_by_path(7, "missing") is None
    assert [s.id for s in repo.list_structures_by_type(7, "SECTION")] == ["b", "c"]

    repo.replace_structures(7, [make_structure("d", "7")])
    assert [s.id for s in repo.list_structures_for_title(7)] == ["d"]
    repo.delete_structures_for_title(7)
    assert repo.list_structures_for_title(7) == []

    repo.save_title_version(TitleVersionRecord(id="v1", title_number=7, version_date=date(2024, 1, 1)))
    repo.save_title_version(TitleVersionRecord(id="v2", title_number=7, version_date=date(2024, 1, 1)))
    assert repo.get_title_version(7, date(2024, 1, 1)).id == "v2"
    assert len(repo.list_title_versions(7)) == 1

    repo.save_computed_value("k", {"words": 10})
    repo.save_computed_value("k", {"words": 12})
    assert repo.get_computed_value("k").data == {"words": 12}
    assert repo.get_computed_value("missing") is None


def test_worker_parses_links_and_persists_title(storage):
    repo = InMemoryStructureRepository()
    repo.save_title(TitleRecord(number=7, name="Agriculture"))
    storage.save_title_xml(7, title_xml(7, ["alpha beta", "gamma delta epsilon"]))

    parsed = make_worker(repo, storage).process_title(7)

    assert parsed.total_words == 5
    structures = {s.path: s for s in repo.list_structures_for_title(7)}
    assert set(structures) == {"7", "7/1", "7/1/§ 7.1", "7/1/§ 7.2"}
    assert structures["7"].parent_id is None
    assert structures["7/1"].parent_id == structures["7"].id
    assert structures["7/1/§ 7.2"].parent_id == structures["7/1"].id
    assert structures["7/1/§ 7.2"].word_count == 3
    assert repo.get_computed_value(title_metrics_key(7)).data == {"words": 5, "sections": 2}


def test_reprocessing_replaces_previous_structure(storage):
    repo = InMemoryStructureRepository()
    repo.save_title(TitleRecord(number=7, name="Agriculture"))
    worker = make_worker(repo, storage)

    storage.save_title_xml(7, title_xml(7, ["a", "b", "c"]))
    worker.process_title(7)
    storage.save_title_xml(7, title_xml(7, ["a"]))
    worker.process_title(7)

    assert len(repo.list_structures_for_title(7)) == 3
    assert repo.get_computed_value(title_metrics_key(7)).data == {"words": 1, "sections": 1}


def test_process_all_titles_collects_failures(storage):
    repo = InMemoryStructureRepository()
    for number in (1, 2, 3):
        repo.save_title(TitleRecord(number=number, name=f"Title {number}"))
    storage.save_title_xml(1, title_xml(1, ["one"]))
    storage.save_title_xml(2, "<ECFR><DIV1 N='2'>broken")
    # Title 3 has no stored XML at all.

    result = make_worker(repo, storage).process_all_titles()

    assert result.results == [1]
    failed = sorted(result.errors, key=lambda e: e.title_number)
    assert [e.title_number for e in failed] == [2, 3]
    assert all(isinstance(e, TitleProcessingError) for e in failed)
    assert isinstance(failed[1].__cause__, FileNotFoundError)
    assert repo.list_structures_for_title(2) == []


def test_process_all_titles_applies_filter(storage):
    repo = InMemoryStructureRepository()
    for number in (1, 2):
        repo.save_title(TitleRecord(number=number, name=f"Title {number}"))
        storage.save_title_xml(number, title_xml(number, ["text"]))

    result = make_worker(repo, storage).process_all_titles(["2"])

    assert result.results == [2]
    assert repo.list_structures_for_title(1) == []


def test_whoosh_indexer(tmp_path):
    indexer = WhooshIndexer(tmp_path / "whoosh")
    indexer.index_title(
        7,
        [
            make_structure("s-1", "7/1", text="The quick brown fox"),
            make_structure("s-2", "7/2", text="jumps over the lazy dog"),
        ],
    )
    indexer.index_title(8, [replace(make_structure("s-3", "8/1", text="quick thinking"), title_number=8)])

    results = indexer.search("quick")
    assert sorted(r["structure_id"] for r in results) == ["s-1", "s-3"]
    results = indexer.search("quick", title_number=7)
    assert [r["path"] for r in results] == ["7/1"]

    indexer.index_title(7, [make_structure("s-4", "7/1", text="replaced")])
    assert indexer.search("fox") == []
    indexer.delete_title(8)
    assert indexer.search("thinking") == []


class FakeSource:
    def __init__(self, documents):
        self.documents = documents

    def list_title_numbers(self, version_date):
        return [0] + sorted(self.documents)

    def fetch_title_xml(self, title_number, version_date):
        content = self.documents[title_number].get(version_date)
        if content is None:
            raise ConnectionError(f"no file for title {title_number}")
        return content.encode("utf-8")


def test_version_import_and_change_tracking(storage):
    start, end = date(2023, 1, 1), date(2024, 1, 1)
    repo = InMemoryStructureRepository()
    for number in (1, 2, 3):
        repo.save_title(TitleRecord(number=number, name=f"Title {number}"))
    source = FakeSource(
        {
            1: {start: title_xml(1, ["a b c d"]), end: title_xml(1, ["a b", "c d e f"])},
            2: {start: title_xml(2, ["a b c d e"]), end: title_xml(2, ["a"])},
            3: {start: title_xml(3, ["x"])},
        }
    )
    importer = VersionImporter(repo, storage, source, max_concurrency=2, observer=NoopObserver())

    first = importer.import_versions(start)
    second = importer.import_versions(end)

    assert sorted(first.results) == [1, 2, 3]
    assert sorted(second.results) == [1, 2]
    assert [e.title_number for e in second.errors] == [3]
    assert storage.list_version_dates(1) == [start, end]
    assert repo.get_title_version(2, end) is not None

    tracker = ChangeTracker(repo, storage, observer=NoopObserver())
    changes = tracker.compute_changes(start, end)

    # Title 3 has no end version and is skipped.
    assert [c.title_number for c in changes] == [1, 2]
    title1, title2 = changes
    assert (title1.word_count_change, title1.section_count_change) == (2, 1)
    assert title1.percent_word_change == pytest.approx(50.0)
    assert title1.percent_section_change == pytest.approx(100.0)
    assert title2.word_count_change == -4
    assert title2.percent_word_change == pytest.approx(-80.0)

    assert repo.get_computed_value(title_changes_key(start, end)) is not None
    assert tracker.get_change_summary(start, end) == changes
    assert [c.title_number for c in tracker.top_changing_titles(start, end, limit=1)] == [2]

    report = tracker.change_report(start, end)
    assert report.startswith("CFR Change Report: 2023-01-01 to 2024-01-01")
    assert "  Words: 4 -> 6 (change: +2, 50.00%)" in report
    assert "  Word change: -2" in report
    assert "  Section change: +1" in report


def test_change_summary_requires_computation(storage):
    tracker = ChangeTracker(InMemoryStructureRepository(), storage, observer=NoopObserver())
    with pytest.raises(LookupError):
        tracker.get_change_summary(date(2023, 1, 1), date(2024, 1, 1))


def test_version_import_rejects_unknown_titles(storage):
    repo = InMemoryStructureRepository()
    source = FakeSource({5: {date(2024, 1, 1): title_xml(5, ["x"])}})

    result = VersionImporter(repo, storage, source, observer=NoopObserver()).import_versions(date(2024, 1, 1))

    assert result.results == []
    assert [e.title_number for e in result.errors] == [5]
    assert not storage.version_exists(5, date(2024, 1, 1))


def test_run_structure_batch_entrypoint(tmp_path):
    config = WorkerConfig(
        database_url=f"sqlite+pysqlite:///{tmp_path / 'batch.db'}",
        title_storage_root=str(tmp_path / "data"),
        whoosh_index_dir=str(tmp_path / "whoosh"),
        max_concurrency=2,
    )
    storage = LocalTitleStorage(StoragePaths(tmp_path / "data"))
    repo = SqlAlchemyStructureRepository(config.database_url)
    for number in (1, 2):
        repo.save_title(TitleRecord(number=number, name=f"Title {number}"))
        storage.save_title_xml(number, title_xml(number, ["searchable words here"]))

    assert run_structure_batch(None, config) == [1, 2]
    assert len(repo.list_structures_for_title(2)) == 3
    assert repo.get_computed_value(title_metrics_key(1)).data == {"words": 3, "sections": 1}
    hits = WhooshIndexer(tmp_path / "whoosh").search("searchable", title_number=2)
    assert [h["path"] for h in hits] == ["2/1/§ 2.1"]


def test_worker_config_from_env(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite+pysqlite:///:memory:")
    monkeypatch.setenv("MAX_CONCURRENCY", "3")
    config = WorkerConfig.from_env()
    assert config.database_url == "sqlite+pysqlite:///:memory:"
    assert config.max_concurrency == 3


class RecordingQueue:
    def __init__(self):
        self.jobs = []

    def enqueue(self, func, *args, **kwargs):
        self.jobs.append((func, args, kwargs))
        return kwargs.get("job_id")


def test_change_computation_job_is_keyed_by_date_range():
    job_queue = RQJobQueue("redis://localhost:6379/0")
    job_queue.queue = RecordingQueue()
    config = WorkerConfig()

    job_id = job_queue.enqueue_change_computation(date(2023, 1, 1), date(2024, 1, 1), ["7"], config)
    again = job_queue.enqueue_change_computation(date(2023, 1, 1), date(2024, 1, 1), None, config)

    assert job_id == again == "changes-2023-01-01-2024-01-01"
    func, args, _ = job_queue.queue.jobs[0]
    assert func is run_change_computation
    assert args == ("2023-01-01", "2024-01-01", ["7"], config)
