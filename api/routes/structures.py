from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, BackgroundTasks

from regulation_analyzer.structure import title_metrics_key

from api.dependencies import build_worker, get_indexer, get_repo, parse_titles_filter

router = APIRouter(prefix="/structures", tags=["structures"])


def _structure_payload(structure) -> dict:
    return {
        "id": structure.id,
        "title_number": structure.title_number,
        "division_type": structure.division_type,
        "division_level": structure.division_level,
        "identifier": structure.identifier,
        "node_id": structure.node_id,
        "heading": structure.heading,
        "text_content": structure.text_content,
        "word_count": structure.word_count,
        "parent_id": structure.parent_id,
        "path": structure.path,
    }


def _run_structure_batch(titles_filter) -> None:
    build_worker().process_all_titles(titles_filter)


@router.post("/parse")
def parse_structures(background_tasks: BackgroundTasks, titles: Optional[str] = None):
    titles_filter = parse_titles_filter(titles)
    background_tasks.add_task(_run_structure_batch, titles_filter)
    return {"status": "accepted", "titles": titles_filter}


@router.get("/titles/{title_number}")
def list_structures(title_number: int, division_type: Optional[str] = None):
    repo = get_repo()
    if not repo.get_title(title_number):
        raise LookupError(f"Title not found: {title_number}")
    if division_type:
        structures = repo.list_structures_by_type(title_number, division_type.upper())
    else:
        structures = repo.list_structures_for_title(title_number)
    return [_structure_payload(s) for s in structures]


@router.get("/titles/{title_number}/path")
def get_structure_by_path(title_number: int, path: str):
    structure = get_repo().find_structure_by_path(title_number, path)
    if not structure:
        raise LookupError(f"Structure not found: title {title_number} path {path}")
    return _structure_payload(structure)


@router.get("/titles/{title_number}/metrics")
def get_title_metrics(title_number: int):
    record = get_repo().get_computed_value(title_metrics_key(title_number))
    if not record:
        raise LookupError(f"No metrics computed for title {title_number}")
    return {"title_number": title_number, **record.data}


@router.get("/search")
def search_structures(query: str, title_number: Optional[int] = None, limit: int = 20):
    if not query or not query.strip():
        raise ValueError("Query must not be empty")
    return {"hits": get_indexer().search(query, limit=limit, title_number=title_number)}
