from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, BackgroundTasks
from fastapi.responses import PlainTextResponse

from api.dependencies import build_change_tracker, get_config, get_job_queue, parse_date, parse_titles_filter

router = APIRouter(prefix="/changes", tags=["changes"])


def _run_change_computation(start, end, titles_filter) -> None:
    build_change_tracker().compute_changes(start, end, titles_filter)


@router.post("/compute")
def compute_changes(
    background_tasks: BackgroundTasks,
    start_date: str,
    end_date: str,
    titles: Optional[str] = None,
    queue: bool = False,
):
    start = parse_date(start_date, "start_date")
    end = parse_date(end_date, "end_date")
    titles_filter = parse_titles_filter(titles)
    payload = {"start_date": start.isoformat(), "end_date": end.isoformat()}
    if queue:
        job = get_job_queue().enqueue_change_computation(start, end, titles_filter, get_config())
        return {"status": "queued", "job_id": job.id, **payload}
    background_tasks.add_task(_run_change_computation, start, end, titles_filter)
    return {"status": "accepted", **payload}


@router.get("/summary")
def get_change_summary(start_date: str, end_date: str):
    changes = build_change_tracker().get_change_summary(
        parse_date(start_date, "start_date"), parse_date(end_date, "end_date")
    )
    return [c.to_dict() for c in changes]


@router.get("/top")
def get_top_changing_titles(start_date: str, end_date: str, limit: int = 10):
    changes = build_change_tracker().top_changing_titles(
        parse_date(start_date, "start_date"), parse_date(end_date, "end_date"), limit=limit
    )
    return [c.to_dict() for c in changes]


@router.get("/report", response_class=PlainTextResponse)
def get_change_report(start_date: str, end_date: str):
    return build_change_tracker().change_report(parse_date(start_date, "start_date"), parse_date(end_date, "end_date"))
