# backend/tests/test_interview_tasks.py
from __future__ import annotations

from datetime import datetime

from app.db import SessionLocal
from app.models import Interview
from app.services import interview_pipeline
from app.services.interview_pipeline import AnswerMedia, start_interview, submit_answer
from app.workers.interview_tasks import process_interview_task
from fakes import FakeAnalyzer, FakeTranscriber, make_tenant

T0 = datetime(2026, 9, 1, 9, 0, 0)


def test_task_reports_missing_interview():
    out = process_interview_task.apply(args=["interview_missing"]).get()
    assert out["ok"] is False
    assert out["reason"] == "interview_not_found"


def test_task_runs_pipeline_with_configured_clients(monkeypatch):
    monkeypatch.setattr(interview_pipeline, "default_transcriber", lambda storage=None: FakeTranscriber())
    monkeypatch.setattr(interview_pipeline, "default_analyzer", lambda: FakeAnalyzer(clarity=0.5, consistency=0.5))

    db = SessionLocal()
    try:
        tid = make_tenant(db, created_at=T0)
        iv = start_interview(db, tenant_id=tid, now=T0)
        submit_answer(db, interview_id=iv.id, question_id=1, media=AnswerMedia(kind="text", text="hello"))
        iid = iv.id
    finally:
        db.close()

    out = process_interview_task.apply(args=[iid]).get()
    assert out["ok"] is True
    assert out["status"] == "done"
    assert out["score"] is not None

    # already done: nothing to retry
    again = process_interview_task.apply(args=[iid]).get()
    assert again["reason"] == "not_processable"

    rerun = process_interview_task.apply(args=[iid], kwargs={"reprocess": True}).get()
    assert rerun["status"] == "done"

    db = SessionLocal()
    try:
        assert db.get(Interview, iid).status == "done"
    finally:
        db.close()
