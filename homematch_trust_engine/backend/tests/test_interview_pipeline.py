# backend/tests/test_interview_pipeline.py
from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta

import pytest

from app.config import settings
from app.db import SessionLocal
from app.domain.errors import AnalysisError, ValidationError
from app.models import Interview, TenantProfile
from app.services.evidence_store import EvidenceStore
from app.services.interview_pipeline import (
    AnswerMedia,
    get_interview_status,
    process_interview,
    reprocess_interview,
    start_interview,
    submit_answer,
)
from fakes import FakeAnalyzer, FakeStorage, FakeTranscriber, make_tenant

T0 = datetime(2026, 4, 1, 8, 0, 0)


def _interview_with_audio(db, storage: FakeStorage, *, tenant_id=None) -> tuple[str, str]:
    tid = make_tenant(db, tenant_id, created_at=T0, name="Mara", age=31, profession="nurse")
    iv = start_interview(db, tenant_id=tid, now=T0)
    for qid in range(1, 6):
        submit_answer(
            db,
            interview_id=iv.id,
            question_id=qid,
            media=AnswerMedia(kind="audio", data=f"pcm-{qid}".encode(), content_type="audio/webm"),
            storage=storage,
        )
    return tid, iv.id


def test_partial_transcription_failure_still_completes():
    db = SessionLocal()
    try:
        storage = FakeStorage()
        tid, iid = _interview_with_audio(db, storage)
        transcriber = FakeTranscriber(fail=(2, 4))
        analyzer = FakeAnalyzer()

        out = process_interview(
            db, interview_id=iid, transcriber=transcriber, analyzer=analyzer, now=T0 + timedelta(hours=1)
        )

        assert out.status == "done"
        assert not out.discarded
        assert [t.question_id for t in out.transcripts if not t.ok] == [2, 4]

        # aggregate keeps one slot per question, placeholders included
        parts = analyzer.transcripts[0].split("\n\n")
        assert len(parts) == 5
        assert parts[0] == "spoken answer 1"
        assert parts[1] == "[Transcription failed]"
        assert parts[3] == "[Transcription failed]"

        # permanent failures were retried up to the configured attempt count
        assert transcriber.calls[2] == 3
        assert transcriber.calls[1] == 1

        iv = db.get(Interview, iid)
        assert iv.status == "done"
        assert iv.full_transcript == analyzer.transcripts[0]
        answers = EvidenceStore(db).list_answers(iid)
        assert [a.transcription_failed for a in answers] == [False, True, False, True, False]

        profile = db.get(TenantProfile, tid)
        assert profile.interview_id == iid
        # clarity 16 + consistency 9 + responsiveness 15
        assert out.score is not None and out.score.score == 40
    finally:
        db.close()


def test_transient_transcription_errors_are_retried():
    db = SessionLocal()
    try:
        storage = FakeStorage()
        _, iid = _interview_with_audio(db, storage)
        transcriber = FakeTranscriber(flaky={3: 2})

        out = process_interview(db, interview_id=iid, transcriber=transcriber, analyzer=FakeAnalyzer(), now=T0)

        assert out.status == "done"
        assert all(t.ok for t in out.transcripts)
        assert transcriber.calls[3] == 3
    finally:
        db.close()


def test_analysis_failure_marks_interview_failed_and_keeps_transcripts():
    db = SessionLocal()
    try:
        storage = FakeStorage()
        tid, iid = _interview_with_audio(db, storage)
        analyzer = FakeAnalyzer(error=AnalysisError("model overloaded"))

        out = process_interview(db, interview_id=iid, transcriber=FakeTranscriber(), analyzer=analyzer, now=T0)

        assert out.status == "failed"
        assert "analysis failed" in (out.error_message or "")
        assert len(analyzer.transcripts) == 3

        iv = db.get(Interview, iid)
        assert iv.status == "failed"
        assert iv.clarity_score is None
        assert [a.transcript for a in EvidenceStore(db).list_answers(iid)][0] == "spoken answer 1"

        b = out.score.breakdown
        assert b.interview_clarity == 0
        assert b.response_consistency == 0
        assert db.get(TenantProfile, tid).interview_id is None

        status = get_interview_status(db, interview_id=iid)
        assert status["status"] == "failed"
        assert "analysis failed" in status["error_message"]
    finally:
        db.close()


def test_non_retryable_analysis_error_is_not_retried():
    db = SessionLocal()
    try:
        _, iid = _interview_with_audio(db, FakeStorage())
        analyzer = FakeAnalyzer(error=AnalysisError("bad json", retryable=False))

        out = process_interview(db, interview_id=iid, transcriber=FakeTranscriber(), analyzer=analyzer, now=T0)

        assert out.status == "failed"
        assert len(analyzer.transcripts) == 1
    finally:
        db.close()


def test_zero_transcribable_questions_fails_without_analysis():
    db = SessionLocal()
    try:
        _, iid = _interview_with_audio(db, FakeStorage())
        analyzer = FakeAnalyzer()

        out = process_interview(
            db, interview_id=iid, transcriber=FakeTranscriber(fail=(1, 2, 3, 4, 5)), analyzer=analyzer, now=T0
        )

        assert out.status == "failed"
        assert out.error_message == "no transcribable questions"
        assert analyzer.transcripts == []
    finally:
        db.close()


def test_jobs_queued_behind_busy_workers_keep_their_own_budget(monkeypatch):
    monkeypatch.setattr(settings, "transcription_workers", 1)
    monkeypatch.setattr(settings, "transcription_timeout_seconds", 0.5)
    monkeypatch.setattr(settings, "transcription_max_attempts", 1)

    db = SessionLocal()
    try:
        _, iid = _interview_with_audio(db, FakeStorage())
        # each call fits its 0.5s budget; the five together take ~1.5s
        transcriber = FakeTranscriber(delay=0.3)

        out = process_interview(db, interview_id=iid, transcriber=transcriber, analyzer=FakeAnalyzer(), now=T0)

        assert out.status == "done"
        assert [(t.question_id, t.ok, t.error) for t in out.transcripts] == [(q, True, None) for q in range(1, 6)]
        assert transcriber.calls == {q: 1 for q in range(1, 6)}
    finally:
        db.close()


def test_stuck_worker_cancels_jobs_that_never_started(monkeypatch):
    monkeypatch.setattr(settings, "transcription_workers", 1)
    monkeypatch.setattr(settings, "transcription_timeout_seconds", 0.2)
    monkeypatch.setattr(settings, "transcription_max_attempts", 1)

    hold = threading.Event()
    db = SessionLocal()
    try:
        _, iid = _interview_with_audio(db, FakeStorage())
        transcriber = FakeTranscriber(hold=hold)

        out = process_interview(db, interview_id=iid, transcriber=transcriber, analyzer=FakeAnalyzer(), now=T0)

        assert out.status == "failed"
        assert out.error_message == "no transcribable questions"
        assert [t.error for t in out.transcripts] == ["stage timeout"] + ["not started"] * 4

        hold.set()
        time.sleep(0.2)
        assert transcriber.calls == {1: 1}
    finally:
        hold.set()
        db.close()


def test_typed_text_replaces_failed_media_transcript():
    db = SessionLocal()
    try:
        storage = FakeStorage()
        tid = make_tenant(db, created_at=T0)
        iv = start_interview(db, tenant_id=tid, now=T0)
        for qid in range(1, 6):
            submit_answer(
                db,
                interview_id=iv.id,
                question_id=qid,
                media=AnswerMedia(kind="video", data=b"vid", text=f"typed {qid}"),
                storage=storage,
            )
        analyzer = FakeAnalyzer()

        out = process_interview(
            db, interview_id=iv.id, transcriber=FakeTranscriber(fail=(1, 2, 3, 4, 5)), analyzer=analyzer, now=T0
        )

        # every media call failed, but the typed answers are still something to analyze
        assert out.status == "done"
        assert not any(t.ok for t in out.transcripts)
        assert not any(t.placeholder for t in out.transcripts)
        assert analyzer.transcripts[0].split("\n\n") == [f"typed {q}" for q in range(1, 6)]
        assert all(a.transcription_failed for a in EvidenceStore(db).list_answers(iv.id))
    finally:
        db.close()


def test_text_answers_do_not_hit_the_transcriber():
    db = SessionLocal()
    try:
        tid = make_tenant(db, created_at=T0)
        iv = start_interview(db, tenant_id=tid, now=T0)
        for qid in range(1, 6):
            submit_answer(db, interview_id=iv.id, question_id=qid, media=AnswerMedia(kind="text", text=f"  typed {qid} "))
        transcriber = FakeTranscriber()
        analyzer = FakeAnalyzer()

        out = process_interview(db, interview_id=iv.id, transcriber=transcriber, analyzer=analyzer, now=T0)

        assert out.status == "done"
        assert sum(transcriber.calls.values()) == 0
        assert analyzer.transcripts[0].split("\n\n") == [f"typed {q}" for q in range(1, 6)]
    finally:
        db.close()


def test_restarted_interview_discards_stale_run():
    db = SessionLocal()
    try:
        tid, iid = _interview_with_audio(db, FakeStorage())
        newer: dict[str, str] = {}

        def tenant_restarts():
            other = SessionLocal()
            try:
                newer["id"] = start_interview(other, tenant_id=tid, now=T0 + timedelta(minutes=5)).id
            finally:
                other.close()

        out = process_interview(
            db,
            interview_id=iid,
            transcriber=FakeTranscriber(),
            analyzer=FakeAnalyzer(on_call=tenant_restarts),
            now=T0 + timedelta(minutes=10),
        )

        assert out.discarded
        assert out.status == "failed"
        assert out.score is None

        db.expire_all()
        iv = db.get(Interview, iid)
        assert iv.status == "failed"
        assert iv.error_message.startswith("abandoned")
        assert iv.clarity_score is None
        assert all(a.transcript is None for a in EvidenceStore(db).list_answers(iid))

        assert db.get(Interview, newer["id"]).status == "in_progress"
        assert db.get(TenantProfile, tid).interview_id is None
    finally:
        db.close()


def test_reprocess_failed_interview():
    db = SessionLocal()
    try:
        tid, iid = _interview_with_audio(db, FakeStorage())
        first = process_interview(
            db, interview_id=iid, transcriber=FakeTranscriber(), analyzer=FakeAnalyzer(error=AnalysisError("down")), now=T0
        )
        assert first.status == "failed"

        second = reprocess_interview(
            db, interview_id=iid, transcriber=FakeTranscriber(), analyzer=FakeAnalyzer(clarity=1.0, consistency=1.0), now=T0
        )
        assert second.status == "done"
        assert second.score.breakdown.interview_clarity == 20
        assert second.score.breakdown.response_consistency == 15
        assert db.get(TenantProfile, tid).interview_id == iid

        status = get_interview_status(db, interview_id=iid)
        assert status["status"] == "done"
        assert status["score"] == second.score.score
        assert status["extracted_facts"]["budget"] == 1200
    finally:
        db.close()


def test_process_refuses_finished_interview():
    db = SessionLocal()
    try:
        _, iid = _interview_with_audio(db, FakeStorage())
        process_interview(db, interview_id=iid, transcriber=FakeTranscriber(), analyzer=FakeAnalyzer(), now=T0)

        with pytest.raises(ValidationError):
            process_interview(db, interview_id=iid, transcriber=FakeTranscriber(), analyzer=FakeAnalyzer(), now=T0)
        fresh = start_interview(db, tenant_id=db.get(Interview, iid).tenant_id, now=T0)
        with pytest.raises(ValidationError):
            reprocess_interview(db, interview_id=fresh.id, transcriber=FakeTranscriber(), analyzer=FakeAnalyzer())
    finally:
        db.close()


def test_no_answers_fails():
    db = SessionLocal()
    try:
        tid = make_tenant(db, created_at=T0)
        iv = start_interview(db, tenant_id=tid, now=T0)
        out = process_interview(db, interview_id=iv.id, transcriber=FakeTranscriber(), analyzer=FakeAnalyzer(), now=T0)
        assert out.status == "failed"
        assert out.error_message == "no answers submitted"
    finally:
        db.close()


def test_submit_answer_validation():
    db = SessionLocal()
    try:
        tid = make_tenant(db, created_at=T0)
        iv = start_interview(db, tenant_id=tid, now=T0)
        with pytest.raises(ValidationError):
            submit_answer(db, interview_id=iv.id, question_id=9, media=AnswerMedia(kind="text", text="hi"))
        with pytest.raises(ValidationError):
            submit_answer(db, interview_id=iv.id, question_id=1, media=AnswerMedia(kind="text", text="   "))
        with pytest.raises(ValidationError):
            submit_answer(db, interview_id=iv.id, question_id=1, media=AnswerMedia(kind="gif", data=b"x"))
        with pytest.raises(ValidationError):
            submit_answer(db, interview_id=iv.id, question_id=1, media=AnswerMedia(kind="video"), storage=FakeStorage())
    finally:
        db.close()


def test_resubmitting_an_answer_replaces_it():
    db = SessionLocal()
    try:
        storage = FakeStorage()
        tid = make_tenant(db, created_at=T0)
        iv = start_interview(db, tenant_id=tid, now=T0)
        submit_answer(db, interview_id=iv.id, question_id=1, media=AnswerMedia(kind="text", text="first"))
        a = submit_answer(
            db, interview_id=iv.id, question_id=1, media=AnswerMedia(kind="video", data=b"vid"), storage=storage
        )

        answers = EvidenceStore(db).list_answers(iv.id)
        assert len(answers) == 1
        assert a.media_kind == "video"
        assert a.text_answer is None
        assert a.media_url == f"mem://interviews/{iv.id}/question_1_video.webm"
        assert storage.blobs[a.media_url] == b"vid"

        status = get_interview_status(db, interview_id=iv.id)
        assert status["answered_questions"] == [1]
        assert status["total_questions"] == 5
    finally:
        db.close()
