# backend/app/services/interview_pipeline.py
from __future__ import annotations

import json
import logging
import time
import uuid
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..clients.base import MediaStorage, TranscriptAnalysis, TranscriptAnalyzer, Transcriber
from ..config import settings
from ..domain.errors import AnalysisError, TranscriptionError, ValidationError
from ..domain.interview_questions import INTERVIEW_QUESTIONS, MEDIA_KINDS, get_question
from ..models import Interview, InterviewAnswer
from .evidence_store import EvidenceStore, with_conflict_retry
from .seriosity_service import ScoreSnapshot, recompute_and_persist

log = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Interview Evidence Pipeline
# -----------------------------------------------------------------------------
#   submit_answer      store media, record the answer, return immediately
#   process_interview  transcribe (worker pool) -> join -> aggregate
#                      -> analyze (single call) -> done | failed -> rescore
#
# Status: in_progress -> done | failed. Only reprocess_interview() re-enters
# in_progress.
#
# Each processing run owns a run_token. Results are written only if the
# interview is still in_progress with the same token when the run finishes;
# otherwise (tenant restarted, another run took over) they are dropped.
# Worker threads never touch the session.
# -----------------------------------------------------------------------------

IN_PROGRESS = "in_progress"
DONE = "done"
FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.utcnow()


@dataclass(frozen=True)
class AnswerMedia:
    kind: str  # video|audio|text
    data: Optional[bytes] = None
    text: Optional[str] = None
    content_type: Optional[str] = None

    def validate(self) -> None:
        if self.kind not in MEDIA_KINDS:
            raise ValidationError(f"media kind must be one of {MEDIA_KINDS}, got {self.kind!r}")
        if self.kind == "text":
            if not (self.text or "").strip():
                raise ValidationError("text answer is empty")
        elif not self.data:
            raise ValidationError(f"{self.kind} answer has no data")


@dataclass(frozen=True)
class QuestionTranscript:
    question_id: int
    media_kind: str
    transcript: str
    ok: bool
    error: Optional[str] = None
    attempts: int = 0
    placeholder: bool = False  # nothing usable came back, not even a typed answer


@dataclass(frozen=True)
class InterviewOutcome:
    interview_id: str
    tenant_id: str
    status: str
    error_message: Optional[str] = None
    transcripts: list[QuestionTranscript] = field(default_factory=list)
    score: Optional[ScoreSnapshot] = None
    discarded: bool = False


@dataclass(frozen=True)
class _AnswerJob:
    question_id: int
    media_kind: str
    media_url: Optional[str]
    text_answer: Optional[str]


# -----------------------------------------------------------------------------
# Default collaborators
# -----------------------------------------------------------------------------

def default_storage() -> MediaStorage:
    from ..clients.media_storage import HttpMediaStorage

    return HttpMediaStorage()


def default_transcriber(storage: Optional[MediaStorage] = None) -> Transcriber:
    from ..clients.openai_compat import OpenAITranscriber

    return OpenAITranscriber(storage or default_storage())


def default_analyzer() -> TranscriptAnalyzer:
    from ..clients.openai_compat import OpenAITranscriptAnalyzer

    return OpenAITranscriptAnalyzer()


# -----------------------------------------------------------------------------
# Retry policy
# -----------------------------------------------------------------------------

def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, (TranscriptionError, AnalysisError)):
        return bool(getattr(exc, "retryable", True))
    return False


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    wait_s = retry_state.next_action.sleep if retry_state.next_action else 0
    log.warning(
        "transient %s (attempt %s), retrying in %.1fs: %s",
        type(exc).__name__,
        retry_state.attempt_number,
        wait_s,
        exc,
    )


def _retrying(max_attempts: int) -> Retrying:
    return Retrying(
        stop=stop_after_attempt(max(1, int(max_attempts))),
        wait=wait_exponential(
            multiplier=float(settings.retry_backoff_min_seconds),
            min=float(settings.retry_backoff_min_seconds),
            max=float(settings.retry_backoff_max_seconds),
        ),
        retry=retry_if_exception(_is_retryable),
        before_sleep=_log_retry,
        reraise=True,
    )


# -----------------------------------------------------------------------------
# Stage 1: per-question transcription
# -----------------------------------------------------------------------------

def _fallback(job: _AnswerJob, *, error: str, attempts: int = 0) -> QuestionTranscript:
    """Typed text sent alongside the media wins over the placeholder."""
    typed = (job.text_answer or "").strip()
    if typed:
        return QuestionTranscript(job.question_id, job.media_kind, typed, ok=False, error=error, attempts=attempts)
    return QuestionTranscript(
        job.question_id,
        job.media_kind,
        settings.transcription_placeholder,
        ok=False,
        error=error,
        attempts=attempts,
        placeholder=True,
    )


def _transcribe_one(job: _AnswerJob, transcriber: Transcriber) -> QuestionTranscript:
    if job.media_kind == "text":
        return QuestionTranscript(
            question_id=job.question_id,
            media_kind=job.media_kind,
            transcript=(job.text_answer or "").strip(),
            ok=True,
        )

    timeout = float(settings.transcription_timeout_seconds)
    attempts = 0

    try:
        for attempt in _retrying(settings.transcription_max_attempts):
            with attempt:
                attempts = attempt.retry_state.attempt_number
                text = transcriber.transcribe(media_url=str(job.media_url), media_kind=job.media_kind, timeout=timeout)
    except TranscriptionError as e:
        log.warning("question %s transcription failed after %s attempt(s): %s", job.question_id, attempts, e)
        return _fallback(job, error=str(e), attempts=attempts)
    except Exception as e:
        log.exception("question %s transcription crashed", job.question_id)
        return _fallback(job, error=f"{type(e).__name__}: {e}", attempts=attempts)

    return QuestionTranscript(job.question_id, job.media_kind, text.strip(), ok=True, attempts=attempts)


def _job_budget_seconds() -> float:
    n = max(1, int(settings.transcription_max_attempts))
    return n * float(settings.transcription_timeout_seconds) + n * float(settings.retry_backoff_max_seconds)


def transcribe_all(jobs: list[_AnswerJob], transcriber: Transcriber) -> list[QuestionTranscript]:
    """
    Fan out over a bounded pool, then join.

    Each job is timed from the moment a worker picks it up, so jobs queued
    behind busy workers keep their full budget. A job still running past its
    budget falls back like a failed call; its thread is left to finish on its
    own and the result is ignored. Once every worker is stuck on an overdue
    job, jobs that never started fall back as well and are cancelled.
    """
    if not jobs:
        return []

    workers = min(int(settings.transcription_workers), len(jobs))
    budget = _job_budget_seconds()
    started: dict[int, float] = {}

    def _run(job: _AnswerJob) -> QuestionTranscript:
        started[job.question_id] = time.monotonic()
        return _transcribe_one(job, transcriber)

    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="transcribe")
    try:
        futures: dict[int, Future] = {j.question_id: executor.submit(_run, j) for j in jobs}
        pending = set(futures.values())
        while pending:
            now = time.monotonic()
            running = [qid for qid, f in futures.items() if f in pending and qid in started]
            overdue = [qid for qid in running if now - started[qid] >= budget]
            queued = len(pending) - len(running)
            if overdue and len(overdue) == len(running) and (queued == 0 or len(overdue) >= workers):
                break
            remaining = [started[qid] + budget - now for qid in running if qid not in overdue]
            timeout = max(0.01, min(remaining)) if remaining else 0.05
            _, pending = wait(pending, timeout=timeout, return_when=FIRST_COMPLETED)

        out: list[QuestionTranscript] = []
        for job in sorted(jobs, key=lambda j: j.question_id):
            fut = futures[job.question_id]
            if fut.done() and not fut.cancelled():
                out.append(fut.result())
            elif job.question_id in started:
                log.warning("question %s transcription exceeded its budget", job.question_id)
                out.append(_fallback(job, error="stage timeout"))
            else:
                log.warning("question %s never started; all workers stuck", job.question_id)
                out.append(_fallback(job, error="not started"))
        return out
    finally:
        executor.shutdown(wait=False, cancel_futures=True)


def aggregate_transcript(transcripts: list[QuestionTranscript]) -> str:
    """Question order, placeholders included."""
    ordered = sorted(transcripts, key=lambda t: t.question_id)
    return "\n\n".join(t.transcript for t in ordered)


# -----------------------------------------------------------------------------
# Stage 2: aggregate analysis
# -----------------------------------------------------------------------------

def analyze_with_retry(analyzer: TranscriptAnalyzer, *, transcript: str, profile_context: dict[str, Any]) -> TranscriptAnalysis:
    timeout = float(settings.analysis_timeout_seconds)
    try:
        for attempt in _retrying(settings.analysis_max_attempts):
            with attempt:
                return analyzer.analyze(transcript=transcript, profile_context=profile_context, timeout=timeout)
    except AnalysisError:
        raise
    except Exception as e:
        raise AnalysisError(f"{type(e).__name__}: {e}", retryable=False) from e
    raise AnalysisError("analysis produced no result", retryable=False)  # pragma: no cover


# -----------------------------------------------------------------------------
# Public operations
# -----------------------------------------------------------------------------

def start_interview(db: Session, *, tenant_id: str, now: Optional[datetime] = None) -> Interview:
    """
    Open a new interview attempt. Any other in-progress attempt for the tenant
    is abandoned so a run still processing it drops its results.
    """
    ts = now or _utcnow()
    store = EvidenceStore(db)

    def _do() -> Interview:
        store.get_profile(tenant_id)
        new_id = f"interview_{tenant_id}_{uuid.uuid4().hex[:12]}"

        for old in store.list_open_interviews(tenant_id):
            old.status = FAILED
            old.error_message = f"abandoned: superseded by {new_id}"
            old.run_token = None
            old.finished_at = ts
            store.save_interview(old)
            log.info("interview abandoned", extra={"interview_id": old.id, "tenant_id": tenant_id})

        iv = Interview(id=new_id, tenant_id=str(tenant_id), status=IN_PROGRESS, started_at=ts)
        store.save_interview(iv)
        store.commit()
        return iv

    return with_conflict_retry(db, _do, what=f"interview-start:{tenant_id}")


def submit_answer(
    db: Session,
    *,
    interview_id: str,
    question_id: int,
    media: AnswerMedia,
    storage: Optional[MediaStorage] = None,
    now: Optional[datetime] = None,
) -> InterviewAnswer:
    """Store the answer's media and record it. No transcription happens here."""
    media.validate()
    question = get_question(question_id)
    if question is None:
        raise ValidationError(f"invalid question_id: {question_id}")

    store = EvidenceStore(db)
    iv = store.get_interview(interview_id)
    if iv.status != IN_PROGRESS:
        raise ValidationError(f"interview is not in progress (status={iv.status})")

    media_url: Optional[str] = None
    if media.kind != "text":
        storage = storage or default_storage()
        media_url = storage.store(
            media.data or b"",
            path=f"interviews/{iv.id}/question_{question.id}_{media.kind}.webm",
            content_type=media.content_type or f"{media.kind}/webm",
        )

    ts = now or _utcnow()

    def _do() -> InterviewAnswer:
        answer = next((a for a in store.list_answers(interview_id) if a.question_id == question.id), None)
        if answer is None:
            answer = InterviewAnswer(interview_id=str(interview_id), question_id=question.id, question_text=question.text)
        answer.media_kind = media.kind
        answer.media_url = media_url
        answer.text_answer = (media.text or "").strip() or None
        answer.transcript = None
        answer.transcription_failed = False
        answer.transcription_error = None
        answer.submitted_at = ts
        store.save_interview(store.get_interview(interview_id), [answer])
        store.commit()
        return answer

    return with_conflict_retry(db, _do, what=f"interview-answer:{interview_id}:{question_id}")


def _is_current(iv: Interview, token: str) -> bool:
    return iv.status == IN_PROGRESS and iv.run_token == token


def _finalize(
    db: Session,
    *,
    interview_id: str,
    token: str,
    transcripts: list[QuestionTranscript],
    status: str,
    error_message: Optional[str] = None,
    analysis: Optional[TranscriptAnalysis] = None,
    full_transcript: Optional[str] = None,
    now: datetime,
) -> InterviewOutcome:
    store = EvidenceStore(db)

    def _do() -> InterviewOutcome:
        iv = store.get_interview(interview_id)
        db.refresh(iv)
        if not _is_current(iv, token):
            log.info(
                "dropping results of superseded run (status=%s)",
                iv.status,
                extra={"interview_id": interview_id, "tenant_id": iv.tenant_id},
            )
            return InterviewOutcome(
                interview_id=interview_id,
                tenant_id=iv.tenant_id,
                status=iv.status,
                error_message=iv.error_message,
                transcripts=transcripts,
                discarded=True,
            )

        by_qid = {t.question_id: t for t in transcripts}
        answers = store.list_answers(interview_id)
        for a in answers:
            t = by_qid.get(a.question_id)
            if t is None:
                continue
            a.transcript = t.transcript
            a.transcription_failed = not t.ok
            a.transcription_error = t.error

        iv.status = status
        iv.error_message = error_message
        iv.finished_at = now
        iv.run_token = None
        iv.full_transcript = full_transcript
        if analysis is not None:
            iv.clarity_score = float(analysis.clarity_score)
            iv.consistency_score = float(analysis.consistency_score)
            iv.evasiveness_detected = bool(analysis.evasiveness_detected)
            iv.extracted_facts_json = json.dumps(analysis.extracted_facts, sort_keys=True, default=str)
            iv.analysis_summary = analysis.summary
        store.save_interview(iv, answers)

        profile = store.get_profile(iv.tenant_id)
        if status == DONE:
            profile.interview_id = iv.id
            store.touch_profile(profile, now=now)

        score = recompute_and_persist(db, tenant_id=iv.tenant_id, now=now)
        store.commit()

        return InterviewOutcome(
            interview_id=interview_id,
            tenant_id=iv.tenant_id,
            status=status,
            error_message=error_message,
            transcripts=transcripts,
            score=score,
        )

    return with_conflict_retry(db, _do, what=f"interview-finalize:{interview_id}")


def process_interview(
    db: Session,
    *,
    interview_id: str,
    transcriber: Optional[Transcriber] = None,
    analyzer: Optional[TranscriptAnalyzer] = None,
    now: Optional[datetime] = None,
) -> InterviewOutcome:
    store = EvidenceStore(db)
    iv = store.get_interview(interview_id)
    if iv.status != IN_PROGRESS:
        raise ValidationError(f"interview is {iv.status}; use reprocess to run it again")

    token = uuid.uuid4().hex
    iv.run_token = token
    iv.error_message = None
    store.save_interview(iv)
    store.commit()

    tenant_id = iv.tenant_id
    extra = {"interview_id": interview_id, "tenant_id": tenant_id}
    log.info("interview processing started", extra=extra)

    jobs = [
        _AnswerJob(a.question_id, a.media_kind, a.media_url, a.text_answer)
        for a in store.list_answers(interview_id)
    ]
    context = store.profile_context(tenant_id)

    if not jobs:
        return _finalize(
            db,
            interview_id=interview_id,
            token=token,
            transcripts=[],
            status=FAILED,
            error_message="no answers submitted",
            now=now or _utcnow(),
        )

    transcripts = transcribe_all(jobs, transcriber or default_transcriber())
    failed = [t.question_id for t in transcripts if not t.ok]
    if failed:
        log.warning("questions fell back to typed text or placeholder: %s", failed, extra=extra)

    if all(t.placeholder for t in transcripts):
        return _finalize(
            db,
            interview_id=interview_id,
            token=token,
            transcripts=transcripts,
            status=FAILED,
            error_message="no transcribable questions",
            now=now or _utcnow(),
        )

    full = aggregate_transcript(transcripts)
    try:
        analysis = analyze_with_retry(analyzer or default_analyzer(), transcript=full, profile_context=context)
    except AnalysisError as e:
        log.error("interview analysis failed: %s", e, extra=extra)
        return _finalize(
            db,
            interview_id=interview_id,
            token=token,
            transcripts=transcripts,
            status=FAILED,
            error_message=f"analysis failed: {e}",
            full_transcript=full,
            now=now or _utcnow(),
        )

    outcome = _finalize(
        db,
        interview_id=interview_id,
        token=token,
        transcripts=transcripts,
        status=DONE,
        analysis=analysis,
        full_transcript=full,
        now=now or _utcnow(),
    )
    if not outcome.discarded and outcome.score is not None:
        log.info("interview processing done, seriosity=%s", outcome.score.score, extra=extra)
    return outcome


def reprocess_interview(
    db: Session,
    *,
    interview_id: str,
    transcriber: Optional[Transcriber] = None,
    analyzer: Optional[TranscriptAnalyzer] = None,
    now: Optional[datetime] = None,
) -> InterviewOutcome:
    """done|failed -> in_progress (answers kept, analysis cleared) -> process."""
    store = EvidenceStore(db)

    def _reopen() -> None:
        iv = store.get_interview(interview_id)
        if iv.status not in (DONE, FAILED):
            raise ValidationError(f"only done or failed interviews can be reprocessed (status={iv.status})")
        iv.status = IN_PROGRESS
        iv.error_message = None
        iv.finished_at = None
        iv.run_token = None
        iv.full_transcript = None
        iv.clarity_score = None
        iv.consistency_score = None
        iv.evasiveness_detected = None
        iv.extracted_facts_json = None
        iv.analysis_summary = None
        store.save_interview(iv)

        # the tenant's scored interview is no longer done; the score must drop with it
        profile = store.get_profile(iv.tenant_id)
        if profile.interview_id == iv.id:
            recompute_and_persist(db, tenant_id=iv.tenant_id, now=now)
        store.commit()

    with_conflict_retry(db, _reopen, what=f"interview-reprocess:{interview_id}")
    return process_interview(db, interview_id=interview_id, transcriber=transcriber, analyzer=analyzer, now=now)


def get_interview_status(db: Session, *, interview_id: str) -> dict[str, Any]:
    store = EvidenceStore(db)
    iv = store.get_interview(interview_id)
    answers = store.list_answers(interview_id)

    out: dict[str, Any] = {
        "interview_id": iv.id,
        "tenant_id": iv.tenant_id,
        "status": iv.status,
        "answered_questions": [a.question_id for a in answers],
        "total_questions": len(INTERVIEW_QUESTIONS),
    }
    if iv.status == DONE:
        profile = store.get_profile(iv.tenant_id)
        stored = store.stored_breakdown(iv.tenant_id)
        out["score"] = profile.seriosity_score
        out["breakdown"] = stored.as_dict() if stored is not None else None
        out["extracted_facts"] = json.loads(iv.extracted_facts_json or "{}")
    if iv.status == FAILED:
        out["error_message"] = iv.error_message
    return out
