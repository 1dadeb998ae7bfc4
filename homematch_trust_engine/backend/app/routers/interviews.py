# backend/app/routers/interviews.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from sqlalchemy.orm import Session

from ..clients.base import MediaStorage, TranscriptAnalyzer, Transcriber
from ..db import get_db
from ..deps import get_analyzer, get_storage, get_transcriber
from ..domain.interview_questions import INTERVIEW_QUESTIONS
from ..schemas import (
    InterviewAnswerOut,
    InterviewOutcomeOut,
    InterviewQuestionOut,
    InterviewQueuedOut,
    InterviewStartIn,
    InterviewStartOut,
    QuestionTranscriptOut,
)
from ..services.interview_pipeline import (
    AnswerMedia,
    InterviewOutcome,
    get_interview_status,
    process_interview,
    reprocess_interview,
    start_interview,
    submit_answer,
)

log = logging.getLogger(__name__)

router = APIRouter(prefix="/interviews", tags=["interviews"])


def _outcome_out(outcome: InterviewOutcome) -> dict:
    return InterviewOutcomeOut(
        interview_id=outcome.interview_id,
        tenant_id=outcome.tenant_id,
        status=outcome.status,
        error_message=outcome.error_message,
        discarded=outcome.discarded,
        transcripts=[QuestionTranscriptOut.model_validate(t) for t in outcome.transcripts],
        score=outcome.score.score if outcome.score is not None else None,
    ).model_dump()


def _enqueue(interview_id: str, *, reprocess: bool) -> dict:
    from ..workers.interview_tasks import enqueue_processing

    try:
        enqueue_processing(interview_id, reprocess=reprocess)
    except Exception as e:
        log.error("could not enqueue interview processing: %s", e, extra={"interview_id": interview_id})
        raise HTTPException(status_code=503, detail="interview processing queue unavailable")
    return InterviewQueuedOut(interview_id=interview_id).model_dump()


@router.get("/questions", response_model=list[InterviewQuestionOut])
def list_questions():
    return [InterviewQuestionOut.model_validate(q) for q in INTERVIEW_QUESTIONS]


@router.post("", response_model=InterviewStartOut)
def start(payload: InterviewStartIn, db: Session = Depends(get_db)):
    iv = start_interview(db, tenant_id=payload.tenant_id.strip())
    return InterviewStartOut(
        interview_id=iv.id,
        tenant_id=iv.tenant_id,
        status=iv.status,
        questions=[InterviewQuestionOut.model_validate(q) for q in INTERVIEW_QUESTIONS],
    )


@router.post("/{interview_id}/answers/{question_id}", response_model=InterviewAnswerOut)
def answer(
    interview_id: str,
    question_id: int,
    kind: str = Form(...),
    text: Optional[str] = Form(default=None),
    file: Optional[UploadFile] = File(default=None),
    db: Session = Depends(get_db),
    storage: MediaStorage = Depends(get_storage),
):
    media = AnswerMedia(
        kind=kind.strip().lower(),
        data=file.file.read() if file is not None else None,
        text=text,
        content_type=file.content_type if file is not None else None,
    )
    return submit_answer(db, interview_id=interview_id, question_id=question_id, media=media, storage=storage)


@router.post("/{interview_id}/process", response_model=dict)
def process(
    interview_id: str,
    wait: bool = Query(default=False),
    db: Session = Depends(get_db),
    transcriber: Transcriber = Depends(get_transcriber),
    analyzer: TranscriptAnalyzer = Depends(get_analyzer),
):
    """
    wait=false (default) queues the run and returns at once; poll
    GET /interviews/{id} for the result. wait=true runs it in the request.
    """
    if not wait:
        # surface NotFound / wrong status now instead of inside the worker
        status = get_interview_status(db, interview_id=interview_id)["status"]
        if status != "in_progress":
            raise HTTPException(status_code=400, detail=f"interview is {status}; use reprocess to run it again")
        return _enqueue(interview_id, reprocess=False)

    outcome = process_interview(db, interview_id=interview_id, transcriber=transcriber, analyzer=analyzer)
    return _outcome_out(outcome)


@router.post("/{interview_id}/reprocess", response_model=dict)
def reprocess(
    interview_id: str,
    wait: bool = Query(default=False),
    db: Session = Depends(get_db),
    transcriber: Transcriber = Depends(get_transcriber),
    analyzer: TranscriptAnalyzer = Depends(get_analyzer),
):
    if not wait:
        status = get_interview_status(db, interview_id=interview_id)["status"]
        if status not in ("done", "failed"):
            raise HTTPException(status_code=400, detail=f"only done or failed interviews can be reprocessed (status={status})")
        return _enqueue(interview_id, reprocess=True)

    outcome = reprocess_interview(db, interview_id=interview_id, transcriber=transcriber, analyzer=analyzer)
    return _outcome_out(outcome)


@router.get("/{interview_id}", response_model=dict)
def status(interview_id: str, db: Session = Depends(get_db)):
    return get_interview_status(db, interview_id=interview_id)
