# backend/app/workers/interview_tasks.py
from __future__ import annotations

import logging
from datetime import datetime

from ..config import settings
from ..db import SessionLocal
from ..domain.errors import ConcurrencyConflict, NotFoundError, ValidationError
from ..models import Interview
from ..services.interview_pipeline import IN_PROGRESS, process_interview, reprocess_interview
from .backoff import backoff_seconds
from .celery_app import celery_app

log = logging.getLogger(__name__)


def _mark_failed(interview_id: str, reason: str) -> None:
    db = SessionLocal()
    try:
        iv = db.get(Interview, str(interview_id))
        if iv is None or iv.status != IN_PROGRESS:
            return
        iv.status = "failed"
        iv.error_message = reason
        iv.run_token = None
        iv.finished_at = datetime.utcnow()
        db.add(iv)
        db.commit()
    except Exception:
        db.rollback()
        log.exception("could not mark interview failed", extra={"interview_id": interview_id})
    finally:
        db.close()


@celery_app.task(
    bind=True,
    max_retries=int(settings.interview_task_max_retries),
    default_retry_delay=5,
    name="app.workers.interview_tasks.process_interview_task",
)
def process_interview_task(self, interview_id: str, reprocess: bool = False) -> dict:
    """
    Runs the evidence pipeline for one interview.

    Transcription and analysis failures are already absorbed by the pipeline
    (placeholders, failed status). What reaches this task is infrastructure
    trouble (database, a lost CAS race twice over), which is retried with
    backoff; after the last retry the interview is marked failed so the
    tenant is never stuck in in_progress.
    """
    db = SessionLocal()
    try:
        if reprocess:
            outcome = reprocess_interview(db, interview_id=str(interview_id))
        else:
            outcome = process_interview(db, interview_id=str(interview_id))
        return {
            "ok": outcome.status == "done",
            "interview_id": outcome.interview_id,
            "status": outcome.status,
            "discarded": outcome.discarded,
            "score": outcome.score.score if outcome.score is not None else None,
            "error": outcome.error_message,
        }

    except NotFoundError as e:
        return {"ok": False, "reason": "interview_not_found", "error": str(e)}

    except ValidationError as e:
        # already processed or never started; nothing to retry
        return {"ok": False, "reason": "not_processable", "error": str(e)}

    except Exception as e:
        db.rollback()
        retries = int(getattr(self.request, "retries", 0) or 0)
        max_retries = int(getattr(self, "max_retries", 3) or 3)

        if retries >= max_retries - 1:
            log.error("interview processing gave up: %s", e, extra={"interview_id": interview_id})
            _mark_failed(str(interview_id), f"processing error: {type(e).__name__}: {e}")
            return {"ok": False, "reason": "failed_final", "error": str(e), "retries": retries}

        level = logging.INFO if isinstance(e, ConcurrencyConflict) else logging.WARNING
        log.log(level, "interview processing error, retrying: %s", e, extra={"interview_id": interview_id})
        raise self.retry(exc=e, countdown=backoff_seconds(retries))

    finally:
        db.close()


def enqueue_processing(interview_id: str, *, reprocess: bool = False) -> None:
    process_interview_task.delay(str(interview_id), reprocess=bool(reprocess))
