# backend/tests/fakes.py
from __future__ import annotations

import re
import threading
import time
import uuid
from collections import Counter
from datetime import datetime
from typing import Any, Callable, Optional

from app.clients.base import MediaStorage, TranscriptAnalysis, TranscriptAnalyzer, Transcriber
from app.domain.errors import TranscriptionError
from app.models import Property
from app.services.evidence_store import EvidenceStore
from app.services.seriosity_service import recompute_and_persist

_QID = re.compile(r"question_(\d+)_")


def uid(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:10]}"


class FakeStorage(MediaStorage):
    def __init__(self) -> None:
        self.blobs: dict[str, bytes] = {}
        self.deleted: list[str] = []

    def store(self, data: bytes, *, path: str, content_type: str) -> str:
        url = f"mem://{path}"
        self.blobs[url] = data
        return url

    def fetch(self, url: str) -> bytes:
        return self.blobs[url]

    def delete(self, url: str) -> None:
        self.deleted.append(url)
        self.blobs.pop(url, None)


class FakeTranscriber(Transcriber):
    """
    fail: question ids that always fail.
    flaky: question id -> number of leading attempts that fail transiently.
    delay: seconds each call takes.
    hold: calls block until this event is set.
    """

    def __init__(
        self,
        *,
        fail: tuple[int, ...] = (),
        flaky: Optional[dict[int, int]] = None,
        delay: float = 0.0,
        hold: Optional[threading.Event] = None,
    ) -> None:
        self.fail = set(fail)
        self.flaky = dict(flaky or {})
        self.delay = delay
        self.hold = hold
        self.calls: Counter = Counter()
        self._lock = threading.Lock()

    def transcribe(self, *, media_url: str, media_kind: str, timeout: float) -> str:
        m = _QID.search(media_url)
        qid = int(m.group(1)) if m else 0
        with self._lock:
            self.calls[qid] += 1
            n = self.calls[qid]
        if self.hold is not None:
            self.hold.wait()
        if self.delay:
            time.sleep(self.delay)
        if qid in self.fail:
            raise TranscriptionError(f"speech service unavailable for q{qid}")
        if n <= self.flaky.get(qid, 0):
            raise TranscriptionError(f"flaky q{qid} attempt {n}")
        return f"spoken answer {qid}"


class FakeAnalyzer(TranscriptAnalyzer):
    def __init__(
        self,
        *,
        clarity: float = 0.8,
        consistency: float = 0.6,
        evasive: bool = False,
        error: Optional[Exception] = None,
        on_call: Optional[Callable[[], None]] = None,
    ) -> None:
        self.clarity = clarity
        self.consistency = consistency
        self.evasive = evasive
        self.error = error
        self.on_call = on_call
        self.transcripts: list[str] = []

    def analyze(self, *, transcript: str, profile_context: dict[str, Any], timeout: float) -> TranscriptAnalysis:
        self.transcripts.append(transcript)
        if self.on_call is not None:
            self.on_call()
        if self.error is not None:
            raise self.error
        return TranscriptAnalysis(
            clarity_score=self.clarity,
            consistency_score=self.consistency,
            evasiveness_detected=self.evasive,
            extracted_facts={"budget": 1200, "pets": ["cat"]},
            summary="clear and consistent",
        )


def make_tenant(db, tenant_id: Optional[str] = None, *, created_at: Optional[datetime] = None, **kw) -> str:
    tid = tenant_id or uid("tenant")
    store = EvidenceStore(db)
    row = store.create_profile(tid, created_at=created_at, **kw)
    recompute_and_persist(db, tenant_id=tid, now=row.created_at)
    store.commit()
    return tid


def make_property(db, *, landlord_id: Optional[str] = None, title: str = "Sunny 2BR") -> tuple[str, str]:
    pid = uid("prop")
    lid = landlord_id or uid("landlord")
    db.add(Property(id=pid, landlord_id=lid, title=title))
    db.commit()
    return pid, lid
