# backend/app/deps.py
from __future__ import annotations

from .clients.base import MediaStorage, TranscriptAnalyzer, Transcriber
from .services.interview_pipeline import default_analyzer, default_storage, default_transcriber

# FastAPI dependencies for external collaborators. Tests swap these through
# app.dependency_overrides.


def get_storage() -> MediaStorage:
    return default_storage()


def get_transcriber() -> Transcriber:
    return default_transcriber()


def get_analyzer() -> TranscriptAnalyzer:
    return default_analyzer()
