"""
Collaborator interfaces used by the trust & matching core.

The core only talks to these abstract capabilities; the httpx-backed
implementations live next door and tests plug in fakes.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class TranscriptAnalysis:
    clarity_score: float
    consistency_score: float
    evasiveness_detected: bool
    extracted_facts: dict[str, Any] = field(default_factory=dict)
    summary: str = ""


class Transcriber(ABC):
    @abstractmethod
    def transcribe(self, *, media_url: str, media_kind: str, timeout: float) -> str:
        """
        Return the text spoken in the stored media.

        Raises TranscriptionError; `retryable=False` for input that will never
        transcribe (unsupported format, empty audio).
        """


class TranscriptAnalyzer(ABC):
    @abstractmethod
    def analyze(self, *, transcript: str, profile_context: dict[str, Any], timeout: float) -> TranscriptAnalysis:
        """Score the aggregate transcript. Raises AnalysisError."""


class MediaStorage(ABC):
    @abstractmethod
    def store(self, data: bytes, *, path: str, content_type: str) -> str:
        """Persist a blob and return its reference url."""

    @abstractmethod
    def fetch(self, url: str) -> bytes:
        pass

    @abstractmethod
    def delete(self, url: str) -> None:
        pass
