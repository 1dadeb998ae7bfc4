# backend/tests/test_analysis_parsing.py
from __future__ import annotations

import json

import pytest

from app.clients.openai_compat import OpenAITranscriber, parse_analysis
from app.domain.errors import AnalysisError, TranscriptionError
from fakes import FakeStorage


def _body(content) -> dict:
    return {"choices": [{"message": {"content": content}}]}


def test_parse_clamps_scores_and_drops_null_facts():
    content = json.dumps(
        {
            "extractedEntities": {"income": 3200, "moveInDate": None, "hasPets": False},
            "clarityScore": 1.7,
            "consistencyScore": -0.2,
            "evasivenessDetected": True,
            "analysis": "short answers",
        }
    )
    out = parse_analysis(_body(content))
    assert out.clarity_score == 1.0
    assert out.consistency_score == 0.0
    assert out.evasiveness_detected is True
    assert out.extracted_facts == {"income": 3200, "hasPets": False}
    assert out.summary == "short answers"


def test_parse_defaults_missing_fields():
    out = parse_analysis(_body("{}"))
    assert out.clarity_score == 0.0
    assert out.extracted_facts == {}
    assert out.summary == "Analysis completed"


@pytest.mark.parametrize("body", [{}, _body("not json"), _body("[1, 2]"), {"choices": []}])
def test_parse_rejects_malformed_responses(body):
    with pytest.raises(AnalysisError) as ei:
        parse_analysis(body)
    assert ei.value.retryable is False


def test_transcriber_refuses_text_media():
    t = OpenAITranscriber(FakeStorage(), api_key="k")
    with pytest.raises(TranscriptionError) as ei:
        t.transcribe(media_url="mem://x", media_kind="text", timeout=1.0)
    assert ei.value.retryable is False


def test_transcriber_refuses_empty_media():
    storage = FakeStorage()
    url = storage.store(b"", path="interviews/i/question_1_audio.webm", content_type="audio/webm")
    with pytest.raises(TranscriptionError) as ei:
        OpenAITranscriber(storage, api_key="k").transcribe(media_url=url, media_kind="audio", timeout=1.0)
    assert ei.value.retryable is False
