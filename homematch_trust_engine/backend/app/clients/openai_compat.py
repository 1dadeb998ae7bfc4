# backend/app/clients/openai_compat.py
from __future__ import annotations

import json
import logging
from typing import Any, Optional

import httpx

from ..config import settings
from ..domain.errors import AnalysisError, TranscriptionError
from .base import MediaStorage, TranscriptAnalysis, TranscriptAnalyzer, Transcriber

log = logging.getLogger(__name__)

ANALYSIS_SYSTEM_PROMPT = (
    "You are an expert at analyzing interview transcripts for tenant verification. "
    "Provide objective, data-driven assessments. Be thorough but fair in your evaluation."
)

ANALYSIS_USER_PROMPT = """You are analyzing a tenant interview transcript to assess credibility and extract key information.

Profile Information:
- Name: {name}
- Age: {age}
- Profession: {profession}

Interview Transcript:
{transcript}

Please analyze this transcript and provide:

1. EXTRACT KEY ENTITIES: income (monthly, number), move-in date (YYYY-MM-DD),
   pets (boolean), pet type, references mentioned (boolean), past deposit disputes (boolean).
2. ASSESS CLARITY (0.0-1.0): how clear, direct and well-structured the answers are.
3. ASSESS CONSISTENCY (0.0-1.0): internal consistency and alignment with the profile.
4. DETECT EVASIVENESS: true if the tenant avoids direct questions or stays vague when specifics are requested.
   Answers marked "[Transcription failed]" are missing audio, not evasiveness.
5. PROVIDE ANALYSIS: a 2-3 sentence summary.

Respond in JSON format:
{{
  "extractedEntities": {{
    "income": number or null,
    "moveInDate": "YYYY-MM-DD" or null,
    "hasPets": boolean or null,
    "petType": string or null,
    "hasReferences": boolean or null,
    "depositDisputes": boolean or null
  }},
  "clarityScore": 0.0-1.0,
  "consistencyScore": 0.0-1.0,
  "evasivenessDetected": boolean,
  "analysis": "brief summary"
}}"""

# extension hint for the audio endpoint; it sniffs content but wants a filename
_MEDIA_FILENAMES = {"video": "answer.webm", "audio": "answer.webm"}


def _clamp01(v: Any) -> float:
    try:
        x = float(v)
    except (TypeError, ValueError):
        return 0.0
    if x != x:  # NaN
        return 0.0
    return max(0.0, min(1.0, x))


def _is_retryable_status(code: int) -> bool:
    return code == 429 or code >= 500


class _OpenAICompatBase:
    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None) -> None:
        self.base = (base_url or settings.openai_base_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.openai_api_key

    def enabled(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            return {}
        return {"Authorization": f"Bearer {self.api_key}"}


class OpenAITranscriber(_OpenAICompatBase, Transcriber):
    """Whisper-style `/audio/transcriptions` endpoint."""

    def __init__(
        self,
        storage: MediaStorage,
        *,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
    ) -> None:
        super().__init__(base_url=base_url, api_key=api_key)
        self.storage = storage
        self.model = model or settings.transcription_model

    def transcribe(self, *, media_url: str, media_kind: str, timeout: float) -> str:
        if media_kind not in _MEDIA_FILENAMES:
            raise TranscriptionError(f"cannot transcribe media_kind={media_kind}", retryable=False)

        try:
            blob = self.storage.fetch(media_url)
        except httpx.HTTPStatusError as e:
            raise TranscriptionError(
                f"media download failed: {e.response.status_code}",
                retryable=_is_retryable_status(e.response.status_code),
            ) from e
        except httpx.HTTPError as e:
            raise TranscriptionError(f"media download failed: {type(e).__name__}: {e}") from e

        if not blob:
            raise TranscriptionError("media is empty", retryable=False)

        files = {"file": (_MEDIA_FILENAMES[media_kind], blob, "application/octet-stream")}
        data = {"model": self.model, "response_format": "text"}

        try:
            with httpx.Client(timeout=timeout) as client:
                r = client.post(f"{self.base}/audio/transcriptions", headers=self._headers(), files=files, data=data)
                r.raise_for_status()
        except httpx.TimeoutException as e:
            raise TranscriptionError(f"transcription timed out after {timeout}s") from e
        except httpx.HTTPStatusError as e:
            raise TranscriptionError(
                f"transcription http {e.response.status_code}",
                retryable=_is_retryable_status(e.response.status_code),
            ) from e
        except httpx.HTTPError as e:
            raise TranscriptionError(f"transcription transport error: {type(e).__name__}: {e}") from e

        text = (r.text or "").strip()
        if not text:
            raise TranscriptionError("transcription returned no text", retryable=False)
        return text


class OpenAITranscriptAnalyzer(_OpenAICompatBase, TranscriptAnalyzer):
    """Chat-completions JSON-mode analysis of the aggregate transcript."""

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> None:
        super().__init__(base_url=base_url, api_key=api_key)
        self.model = model or settings.analysis_model
        self.temperature = settings.analysis_temperature if temperature is None else float(temperature)

    def _payload(self, transcript: str, profile_context: dict[str, Any]) -> dict[str, Any]:
        prompt = ANALYSIS_USER_PROMPT.format(
            name=profile_context.get("name") or "unknown",
            age=profile_context.get("age") or "unknown",
            profession=profile_context.get("profession") or "unknown",
            transcript=transcript,
        )
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": ANALYSIS_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "response_format": {"type": "json_object"},
            "temperature": self.temperature,
        }

    def analyze(self, *, transcript: str, profile_context: dict[str, Any], timeout: float) -> TranscriptAnalysis:
        try:
            with httpx.Client(timeout=timeout) as client:
                r = client.post(
                    f"{self.base}/chat/completions",
                    headers=self._headers(),
                    json=self._payload(transcript, profile_context),
                )
                r.raise_for_status()
                body = r.json()
        except httpx.TimeoutException as e:
            raise AnalysisError(f"analysis timed out after {timeout}s") from e
        except httpx.HTTPStatusError as e:
            raise AnalysisError(
                f"analysis http {e.response.status_code}",
                retryable=_is_retryable_status(e.response.status_code),
            ) from e
        except httpx.HTTPError as e:
            raise AnalysisError(f"analysis transport error: {type(e).__name__}: {e}") from e
        except ValueError as e:
            raise AnalysisError(f"analysis returned non-JSON body: {e}", retryable=False) from e

        return parse_analysis(body)


def parse_analysis(body: dict[str, Any]) -> TranscriptAnalysis:
    """
    Pull the JSON object out of a chat-completions response and normalize it.
    Scores are clamped to [0, 1]; a missing or unparseable content is an AnalysisError.
    """
    try:
        content = body["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as e:
        raise AnalysisError(f"analysis response missing content: {e}", retryable=False) from e

    try:
        result = json.loads(content or "")
    except (TypeError, ValueError) as e:
        raise AnalysisError(f"analysis content is not JSON: {e}", retryable=False) from e
    if not isinstance(result, dict):
        raise AnalysisError("analysis content is not a JSON object", retryable=False)

    facts = result.get("extractedEntities") or {}
    if not isinstance(facts, dict):
        facts = {}

    return TranscriptAnalysis(
        clarity_score=_clamp01(result.get("clarityScore")),
        consistency_score=_clamp01(result.get("consistencyScore")),
        evasiveness_detected=bool(result.get("evasivenessDetected") or False),
        extracted_facts={k: v for k, v in facts.items() if v is not None},
        summary=str(result.get("analysis") or "Analysis completed"),
    )
