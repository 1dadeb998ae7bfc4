# backend/app/domain/interview_questions.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class InterviewQuestion:
    id: int
    text: str
    type: str  # open|factual|yes_no_brief|tags|yes_no
    duration: int  # seconds


INTERVIEW_QUESTIONS: tuple[InterviewQuestion, ...] = (
    InterviewQuestion(1, "Tell us who you are and why you're looking for a new place.", "open", 30),
    InterviewQuestion(2, "When can you move in and what's your monthly budget?", "factual", 20),
    InterviewQuestion(3, "Do you have steady income or references we can check?", "yes_no_brief", 20),
    InterviewQuestion(4, "Any pets or special requests?", "tags", 15),
    InterviewQuestion(5, "Have you ever had deposit disputes?", "yes_no", 15),
)

MEDIA_KINDS = ("video", "audio", "text")


def get_question(question_id: int) -> Optional[InterviewQuestion]:
    for q in INTERVIEW_QUESTIONS:
        if q.id == int(question_id):
            return q
    return None
