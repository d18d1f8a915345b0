from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field


class QuestionType(str, Enum):
    MCQ = "MCQ"
    MULTIPLE_CORRECT = "MULTIPLE_CORRECT"
    INTEGER_TYPE = "INTEGER_TYPE"
    TRUE_FALSE = "TRUE_FALSE"
    FILL_BLANK = "FILL_BLANK"
    ASSERTION_REASONING = "ASSERTION_REASONING"
    SHORT_ANSWER = "SHORT_ANSWER"
    LONG_ANSWER = "LONG_ANSWER"


# Free-text types have no deterministic grading path
NON_GRADEABLE_TYPES = frozenset({QuestionType.SHORT_ANSWER, QuestionType.LONG_ANSWER})


class DayStatus(str, Enum):
    LOCKED = "LOCKED"
    IN_PROGRESS = "IN_PROGRESS"
    CONTENT_COMPLETE = "CONTENT_COMPLETE"
    TEST_IN_PROGRESS = "TEST_IN_PROGRESS"
    PASSED = "PASSED"
    FAILED_COOLDOWN = "FAILED_COOLDOWN"


AnswerValue = Union[str, int, float, bool, List[str]]


class Question(BaseModel):
    id: str
    type: QuestionType
    text: str = ""
    options: Dict[str, str] = {}
    correct_answer: AnswerValue = ""
    explanation: str = ""
    topic: str = "General"
    difficulty: Optional[str] = None

    @property
    def gradeable(self) -> bool:
        return self.type not in NON_GRADEABLE_TYPES

    def public(self) -> Dict[str, Any]:
        """Question payload safe to send before the answer is submitted."""
        return self.model_dump(mode="json", exclude={"correct_answer", "explanation"})


# ── Request bodies ──────────────────────────────────────────────────

class DiagnosticStart(BaseModel):
    subject_id: str
    chapter_id: str


class DiagnosticSubmission(BaseModel):
    responses: Dict[str, AnswerValue]  # question_id -> answer
    elapsed_seconds: Optional[int] = Field(default=None, ge=0)


class PlanCreate(BaseModel):
    subject_id: str
    chapter_id: str
    recommended_start_level: str
    diagnostic_attempt_id: Optional[int] = None


class VideoWatched(BaseModel):
    video_id: int


class PracticeSubmission(BaseModel):
    responses: Dict[str, AnswerValue]


class DayTestSubmission(BaseModel):
    responses: Dict[str, AnswerValue] = {}


class WatchStart(BaseModel):
    plan_day_id: Optional[int] = None


class ProgressUpdate(BaseModel):
    session_id: int
    position_seconds: float = Field(ge=0)


class ChallengeSubmission(BaseModel):
    session_id: int
    challenge_id: int
    word: str


class ComprehensionAnswer(BaseModel):
    session_id: int
    question_id: str
    answer: AnswerValue


class SessionRef(BaseModel):
    session_id: int


class VideoRegistration(BaseModel):
    youtube_video_id: str
    subject_id: str
    chapter_id: str
    title: str = ""
    duration_seconds: int = Field(gt=0)
