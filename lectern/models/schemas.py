"""
Pydantic schemas for request/response validation.
"""
from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Optional, List, Literal
from datetime import datetime
from enum import Enum


class ExplanationStyle(str, Enum):
    """Tone requested from the section writer."""

    DEFAULT = "default"
    SIMPLIFIED = "simplified"
    DETAILED = "detailed"
    EXAMPLE = "example"


# Lecture Schemas
class LectureCreateRequest(BaseModel):
    """Schema for creating a lecture from pasted text."""

    content: str = Field(..., min_length=1)


class LectureCreateResponse(BaseModel):
    """Returned once the lecture row exists (before any subtopic)."""

    lecture_id: int = Field(..., serialization_alias="lectureId")
    title: str
    source_kind: str
    page_count: Optional[int] = None


class LectureRenameRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=512)


class LectureSummary(BaseModel):
    """Row in the lecture list."""

    id: int
    title: str
    source_kind: str
    page_count: Optional[int] = None
    subtopic_count: int = 0
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Subtopic Schemas
class SubtopicResponse(BaseModel):
    """Subtopic as emitted on the lecture stream and returned by the API."""

    id: int
    lecture_id: int
    order: int
    title: str
    importance: str
    difficulty: int
    overview: str
    explanation: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class QuizQuestionResponse(BaseModel):
    id: int
    subtopic_id: int
    prompt: str
    options: List[str]
    answer_index: int
    explanation: str

    model_config = ConfigDict(from_attributes=True)


class SubtopicDetail(SubtopicResponse):
    questions: List[QuizQuestionResponse] = []


class LectureDetailResponse(BaseModel):
    """Lecture with its ordered subtopics and their stored questions."""

    id: int
    title: str
    source_kind: str
    page_count: Optional[int] = None
    created_at: datetime
    subtopics: List[SubtopicDetail] = []

    model_config = ConfigDict(from_attributes=True)


# Explanation Schemas
class ExplanationResponse(BaseModel):
    subtopic_id: int
    markdown: str
    style: ExplanationStyle
    persisted: bool


class ExplanationUpdateRequest(BaseModel):
    """Client-reconciled explanation text to store verbatim (after sanitation)."""

    explanation: str = Field(..., min_length=1)


# Quiz Schemas
class QuizQuestionIn(BaseModel):
    """A question supplied by a caller; validated like model output."""

    prompt: str = Field(..., min_length=1)
    options: List[str] = Field(..., min_length=4, max_length=4)
    answer_index: int = Field(..., ge=0, le=3)
    explanation: str = Field(..., min_length=1)

    @field_validator("options")
    @classmethod
    def _options_non_empty(cls, value: List[str]) -> List[str]:
        if any(not o.strip() for o in value):
            raise ValueError("options must be non-empty strings")
        return value


class QuestionsUpsertRequest(BaseModel):
    mode: Literal["append", "replace"] = "append"
    questions: List[QuizQuestionIn] = Field(..., min_length=1)


class QuestionsUpsertResponse(BaseModel):
    subtopic_id: int
    inserted: int
    skipped: int
    questions: List[QuizQuestionResponse]


class QuizResponse(BaseModel):
    """Result of a quiz-readiness request."""

    subtopic_id: int
    generated: int
    questions: List[QuizQuestionResponse]


# Quiz Progress Schemas
class QuizAttemptRequest(BaseModel):
    """An answer the learner submitted; correctness is decided server-side."""

    question_id: int
    selected_index: int = Field(..., ge=0, le=3)


class QuizAttemptResponse(BaseModel):
    id: int
    question_id: int
    selected_index: int
    is_correct: bool
    correct_index: int


class QuizProgressUpdate(BaseModel):
    """
    Per-question UI state.  Fields left out are not touched; an explicit
    ``selected_index: null`` clears the selection.
    """

    question_id: int
    selected_index: Optional[int] = Field(None, ge=0, le=3)
    revealed: Optional[bool] = None


class QuizProgressRequest(BaseModel):
    updates: List[QuizProgressUpdate] = Field(..., min_length=1)


class QuizProgressEntry(BaseModel):
    question_id: int
    selected_index: Optional[int] = None
    revealed: bool
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class QuizProgressResponse(BaseModel):
    """Visible progress since the last reset, with the attempt score."""

    subtopic_id: int
    progress: List[QuizProgressEntry]
    attempts: int
    correct: int


# Tutor Schemas
class ChatRequest(BaseModel):
    question: str = Field(..., min_length=1)
    subtopic_id: Optional[int] = None
    persist: bool = True

    @field_validator("question")
    @classmethod
    def _question_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("question must not be blank")
        return value.strip()


class ChatResponse(BaseModel):
    lecture_id: int
    response: str


class TutorMessageResponse(BaseModel):
    id: int
    role: str
    text: str
    subtopic_id: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ChatHistoryResponse(BaseModel):
    lecture_id: int
    messages: List[TutorMessageResponse]


class ResetResponse(BaseModel):
    ok: bool = True


# Document Schemas
class ExtractResponse(BaseModel):
    filename: str
    pages: int
    content: str
    source_kind: str


# Health Check Schema
class HealthCheckResponse(BaseModel):
    status: str
    database: str
    ollama: str
    timestamp: datetime
