"""Database and schema models for Lectern."""
from lectern.models.database_models import (
    Lecture,
    Subtopic,
    QuizQuestion,
    TutorMessage,
    TutorReset,
    QuizAttempt,
    QuizProgress,
    QuizReset,
    Importance,
    SourceKind,
)
from lectern.models.schemas import (
    ExplanationStyle,
    LectureCreateRequest,
    LectureCreateResponse,
    LectureDetailResponse,
    LectureSummary,
    SubtopicResponse,
    QuizQuestionResponse,
    HealthCheckResponse,
)

__all__ = [
    # Database models
    "Lecture",
    "Subtopic",
    "QuizQuestion",
    "TutorMessage",
    "TutorReset",
    "QuizAttempt",
    "QuizProgress",
    "QuizReset",
    "Importance",
    "SourceKind",
    # Pydantic schemas
    "ExplanationStyle",
    "LectureCreateRequest",
    "LectureCreateResponse",
    "LectureDetailResponse",
    "LectureSummary",
    "SubtopicResponse",
    "QuizQuestionResponse",
    "HealthCheckResponse",
]
