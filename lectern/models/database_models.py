"""
SQLAlchemy ORM models for Lectern database.
"""
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    DateTime,
    Boolean,
    ForeignKey,
    JSON,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

from lectern.database import Base


# Enums
class Importance(str, enum.Enum):
    """How central a subtopic is to the lecture."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class SourceKind(str, enum.Enum):
    """Where the lecture text came from."""

    TEXT = "text"
    PDF = "pdf"
    VISION = "vision"


# Models
class Lecture(Base):
    """A generated lecture built from one source document."""

    __tablename__ = "lectures"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(String(255), nullable=False, index=True)
    title = Column(String(512), nullable=False)
    original_content = Column(Text, nullable=False)
    source_kind = Column(String(20), nullable=False, default=SourceKind.TEXT.value)
    page_count = Column(Integer, nullable=True)
    # Resolved breakdown {topic, subtopics[]}; lets a reconnecting stream
    # continue the same outline instead of asking the model again.
    breakdown_json = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    # Relationships
    subtopics = relationship(
        "Subtopic",
        back_populates="lecture",
        cascade="all, delete-orphan",
        order_by="Subtopic.order",
    )


class Subtopic(Base):
    """One section of a lecture, with its own explanation and quiz."""

    __tablename__ = "subtopics"
    __table_args__ = (
        UniqueConstraint("lecture_id", "order", name="uq_subtopic_lecture_order"),
    )

    id = Column(Integer, primary_key=True, index=True)
    lecture_id = Column(Integer, ForeignKey("lectures.id", ondelete="CASCADE"), nullable=False, index=True)
    order = Column(Integer, nullable=False)
    title = Column(String(512), nullable=False)
    importance = Column(String(10), nullable=False, default=Importance.MEDIUM.value)
    difficulty = Column(Integer, nullable=False, default=2)
    overview = Column(Text, nullable=False, default="")
    explanation = Column(Text, nullable=True)  # null until the section writer completes

    # Relationships
    lecture = relationship("Lecture", back_populates="subtopics")
    questions = relationship(
        "QuizQuestion",
        back_populates="subtopic",
        cascade="all, delete-orphan",
        order_by="QuizQuestion.id",
    )


class QuizQuestion(Base):
    """Multiple-choice question with exactly four options and one answer."""

    __tablename__ = "quiz_questions"
    __table_args__ = (
        UniqueConstraint("subtopic_id", "prompt_hash", name="uq_question_subtopic_prompt"),
    )

    id = Column(Integer, primary_key=True, index=True)
    subtopic_id = Column(Integer, ForeignKey("subtopics.id", ondelete="CASCADE"), nullable=False, index=True)
    prompt = Column(Text, nullable=False)
    prompt_hash = Column(String(64), nullable=False)  # sha256 of normalised prompt
    options = Column(JSON, nullable=False)  # list of 4 strings
    answer_index = Column(Integer, nullable=False)
    explanation = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relationships
    subtopic = relationship("Subtopic", back_populates="questions")


class TutorMessage(Base):
    """One turn of a learner's conversation with the lecture tutor."""

    __tablename__ = "tutor_messages"

    id = Column(Integer, primary_key=True, index=True)
    lecture_id = Column(Integer, ForeignKey("lectures.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    subtopic_id = Column(Integer, ForeignKey("subtopics.id", ondelete="SET NULL"), nullable=True)
    role = Column(String(10), nullable=False)  # "user" | "ai"
    text = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class TutorReset(Base):
    """
    Marks the start of a fresh conversation. History only shows messages with
    an id above ``last_message_id``; older turns stay for auditing.
    """

    __tablename__ = "tutor_resets"

    id = Column(Integer, primary_key=True, index=True)
    lecture_id = Column(Integer, ForeignKey("lectures.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    last_message_id = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class QuizAttempt(Base):
    """Append-only record of one answer submitted for a question."""

    __tablename__ = "quiz_attempts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    subtopic_id = Column(Integer, ForeignKey("subtopics.id", ondelete="CASCADE"), nullable=False, index=True)
    question_id = Column(Integer, ForeignKey("quiz_questions.id", ondelete="CASCADE"), nullable=False, index=True)
    selected_index = Column(Integer, nullable=False)
    is_correct = Column(Boolean, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class QuizProgress(Base):
    """Current on-screen state of a question for one learner."""

    __tablename__ = "quiz_progress"
    __table_args__ = (
        UniqueConstraint("user_id", "question_id", name="uq_progress_user_question"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    subtopic_id = Column(Integer, ForeignKey("subtopics.id", ondelete="CASCADE"), nullable=False, index=True)
    question_id = Column(Integer, ForeignKey("quiz_questions.id", ondelete="CASCADE"), nullable=False)
    selected_index = Column(Integer, nullable=True)
    revealed = Column(Boolean, nullable=False, default=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class QuizReset(Base):
    """
    Marks a quiz restart. Progress rows are cleared; attempts are kept and
    only those with an id above ``last_attempt_id`` count toward the score.
    """

    __tablename__ = "quiz_resets"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    subtopic_id = Column(Integer, ForeignKey("subtopics.id", ondelete="CASCADE"), nullable=False, index=True)
    last_attempt_id = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
