"""Lectern: turn a document into a streamed lecture with explanations and quizzes."""

__version__ = "0.1.0"
