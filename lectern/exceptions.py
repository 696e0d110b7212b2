"""
Domain exceptions raised by the generation pipeline.

Routers translate these into HTTP errors; the lecture stream turns them into
a single ``error`` event.
"""
from __future__ import annotations


class LecternError(Exception):
    """Base class for all Lectern domain errors."""


class MalformedModelOutputError(LecternError):
    """The model answered, but nothing usable could be decoded from it."""


class ModelUnavailableError(LecternError):
    """The model backend returned nothing (timeout, connection failure, 5xx)."""


class EmptyExtractionError(LecternError):
    """A PDF yielded no text; the caller should try the vision analyzer."""


class UpstreamTimeoutError(LecternError):
    """An upstream resource did not become ready in time. Retryable."""


class StreamAbortedError(LecternError):
    """A client cancelled a stream it had started."""


class FileTooLargeError(LecternError):
    """An upload exceeded ``MAX_FILE_SIZE``."""
