"""
Service factories injected into routes.

Tests override ``get_llm_service`` (and, where randomness matters,
``get_quiz_writer``) through ``app.dependency_overrides``.
"""
from __future__ import annotations

from fastapi import Depends

from lectern.services.blob_store import LocalBlobStore, get_blob_store
from lectern.services.llm import OllamaLLMService, get_llm_service
from lectern.services.quiz_writer import QuizWriter
from lectern.services.section_writer import SectionWriter
from lectern.services.tutor import Tutor
from lectern.services.vision import PdfVisionAnalyzer


def get_section_writer(llm: OllamaLLMService = Depends(get_llm_service)) -> SectionWriter:
    return SectionWriter(llm)


def get_quiz_writer(llm: OllamaLLMService = Depends(get_llm_service)) -> QuizWriter:
    return QuizWriter(llm)


def get_vision_analyzer(
    llm: OllamaLLMService = Depends(get_llm_service),
    blob_store: LocalBlobStore = Depends(get_blob_store),
) -> PdfVisionAnalyzer:
    return PdfVisionAnalyzer(llm, blob_store)


def get_tutor(llm: OllamaLLMService = Depends(get_llm_service)) -> Tutor:
    return Tutor(llm)
