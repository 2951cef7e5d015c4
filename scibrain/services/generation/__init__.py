"""Reviewer and quiz generation through a local model (Ollama)."""

from scibrain.services.generation.provider import (
    FakeGenerator,
    OllamaGenerator,
    StudyGenerationError,
    StudyGenerator,
    get_generator,
    reset_generator,
)

__all__ = [
    "FakeGenerator",
    "OllamaGenerator",
    "StudyGenerationError",
    "StudyGenerator",
    "get_generator",
    "reset_generator",
]
