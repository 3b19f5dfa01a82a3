"""Generation backends, selected by ``GENERATION_BACKEND``."""

from __future__ import annotations

from ..config import Settings
from .base import GenerationBackend, GenerationRequest
from .langgraph_backend import LangGraphBackend
from .scripted import ScriptedBackend


def create_backend(settings: Settings) -> GenerationBackend:
    if settings.generation_backend == "langgraph":
        return LangGraphBackend(settings)
    return ScriptedBackend()


__all__ = [
    "GenerationBackend",
    "GenerationRequest",
    "LangGraphBackend",
    "ScriptedBackend",
    "create_backend",
]
