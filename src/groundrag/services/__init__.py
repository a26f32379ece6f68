"""Service layer orchestrations for groundrag."""

from .citations import CitationExtractor, EntitySubstringStrategy, IndexMarkerStrategy
from .generation import (
    AnswerGenerator,
    ApiPromptBuilder,
    ChatAnswerGenerator,
    DocumentPromptBuilder,
    GenerationConfig,
    GenerationError,
    OpenAIChatBackend,
    TemplateAnswerGenerator,
)

__all__ = [
    "AnswerGenerator",
    "ApiPromptBuilder",
    "ChatAnswerGenerator",
    "CitationExtractor",
    "DocumentPromptBuilder",
    "EntitySubstringStrategy",
    "GenerationConfig",
    "GenerationError",
    "IndexMarkerStrategy",
    "OpenAIChatBackend",
    "TemplateAnswerGenerator",
]
