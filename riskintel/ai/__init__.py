"""AI relevance classification."""

from .classifier import (
    ClassificationResult,
    NotRelevant,
    Relevant,
    RelevanceClassifier,
    RiskAssessment,
    build_prompt,
    parse_classification,
)
from .llm_clients import AiServiceError, AnthropicClient, LlmResponse, OpenAIChatClient, build_llm_client

__all__ = [
    "AiServiceError",
    "AnthropicClient",
    "ClassificationResult",
    "LlmResponse",
    "NotRelevant",
    "OpenAIChatClient",
    "Relevant",
    "RelevanceClassifier",
    "RiskAssessment",
    "build_llm_client",
    "build_prompt",
    "parse_classification",
]
