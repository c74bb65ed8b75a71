"""Module LLM : fournisseurs de modèles, classification et extraction."""

from .base import BaseTextLLMProvider, BaseVLMProvider
from .classifier import (
    ClassificationResult,
    DocumentClassifier,
    parse_yes_no_response,
)
from .extractors import StructuredExtractor, parse_extraction_response
from .factory import create_providers, create_text_llm_provider, create_vlm_provider
from .lifecycle import ModelLifecycleManager, SessionState
from .mock_client import MockTextLLMClient, MockVLMClient
from .prompts import Prompt, get_classification_prompt, get_extraction_prompt
from .vertex_client import VertexAITextLLMClient, VertexAIVLMClient

__all__ = [
    # Interfaces
    "BaseVLMProvider",
    "BaseTextLLMProvider",
    # Clients
    "VertexAIVLMClient",
    "VertexAITextLLMClient",
    "MockVLMClient",
    "MockTextLLMClient",
    "create_providers",
    "create_vlm_provider",
    "create_text_llm_provider",
    # Cycle de vie
    "ModelLifecycleManager",
    "SessionState",
    # Classification / extraction
    "DocumentClassifier",
    "ClassificationResult",
    "parse_yes_no_response",
    "StructuredExtractor",
    "parse_extraction_response",
    # Prompts
    "Prompt",
    "get_classification_prompt",
    "get_extraction_prompt",
]
