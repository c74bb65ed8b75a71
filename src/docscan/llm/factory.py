"""Construction des fournisseurs de modèles à partir de la configuration."""

import logging

from ..config import Config
from .base import BaseTextLLMProvider, BaseVLMProvider
from .mock_client import MockTextLLMClient, MockVLMClient
from .vertex_client import VertexAITextLLMClient, VertexAIVLMClient

logger = logging.getLogger(__name__)


def create_vlm_provider(config: Config) -> BaseVLMProvider:
    """Instancie le VLM (simulé ou Vertex AI) selon `config.vlm.use_mock`."""
    if config.vlm.use_mock:
        logger.info("Utilisation du VLM mock")
        return MockVLMClient()
    return VertexAIVLMClient.from_config(config.vlm)


def create_text_llm_provider(config: Config) -> BaseTextLLMProvider:
    """Instancie le modèle texte (simulé ou Vertex AI) selon `config.text_llm.use_mock`."""
    text_config = config.text_llm
    if text_config.use_mock:
        logger.info("Utilisation du modèle texte mock")
        return MockTextLLMClient(
            max_tokens=text_config.max_tokens,
            date_fallback=text_config.date_fallback,
        )
    return VertexAITextLLMClient.from_config(text_config)


def create_providers(config: Config) -> tuple[BaseVLMProvider, BaseTextLLMProvider]:
    """Instancie les deux fournisseurs."""
    return create_vlm_provider(config), create_text_llm_provider(config)
