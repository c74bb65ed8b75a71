"""Fournisseurs Vertex AI (Gemini) pour la classification et l'extraction."""

import asyncio
import contextlib
import functools
import logging
import os
from typing import Any, Optional

from PIL import Image

from ..config import TextLLMConfig, VLMConfig
from ..errors import InferenceError, ModelLoadFailed
from .base import (
    BaseTextLLMProvider,
    BaseVLMProvider,
    image_to_png_bytes,
    validate_image_request,
)
from .lifecycle import ModelLifecycleManager, ProgressHandler

logger = logging.getLogger(__name__)


def _create_client(
    project_id: str,
    location: str,
    credentials_path: Optional[str] = None,
) -> Any:
    """Crée un client google-genai connecté à Vertex AI."""
    if credentials_path:
        os.environ["GOOGLE_APPLICATION_CREDENTIALS"] = credentials_path

    try:
        from google import genai
    except ImportError as e:
        raise ModelLoadFailed(
            "google-genai non installé. Installez avec: pip install google-genai",
            cause=e,
        ) from e

    try:
        return genai.Client(vertexai=True, project=project_id, location=location)
    except Exception as e:
        raise ModelLoadFailed(f"Erreur lors de l'initialisation de Vertex AI: {e}", cause=e) from e


class _VertexAIBase:
    """Paramètres communs et sérialisation de l'inférence."""

    def __init__(
        self,
        project_id: str,
        location: str,
        model_name: str,
        credentials_path: Optional[str],
        concurrent_inference: bool,
    ):
        self.project_id = project_id
        self.location = location
        self.model_name = model_name
        self.credentials_path = credentials_path
        # Sans inférence concurrente, les appels passent un par un par ce verrou
        self._inference_lock = None if concurrent_inference else asyncio.Lock()

    def _inference_guard(self):
        return self._inference_lock or contextlib.nullcontext()

    async def _load(self, model_name: str, progress: ProgressHandler) -> Any:
        progress(0.0)
        client = await asyncio.to_thread(
            _create_client,
            self.project_id,
            self.location,
            self.credentials_path,
        )
        logger.info(f"Client Vertex AI prêt pour {model_name}")
        progress(1.0)
        return client

    async def _release(self, client: Any) -> None:
        # Le transport asynchrone n'est pas fermé par client.close()
        await client.aio.aclose()
        client.close()


class VertexAIVLMClient(_VertexAIBase, BaseVLMProvider):
    """Client vision-langage Vertex AI, un cycle de vie par nom de modèle."""

    def __init__(
        self,
        project_id: str,
        location: str = "europe-west1",
        model_name: str = "gemini-1.5-flash",
        credentials_path: Optional[str] = None,
        concurrent_inference: bool = False,
        temperature: float = 0.0,
        max_tokens: int = 16,
    ):
        """
        Initialise le client.

        Args:
            project_id: ID du projet Google Cloud
            location: Région GCP (europe-west1, us-central1, etc.)
            model_name: Modèle par défaut
            credentials_path: Chemin vers le fichier de credentials JSON
            concurrent_inference: Autoriser plusieurs générations simultanées
            temperature: Température de génération
            max_tokens: Borne de la réponse (une réponse oui/non suffit)
        """
        super().__init__(project_id, location, model_name, credentials_path, concurrent_inference)
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._managers: dict[str, ModelLifecycleManager] = {}

        logger.info(
            f"VertexAIVLMClient configuré (project={project_id}, "
            f"location={location}, model={model_name})"
        )

    @classmethod
    def from_config(cls, config: VLMConfig) -> "VertexAIVLMClient":
        return cls(
            project_id=config.project_id,
            location=config.location,
            model_name=config.model_name,
            credentials_path=config.credentials_path,
            concurrent_inference=config.concurrent_inference,
        )

    def lifecycle(self, model_name: Optional[str] = None) -> ModelLifecycleManager:
        """Gestionnaire de cycle de vie du backend `model_name`."""
        name = model_name or self.model_name
        if name not in self._managers:
            self._managers[name] = ModelLifecycleManager(
                f"vlm:{name}",
                loader=functools.partial(self._load, name),
                unloader=self._release,
            )
        return self._managers[name]

    async def preload(
        self,
        progress_handler: Optional[ProgressHandler] = None,
        model_name: Optional[str] = None,
    ) -> None:
        await self.lifecycle(model_name).preload(progress_handler)

    async def unload(self, model_name: Optional[str] = None) -> None:
        """Décharge un backend, ou tous si model_name est None."""
        if model_name is not None:
            await self.lifecycle(model_name).unload()
            return
        for manager in list(self._managers.values()):
            await manager.unload()

    def is_ready(self, model_name: Optional[str] = None) -> bool:
        return self.lifecycle(model_name).is_ready()

    async def generate_from_image(
        self,
        image: Image.Image,
        prompt: str,
        model_name: Optional[str] = None,
    ) -> str:
        validate_image_request(image, prompt)
        name = model_name or self.model_name
        client = await self.lifecycle(name).ensure_ready()

        from google.genai import types

        image_part = types.Part.from_bytes(data=image_to_png_bytes(image), mime_type="image/png")
        generation_config = types.GenerateContentConfig(
            temperature=self.temperature,
            max_output_tokens=self.max_tokens,
        )

        async with self._inference_guard():
            try:
                response = await client.aio.models.generate_content(
                    model=name,
                    contents=[image_part, prompt],
                    config=generation_config,
                )
                return response.text or ""
            except Exception as e:
                raise InferenceError(f"Erreur lors de la génération VLM: {e}", cause=e) from e


class VertexAITextLLMClient(_VertexAIBase, BaseTextLLMProvider):
    """Client texte Vertex AI pour l'extraction structurée."""

    def __init__(
        self,
        project_id: str,
        location: str = "europe-west1",
        model_name: str = "gemini-1.5-flash",
        credentials_path: Optional[str] = None,
        concurrent_inference: bool = False,
        max_tokens: int = 256,
        temperature: float = 0.1,
        date_fallback: bool = False,
    ):
        """
        Initialise le client.

        Args:
            project_id: ID du projet Google Cloud
            location: Région GCP
            model_name: Nom du modèle (gemini-1.5-flash, gemini-1.5-pro)
            credentials_path: Chemin vers le fichier de credentials JSON
            concurrent_inference: Autoriser plusieurs générations simultanées
            max_tokens: Nombre maximum de tokens en sortie pour l'extraction
            temperature: Température de génération (0-2)
            date_fallback: Chercher la date dans le texte si le modèle n'en donne pas
        """
        super().__init__(project_id, location, model_name, credentials_path, concurrent_inference)
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.date_fallback = date_fallback
        self.lifecycle = ModelLifecycleManager(
            f"text:{model_name}",
            loader=functools.partial(self._load, model_name),
            unloader=self._release,
        )

        logger.info(
            f"VertexAITextLLMClient configuré (project={project_id}, "
            f"location={location}, model={model_name})"
        )

    @classmethod
    def from_config(cls, config: TextLLMConfig) -> "VertexAITextLLMClient":
        return cls(
            project_id=config.project_id,
            location=config.location,
            model_name=config.model_name,
            credentials_path=config.credentials_path,
            concurrent_inference=config.concurrent_inference,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
            date_fallback=config.date_fallback,
        )

    async def preload(self, progress_handler: Optional[ProgressHandler] = None) -> None:
        await self.lifecycle.preload(progress_handler)

    async def unload(self) -> None:
        await self.lifecycle.unload()

    def is_ready(self) -> bool:
        return self.lifecycle.is_ready()

    async def generate(self, system_prompt: str, user_prompt: str, max_tokens: int) -> str:
        client = await self.lifecycle.ensure_ready()

        from google.genai import types

        generation_config = types.GenerateContentConfig(
            system_instruction=system_prompt or None,
            temperature=self.temperature,
            max_output_tokens=max_tokens,
        )

        async with self._inference_guard():
            try:
                response = await client.aio.models.generate_content(
                    model=self.model_name,
                    contents=user_prompt,
                    config=generation_config,
                )
                return response.text or ""
            except Exception as e:
                raise InferenceError(f"Erreur lors de la génération: {e}", cause=e) from e
