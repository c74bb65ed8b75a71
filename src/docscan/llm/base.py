"""Interfaces des fournisseurs de modèles (vision-langage et texte)."""

import io
from abc import ABC, abstractmethod
from typing import Optional

from PIL import Image

from ..models import DocumentType, ExtractionResult
from .extractors import StructuredExtractor
from .lifecycle import ProgressHandler


class BaseVLMProvider(ABC):
    """Capacité de génération conditionnée par une image."""

    @abstractmethod
    async def preload(self, progress_handler: Optional[ProgressHandler] = None) -> None:
        """
        Charge le backend par défaut. Seul moyen de sortir de l'état FAILED.

        Raises:
            ModelLoadFailed: Si le chargement échoue
        """

    @abstractmethod
    async def unload(self) -> None:
        """Décharge les backends chargés."""

    @abstractmethod
    def is_ready(self) -> bool:
        """Vérifie, sans bloquer, si le backend par défaut est prêt."""

    @abstractmethod
    async def generate_from_image(
        self,
        image: Image.Image,
        prompt: str,
        model_name: Optional[str] = None,
    ) -> str:
        """
        Génère une réponse à partir d'une image et d'une instruction.

        Args:
            image: Image raster décodée
            prompt: Instruction non vide
            model_name: Backend à utiliser (défaut choisi par le fournisseur)

        Returns:
            Le texte généré

        Raises:
            ModelLoadFailed: Si le modèle n'est pas disponible
            InferenceError: En cas d'échec pendant la génération
        """


class BaseTextLLMProvider(ABC):
    """Capacité de génération et d'extraction à partir de texte."""

    max_tokens: int = 256
    date_fallback: bool = False

    @abstractmethod
    async def preload(self, progress_handler: Optional[ProgressHandler] = None) -> None:
        """
        Charge le modèle (UNLOADED -> LOADING -> READY).

        Raises:
            ModelLoadFailed: Si le chargement échoue (session en état FAILED)
        """

    @abstractmethod
    async def unload(self) -> None:
        """Décharge le modèle et libère ses ressources."""

    @abstractmethod
    def is_ready(self) -> bool:
        """Vérifie, sans bloquer, si le modèle est prêt."""

    @abstractmethod
    async def generate(self, system_prompt: str, user_prompt: str, max_tokens: int) -> str:
        """
        Génération brute bornée par max_tokens.

        Raises:
            ModelLoadFailed: Si le modèle n'est pas disponible
            InferenceError: En cas d'échec pendant la génération
        """

    async def extract_data(self, document_type: DocumentType, text: str) -> ExtractionResult:
        """
        Extrait les champs structurés du texte reconnu d'un document.

        Raises:
            InferenceError: En cas d'échec de génération
            ExtractionParseError: Si la sortie du modèle n'est pas exploitable
        """
        extractor = StructuredExtractor(
            self,
            max_tokens=self.max_tokens,
            date_fallback=self.date_fallback,
        )
        return await extractor.extract(document_type, text)


def validate_image_request(image: Image.Image, prompt: str) -> None:
    """Vérifie les préconditions d'un appel `generate_from_image`."""
    if not isinstance(image, Image.Image):
        raise TypeError(f"Image décodée attendue, reçu {type(image).__name__}")
    if not prompt or not prompt.strip():
        raise ValueError("Le prompt ne peut pas être vide")


def image_to_png_bytes(image: Image.Image) -> bytes:
    """Encode une image en PNG pour l'envoi au modèle."""
    if image.mode not in ("RGB", "RGBA", "L"):
        image = image.convert("RGB")
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()
