"""Classification du type de document par questions oui/non au VLM."""

import logging
import string
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable, Optional

from PIL import Image

from ..errors import DocScanError
from ..models import DocumentType
from .base import BaseVLMProvider
from .prompts import get_classification_prompt

if TYPE_CHECKING:
    from ..retry import RetryPolicy

logger = logging.getLogger(__name__)

AFFIRMATIVE_TOKENS = frozenset({"YES", "JA"})

_STRIP_CHARS = string.whitespace + string.punctuation


def normalize_response(response: Optional[str]) -> str:
    """Normalise une réponse : espaces et ponctuation retirés aux bords, majuscules."""
    return (response or "").strip(_STRIP_CHARS).upper()


def parse_yes_no_response(response: Optional[str]) -> bool:
    """
    Interprète la réponse du VLM.

    Seule une réponse normalisée égale à un jeton affirmatif compte comme oui ;
    tout le reste (vide, NO, réponse malformée) est une réponse négative.
    """
    return normalize_response(response) in AFFIRMATIVE_TOKENS


@dataclass
class ClassificationResult:
    """Résultat de la classification d'une image."""

    document_type: Optional[DocumentType]
    responses: dict[DocumentType, str] = field(default_factory=dict)
    error: Optional[DocScanError] = None

    @property
    def is_classified(self) -> bool:
        """Vrai si un type a été reconnu."""
        return self.document_type is not None


class DocumentClassifier:
    """Classifie une image en testant les types dans un ordre de priorité fixe."""

    def __init__(
        self,
        vlm: BaseVLMProvider,
        priority: Optional[Iterable[DocumentType]] = None,
        model_name: Optional[str] = None,
    ):
        """
        Initialise le classificateur.

        Args:
            vlm: Fournisseur vision-langage
            priority: Ordre de test des types (défaut: ordre de l'énumération)
            model_name: Backend VLM à utiliser (défaut du fournisseur si None)

        Raises:
            ValueError: Si l'ordre de priorité est vide ou contient des doublons
        """
        self.vlm = vlm
        self.priority = list(priority) if priority is not None else list(DocumentType)
        if not self.priority:
            raise ValueError("priority must contain at least one document type")
        if len(set(self.priority)) != len(self.priority):
            raise ValueError("priority must not contain duplicate document types")
        self.model_name = model_name

    async def ask(self, image: Image.Image, document_type: DocumentType) -> str:
        """Pose la question « ce document est-il de type T ? » et retourne la réponse brute."""
        prompt = get_classification_prompt(document_type)
        response = await self.vlm.generate_from_image(image, prompt, model_name=self.model_name)
        logger.debug(f"VLM ({document_type.value}): {response!r}")
        return response

    async def classify(
        self,
        image: Image.Image,
        candidates: Optional[Iterable[DocumentType]] = None,
        retry: Optional["RetryPolicy"] = None,
        responses: Optional[dict[DocumentType, str]] = None,
    ) -> ClassificationResult:
        """
        Retourne le premier type (dans l'ordre de priorité) reconnu par le VLM.

        Args:
            image: Image du document
            candidates: Types à tester, dans l'ordre (défaut: self.priority)
            retry: Politique de timeout/retry appliquée à chaque appel VLM
            responses: Dictionnaire rempli au fil des réponses ; l'appelant
                conserve ainsi les réponses obtenues avant un échec

        Returns:
            ClassificationResult, avec document_type None si aucun type ne correspond

        Raises:
            ModelLoadFailed, InferenceError: Si un appel au VLM échoue
        """
        order = list(candidates) if candidates is not None else self.priority
        if responses is None:
            responses = {}

        for document_type in order:
            if retry is not None:
                response = await retry.run(
                    lambda dt=document_type: self.ask(image, dt),
                    label=f"classification {document_type.value}",
                )
            else:
                response = await self.ask(image, document_type)

            responses[document_type] = response
            if parse_yes_no_response(response):
                logger.info(f"Document classifié: {document_type.value}")
                return ClassificationResult(document_type=document_type, responses=responses)

        logger.info("Document non classifié")
        return ClassificationResult(document_type=None, responses=responses)
