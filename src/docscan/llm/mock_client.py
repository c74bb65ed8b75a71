"""Fournisseurs de modèles simulés pour les tests et démos sans credentials."""

import asyncio
import logging
import re
from typing import Optional, Sequence, Union

from PIL import Image

from ..errors import DocScanError, InferenceError
from ..models import DocumentType, ExtractionResult
from .base import BaseTextLLMProvider, BaseVLMProvider, validate_image_request
from .lifecycle import ModelLifecycleManager, ProgressHandler
from .prompts import CLASSIFICATION_PROMPTS, EXTRACTION_SYSTEM_PROMPTS

logger = logging.getLogger(__name__)

_PROMPT_TYPES = {prompt: doc_type for doc_type, prompt in CLASSIFICATION_PROMPTS.items()}
_SYSTEM_TYPES = {prompt: doc_type for doc_type, prompt in EXTRACTION_SYSTEM_PROMPTS.items()}


class _FailureScript:
    """Fait échouer les N premiers appels avec l'erreur donnée."""

    def __init__(self, fail_times: int, failure: type[DocScanError]):
        self.remaining = fail_times
        self.failure = failure

    def check(self, what: str) -> None:
        if self.remaining > 0:
            self.remaining -= 1
            raise self.failure(f"Erreur simulée ({what})")


class MockVLMClient(BaseVLMProvider):
    """
    VLM simulé.

    Les réponses sont scriptées par type de document (ou par prompt exact) ;
    les types non scriptés reçoivent `default_answer`.
    """

    def __init__(
        self,
        answers: Optional[dict[Union[DocumentType, str], str]] = None,
        default_answer: str = "NO",
        fail_times: int = 0,
        failure: type[DocScanError] = InferenceError,
        delay: float = 0.0,
        fail_loads: int = 0,
    ):
        """
        Initialise le VLM simulé.

        Args:
            answers: Réponse par DocumentType ou par prompt
            default_answer: Réponse pour les types non scriptés
            fail_times: Nombre d'appels initiaux qui échouent
            failure: Type d'erreur levée pour ces échecs
            delay: Latence simulée par appel (secondes)
            fail_loads: Nombre de chargements initiaux qui échouent
        """
        self.answers = dict(answers or {})
        self.default_answer = default_answer
        self.delay = delay
        self.fail_loads = fail_loads
        self.calls: list[tuple[Optional[DocumentType], str, Optional[str]]] = []
        self._failures = _FailureScript(fail_times, failure)
        self.lifecycle = ModelLifecycleManager("mock-vlm", loader=self._load)
        logger.info("MockVLMClient initialisé (mode simulation)")

    async def _load(self, progress: ProgressHandler) -> str:
        if self.fail_loads > 0:
            self.fail_loads -= 1
            raise RuntimeError("Échec de chargement simulé")
        progress(1.0)
        return "mock-vlm-session"

    async def preload(self, progress_handler: Optional[ProgressHandler] = None) -> None:
        await self.lifecycle.preload(progress_handler)

    async def unload(self) -> None:
        await self.lifecycle.unload()

    def is_ready(self) -> bool:
        return self.lifecycle.is_ready()

    async def generate_from_image(
        self,
        image: Image.Image,
        prompt: str,
        model_name: Optional[str] = None,
    ) -> str:
        validate_image_request(image, prompt)
        await self.lifecycle.ensure_ready()
        document_type = _PROMPT_TYPES.get(prompt)
        self.calls.append((document_type, prompt, model_name))

        if self.delay:
            await asyncio.sleep(self.delay)
        self._failures.check("VLM")

        if prompt in self.answers:
            return self.answers[prompt]
        if document_type is not None and document_type in self.answers:
            return self.answers[document_type]
        return self.default_answer

    @property
    def asked_types(self) -> list[Optional[DocumentType]]:
        """Types interrogés, dans l'ordre des appels."""
        return [doc_type for doc_type, _, _ in self.calls]


class MockTextLLMClient(BaseTextLLMProvider):
    """
    Modèle texte simulé.

    Sans script, génère une réponse "DATE: ... / <LABEL>: ..." plausible en
    analysant le texte du document contenu dans le prompt. Le chargement
    passe par un vrai ModelLifecycleManager avec une progression simulée.
    """

    def __init__(
        self,
        results: Optional[dict[DocumentType, ExtractionResult]] = None,
        responses: Optional[dict[DocumentType, str]] = None,
        fail_times: int = 0,
        failure: type[DocScanError] = InferenceError,
        delay: float = 0.0,
        load_steps: Sequence[float] = (0.25, 0.5, 1.0),
        load_delay: float = 0.0,
        fail_loads: int = 0,
        max_tokens: int = 256,
        date_fallback: bool = False,
    ):
        """
        Initialise le modèle simulé.

        Args:
            results: ExtractionResult retourné directement par type (court-circuite le parsing)
            responses: Sortie brute retournée par `generate` pour un type
            fail_times: Nombre d'appels initiaux qui échouent
            failure: Type d'erreur levée pour ces échecs
            delay: Latence simulée par génération (secondes)
            load_steps: Fractions de progression émises pendant le chargement
            load_delay: Durée simulée de chaque étape de chargement
            fail_loads: Nombre de chargements initiaux qui échouent
        """
        self.results = dict(results or {})
        self.responses = dict(responses or {})
        self.delay = delay
        self.load_steps = list(load_steps)
        self.load_delay = load_delay
        self.fail_loads = fail_loads
        self.max_tokens = max_tokens
        self.date_fallback = date_fallback
        self.calls: list[tuple[str, str, int]] = []
        self.extract_calls: list[tuple[DocumentType, str]] = []
        self._failures = _FailureScript(fail_times, failure)
        self.lifecycle = ModelLifecycleManager("mock-text-llm", loader=self._load)
        logger.info("MockTextLLMClient initialisé (mode simulation)")

    async def _load(self, progress: ProgressHandler) -> str:
        for step in self.load_steps:
            if self.load_delay:
                await asyncio.sleep(self.load_delay)
            progress(step)
        if self.fail_loads > 0:
            self.fail_loads -= 1
            raise RuntimeError("Échec de chargement simulé")
        return "mock-session"

    async def preload(self, progress_handler: Optional[ProgressHandler] = None) -> None:
        await self.lifecycle.preload(progress_handler)

    async def unload(self) -> None:
        await self.lifecycle.unload()

    def is_ready(self) -> bool:
        return self.lifecycle.is_ready()

    async def generate(self, system_prompt: str, user_prompt: str, max_tokens: int) -> str:
        await self.lifecycle.ensure_ready()
        self.calls.append((system_prompt, user_prompt, max_tokens))

        if self.delay:
            await asyncio.sleep(self.delay)
        self._failures.check("génération")

        document_type = _SYSTEM_TYPES.get(system_prompt, DocumentType.INVOICE)
        if document_type in self.responses:
            return self.responses[document_type]
        return self._simulate_response(document_type, user_prompt)

    async def extract_data(self, document_type: DocumentType, text: str) -> ExtractionResult:
        self.extract_calls.append((document_type, text))
        if document_type not in self.results:
            return await super().extract_data(document_type, text)

        await self.lifecycle.ensure_ready()
        if self.delay:
            await asyncio.sleep(self.delay)
        self._failures.check("extraction")
        return self.results[document_type]

    def _extract_text_from_prompt(self, prompt: str) -> str:
        """Extrait le texte du document du prompt (entre les marqueurs ---)."""
        match = re.search(r"---\s*\n(.*?)\n\s*---", prompt, re.DOTALL)
        if match:
            return match.group(1)
        return prompt

    def _find_pattern(self, text: str, patterns: list[str]) -> Optional[str]:
        """Cherche un pattern dans le texte."""
        for pattern in patterns:
            match = re.search(pattern, text, re.IGNORECASE)
            if match:
                return (match.group(1) if match.groups() else match.group(0)).strip()
        return None

    def _find_date(self, text: str) -> Optional[str]:
        """Cherche une date dans le texte."""
        return self._find_pattern(
            text,
            [r"(\d{4}-\d{2}-\d{2})", r"(\d{1,2}\.\d{1,2}\.\d{4})", r"(\d{1,2}/\d{1,2}/\d{4})"],
        )

    def _simulate_response(self, document_type: DocumentType, prompt: str) -> str:
        """Génère une réponse au format attendu par le parseur."""
        text = self._extract_text_from_prompt(prompt)
        name = r"([A-ZÄÖÜ][\w\-]+(?:[ \t]+[A-ZÄÖÜ][\w\-]+)?)"

        if document_type is DocumentType.INVOICE:
            secondary = self._find_pattern(
                text,
                [
                    r"(?:company|firma|from|von)\s*:\s*([^\n,]+)",
                    r"^\s*([A-Z][\w&.\- ]+(?:GmbH|AG|KG|Ltd|Inc|SARL|SAS))",
                ],
            )
        elif document_type is DocumentType.PRESCRIPTION:
            secondary = self._find_pattern(
                text, [r"\bDr\.?\s*(?:med\.?\s*)?" + name, r"(?:doctor|arzt)\s*:\s*" + name]
            )
        else:
            secondary = self._find_pattern(
                text, [r"(?:lab|labor|laboratory)\s*:\s*([^\n,]+)", r"([\w\-]*Labor[\w\- ]*)"]
            )

        lines = [
            f"DATE: {self._find_date(text) or 'NOT_FOUND'}",
            f"{document_type.secondary_field_label}: {secondary or 'NOT_FOUND'}",
        ]
        if document_type.extracts_patient:
            patient = self._find_pattern(text, [r"patient(?:in)?\s*:\s*" + name])
            lines.append(f"PATIENT: {patient or 'NOT_FOUND'}")

        return "\n".join(lines)
