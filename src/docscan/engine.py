"""Moteur d'orchestration : classification puis extraction, document par document."""

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from PIL import Image

from .config import Config, get_config, load_config, setup_logging
from .errors import DocScanError
from .llm import (
    BaseTextLLMProvider,
    BaseVLMProvider,
    ClassificationResult,
    DocumentClassifier,
    create_providers,
)
from .llm.lifecycle import ProgressHandler
from .models import DocumentType, ExtractionResult
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


def _scaled_progress(
    handler: Optional[ProgressHandler], start: float
) -> Optional[ProgressHandler]:
    if handler is None:
        return None
    return lambda fraction: handler(start + fraction / 2)


def _describe_error(error: Optional[BaseException]) -> Optional[dict]:
    if error is None:
        return None
    return {"kind": type(error).__name__, "message": str(error)}


@dataclass
class DocumentInput:
    """Document soumis au moteur : image décodée et texte reconnu."""

    image: Image.Image
    text: str
    document_type: Optional[DocumentType] = None


@dataclass
class DocumentResult:
    """Résultat complet du traitement d'un document."""

    document_type: Optional[DocumentType]
    extraction: ExtractionResult = field(default_factory=ExtractionResult)
    classification_error: Optional[DocScanError] = None
    extraction_error: Optional[DocScanError] = None
    failure: Optional[DocScanError] = None
    responses: dict[DocumentType, str] = field(default_factory=dict)

    @property
    def is_classified(self) -> bool:
        return self.document_type is not None

    @property
    def success(self) -> bool:
        """Vrai si le document est classifié et qu'aucune étape n'a échoué."""
        return self.is_classified and self.error is None

    @property
    def error(self) -> Optional[DocScanError]:
        """Première erreur rencontrée, le cas échéant."""
        return self.failure or self.classification_error or self.extraction_error

    def to_dict(self) -> dict:
        """Convertit le résultat en dictionnaire."""
        return {
            "document_type": self.document_type.value if self.document_type else "unclassified",
            "success": self.success,
            "extraction": self.extraction.to_dict_display(),
            "classification_error": _describe_error(self.classification_error),
            "extraction_error": _describe_error(self.extraction_error),
            "failure": _describe_error(self.failure),
            "responses": {doc_type.value: text for doc_type, text in self.responses.items()},
        }

    def to_json(self, indent: int = 2) -> str:
        """Convertit le résultat en JSON."""
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False, default=str)


class OrchestrationEngine:
    """
    Point d'entrée unique du moteur.

    Pour chaque document : classification par le VLM (premier type reconnu
    dans l'ordre de priorité), puis extraction par le modèle texte. Le moteur
    applique la politique de timeout/retry et convertit les échecs en
    résultats structurés ; un document en échec n'interrompt jamais un lot.
    """

    def __init__(
        self,
        vlm: BaseVLMProvider,
        text_llm: BaseTextLLMProvider,
        retry_policy: Optional[RetryPolicy] = None,
        priority: Optional[Iterable[DocumentType]] = None,
        max_concurrent_documents: int = 1,
    ):
        """
        Initialise le moteur.

        Args:
            vlm: Fournisseur vision-langage (classification)
            text_llm: Fournisseur texte (extraction)
            retry_policy: Politique de timeout/retry (défaut: RetryPolicy())
            priority: Ordre de test des types de document
            max_concurrent_documents: Documents traités simultanément dans un lot
        """
        if max_concurrent_documents < 1:
            raise ValueError("max_concurrent_documents must be >= 1")

        self.vlm = vlm
        self.text_llm = text_llm
        self.retry_policy = retry_policy or RetryPolicy()
        self.classifier = DocumentClassifier(vlm, priority=priority)
        self.max_concurrent_documents = max_concurrent_documents

        logger.info("Moteur d'orchestration initialisé")

    @classmethod
    def from_config(cls, config: Config) -> "OrchestrationEngine":
        """Construit le moteur et ses fournisseurs depuis la configuration fournie."""
        vlm, text_llm = create_providers(config)
        orchestration = config.orchestration
        return cls(
            vlm,
            text_llm,
            retry_policy=RetryPolicy.from_config(orchestration),
            priority=orchestration.document_types,
            max_concurrent_documents=orchestration.max_concurrent_documents,
        )

    async def preload(self, progress_handler: Optional[ProgressHandler] = None) -> None:
        """
        Charge le VLM puis le modèle texte.

        C'est aussi la seule façon de relancer un modèle dont le chargement a
        échoué. À appeler avant le traitement : sinon le premier chargement
        paresseux est compté dans le délai du premier appel.

        La progression rapportée couvre les deux chargements : [0, 0.5] pour
        le VLM, [0.5, 1] pour le modèle texte.
        """
        await self.vlm.preload(_scaled_progress(progress_handler, 0.0))
        await self.text_llm.preload(_scaled_progress(progress_handler, 0.5))

    async def shutdown(self) -> None:
        """Décharge le VLM et le modèle texte."""
        await self.vlm.unload()
        await self.text_llm.unload()

    async def classify(self, image: Image.Image) -> ClassificationResult:
        """
        Classifie une image.

        Un échec du VLM (après retries éventuels) donne un résultat non
        classifié portant l'erreur et les réponses obtenues avant l'échec,
        sans lever d'exception.
        """
        responses: dict[DocumentType, str] = {}
        try:
            return await self.classifier.classify(
                image, retry=self.retry_policy, responses=responses
            )
        except DocScanError as e:
            logger.error(f"Échec de la classification: {e}")
            return ClassificationResult(document_type=None, responses=responses, error=e)

    async def extract(
        self,
        document_type: DocumentType,
        text: str,
    ) -> tuple[ExtractionResult, Optional[DocScanError]]:
        """
        Extrait les champs d'un document de type connu.

        Returns:
            (résultat, erreur) : en cas d'échec, un résultat vide et l'erreur
        """
        if not text or not text.strip():
            logger.warning("Aucun texte reconnu, extraction ignorée")
            return ExtractionResult(), None

        try:
            result = await self.retry_policy.run(
                lambda: self.text_llm.extract_data(document_type, text),
                label=f"extraction {document_type.value}",
            )
        except DocScanError as e:
            logger.error(f"Échec de l'extraction ({document_type.value}): {e}")
            return ExtractionResult(), e

        logger.info(f"Extraction terminée: {result.get_extracted_fields()}")
        return result, None

    async def process_document(
        self,
        image: Image.Image,
        text: str,
        document_type: Optional[DocumentType] = None,
    ) -> DocumentResult:
        """
        Traite un document : classification (si type non fourni) puis extraction.

        Args:
            image: Image décodée du document
            text: Texte reconnu du document
            document_type: Type connu à l'avance (classification ignorée)

        Returns:
            DocumentResult
        """
        responses: dict[DocumentType, str] = {}

        if document_type is None:
            classification = await self.classify(image)
            responses = classification.responses
            if not classification.is_classified:
                return DocumentResult(
                    document_type=None,
                    classification_error=classification.error,
                    responses=responses,
                )
            document_type = classification.document_type

        extraction, error = await self.extract(document_type, text)
        return DocumentResult(
            document_type=document_type,
            extraction=extraction,
            extraction_error=error,
            responses=responses,
        )

    async def process_batch(self, documents: Iterable[DocumentInput]) -> list[DocumentResult]:
        """
        Traite un lot de documents indépendamment les uns des autres.

        Les résultats sont retournés dans l'ordre des documents soumis.
        """
        semaphore = asyncio.Semaphore(self.max_concurrent_documents)

        async def _run(index: int, document: DocumentInput) -> DocumentResult:
            async with semaphore:
                try:
                    return await self.process_document(
                        document.image, document.text, document.document_type
                    )
                except Exception as e:
                    logger.exception(f"Document {index}: échec inattendu")
                    failure = e if isinstance(e, DocScanError) else DocScanError(
                        f"Échec inattendu du traitement: {e}", cause=e
                    )
                    return DocumentResult(document_type=None, failure=failure)

        results = await asyncio.gather(*(_run(i, doc) for i, doc in enumerate(documents)))
        succeeded = sum(1 for r in results if r.success)
        logger.info(f"Lot traité: {succeeded}/{len(results)} document(s) en succès")
        return list(results)


async def _run_cli(args: argparse.Namespace, config: Config) -> DocumentResult:
    engine = OrchestrationEngine.from_config(config)
    image = Image.open(args.image)
    image.load()
    text = Path(args.text).read_text(encoding="utf-8") if args.text else ""
    document_type = DocumentType(args.type) if args.type else None
    try:
        try:
            await engine.preload()
        except DocScanError as e:
            logger.error(f"Préchargement impossible: {e}")
        return await engine.process_document(image, text, document_type)
    finally:
        await engine.shutdown()


def main():
    """Point d'entrée CLI."""
    parser = argparse.ArgumentParser(
        description="Classification et extraction de données depuis un document scanné"
    )
    parser.add_argument(
        "--image", "-i",
        required=True,
        help="Image du document",
    )
    parser.add_argument(
        "--text",
        help="Fichier texte contenant le texte reconnu du document",
    )
    parser.add_argument(
        "--type", "-t",
        choices=[t.value for t in DocumentType],
        help="Type de document (détection auto si non spécifié)",
    )
    parser.add_argument(
        "--output", "-o",
        help="Fichier de sortie JSON (stdout si non spécifié)",
    )
    parser.add_argument(
        "--config", "-c",
        help="Fichier de configuration YAML",
    )

    args = parser.parse_args()

    if args.config:
        config = load_config(args.config)
        setup_logging(config)
    else:
        config = get_config()

    result = asyncio.run(_run_cli(args, config))
    output_json = result.to_json()

    if args.output:
        Path(args.output).write_text(output_json, encoding="utf-8")
        print(f"Résultat sauvegardé dans {args.output}")
    else:
        print(output_json)

    sys.exit(0 if result.success else 1)


if __name__ == "__main__":
    main()
