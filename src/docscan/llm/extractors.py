"""Extraction structurée des champs d'un document via le modèle texte."""

import logging
import re
from typing import TYPE_CHECKING, Optional

from ..dates import extract_date_from_text, parse_date
from ..errors import ExtractionParseError
from ..models import DocumentType, ExtractionResult
from .prompts import get_extraction_prompt

if TYPE_CHECKING:
    from .base import BaseTextLLMProvider

logger = logging.getLogger(__name__)

# Valeurs que le modèle utilise pour signaler un champ introuvable
MISSING_VALUES = {"NOT_FOUND", "UNKNOWN", "N/A", "NONE", "NULL"}

_INVALID_CHARS = re.compile(r'[:/\\?%*|"<>]')

MAX_COMPANY_LENGTH = 50
MAX_PERSON_NAME_LENGTH = 40

# Titres retirés en tête des noms de médecins, du plus long au plus court
DOCTOR_TITLES = [
    "prof. dr. med.", "prof. dr.", "prof.dr.", "prof dr", "prof.",
    "dr. med.", "dr.med.", "dr med", "drmed",
    "dr.", "dr",
    "med.", "med",
]


def strip_code_fences(text: str) -> str:
    """Retire les marqueurs de code markdown autour d'une réponse."""
    t = text.strip()
    if t.startswith("```"):
        first_nl = t.find("\n")
        t = t[first_nl + 1:] if first_nl != -1 else t[3:]
    if t.endswith("```"):
        t = t[:-3]
    return t.strip()


def _clean(value: str) -> str:
    cleaned = _INVALID_CHARS.sub("", value)
    return re.sub(r"\s+", " ", cleaned).strip()


def sanitize_company_name(name: str) -> str:
    """Nettoie un nom d'entreprise (caractères problématiques, espaces, longueur)."""
    return _clean(name)[:MAX_COMPANY_LENGTH].strip()


def sanitize_doctor_name(name: str) -> str:
    """Nettoie un nom de médecin en retirant les titres (Dr., Dr. med., Prof. ...)."""
    value = name.strip()
    stripped = True
    while stripped:
        stripped = False
        for title in DOCTOR_TITLES:
            lowered = value.lower()
            if lowered.startswith(title) and (
                len(value) == len(title) or not value[len(title)].isalpha() or title.endswith(".")
            ):
                value = value[len(title):].strip()
                stripped = True
                break
    return _clean(value)[:MAX_PERSON_NAME_LENGTH].strip()


def sanitize_person_name(name: str) -> str:
    """Nettoie un nom de personne (patient)."""
    return _clean(name)[:MAX_PERSON_NAME_LENGTH].strip()


def sanitize_secondary_field(value: str, document_type: DocumentType) -> str:
    """Applique le nettoyage adapté au champ secondaire du type de document."""
    if document_type is DocumentType.PRESCRIPTION:
        return sanitize_doctor_name(value)
    return sanitize_company_name(value)


def _pick(values: dict[str, list[str]], key: str) -> Optional[str]:
    """Retourne la valeur d'une clé si elle est présente sans ambiguïté."""
    candidates = [v for v in values.get(key, []) if v and v.upper() not in MISSING_VALUES]
    if not candidates:
        return None
    if len(set(candidates)) > 1:
        logger.warning(f"Valeurs contradictoires pour {key}: {candidates}, champ ignoré")
        return None
    return candidates[0]


def parse_extraction_response(response: str, document_type: DocumentType) -> ExtractionResult:
    """
    Convertit la réponse ligne à ligne du modèle en ExtractionResult.

    Chaque champ est indépendant : un champ absent, marqué NOT_FOUND ou
    impossible à parser reste vide sans faire échouer les autres.

    Args:
        response: Sortie brute du modèle (lignes "CLÉ: valeur")
        document_type: Type de document, détermine les clés attendues

    Returns:
        ExtractionResult

    Raises:
        ExtractionParseError: Si aucune ligne attendue n'est présente
    """
    keys = {"DATE", document_type.secondary_field_label}
    if document_type.extracts_patient:
        keys.add("PATIENT")

    values: dict[str, list[str]] = {}
    for line in strip_code_fences(response or "").splitlines():
        key, sep, value = line.strip().lstrip("-*• ").partition(":")
        key = key.strip().upper()
        if not sep or key not in keys:
            continue
        values.setdefault(key, []).append(value.strip())

    if not values:
        raise ExtractionParseError(
            f"Aucun champ reconnu dans la réponse du modèle ({document_type.value})",
            raw_output=response,
        )

    date_value = _pick(values, "DATE")
    parsed_date = parse_date(date_value) if date_value else None
    if date_value and parsed_date is None:
        logger.warning(f"Date non parsable dans la réponse: {date_value!r}")

    secondary = _pick(values, document_type.secondary_field_label)
    if secondary is not None:
        secondary = sanitize_secondary_field(secondary, document_type) or None

    patient = _pick(values, "PATIENT")
    if patient is not None:
        patient = sanitize_person_name(patient) or None

    return ExtractionResult(
        date=parsed_date,
        secondary_field=secondary,
        patient_name=patient,
    )


class StructuredExtractor:
    """Exécute le protocole d'extraction (prompt, génération, parsing) pour un type donné."""

    def __init__(
        self,
        text_llm: "BaseTextLLMProvider",
        max_tokens: int = 256,
        date_fallback: bool = False,
    ):
        """
        Initialise l'extracteur.

        Args:
            text_llm: Fournisseur de génération texte
            max_tokens: Borne de génération
            date_fallback: Chercher une date dans le texte source si le modèle n'en donne pas
        """
        self.text_llm = text_llm
        self.max_tokens = max_tokens
        self.date_fallback = date_fallback

    async def extract(self, document_type: DocumentType, text: str) -> ExtractionResult:
        """
        Extrait les champs d'un document à partir de son texte reconnu.

        Args:
            document_type: Type de document déclaré
            text: Texte reconnu du document

        Returns:
            ExtractionResult avec les champs trouvés

        Raises:
            InferenceError: En cas d'échec de génération
            ExtractionParseError: Si la réponse n'a pas la structure attendue
        """
        if not isinstance(document_type, DocumentType):
            raise TypeError(f"DocumentType attendu, reçu {document_type!r}")

        if not text or not text.strip():
            logger.warning("Texte vide, aucune extraction possible")
            return ExtractionResult()

        logger.info(f"Extraction des données ({document_type.value})...")

        prompt = get_extraction_prompt(document_type, text)
        response = await self.text_llm.generate(prompt.system, prompt.user, self.max_tokens)
        logger.debug(f"Réponse brute: {response[:500]}")

        result = parse_extraction_response(response, document_type)

        if result.date is None and self.date_fallback:
            fallback = extract_date_from_text(text)
            if fallback is not None:
                logger.info(f"Date trouvée par recherche dans le texte: {fallback.isoformat()}")
                result = result.model_copy(update={"date": fallback})

        return result
