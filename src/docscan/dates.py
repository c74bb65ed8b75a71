"""Utilitaires de parsing de dates partagés par les extracteurs."""

import logging
import re
from datetime import date, datetime
from typing import Optional

logger = logging.getLogger(__name__)

# Ordre de priorité : ISO d'abord (non ambigu), puis formats européens, puis US
DATE_FORMATS = [
    "%Y-%m-%d",
    "%d.%m.%Y",
    "%d/%m/%Y",
    "%m/%d/%Y",
]

_DATE_CANDIDATE = re.compile(
    r"\b(\d{4}-\d{2}-\d{2}|\d{1,2}\.\d{1,2}\.\d{4}|\d{1,2}/\d{1,2}/\d{4})\b"
)


def parse_date(value: Optional[str]) -> Optional[date]:
    """
    Parse une date selon les formats acceptés, dans l'ordre.

    Args:
        value: Chaîne à parser

    Returns:
        La date, ou None si aucun format ne correspond
    """
    if not value:
        return None

    cleaned = value.strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).date()
        except ValueError:
            continue

    logger.debug(f"Date non parsable: {cleaned!r}")
    return None


def extract_date_from_text(text: str) -> Optional[date]:
    """Retourne la première date valide trouvée dans un texte libre."""
    for match in _DATE_CANDIDATE.finditer(text or ""):
        parsed = parse_date(match.group(1))
        if parsed is not None:
            return parsed
    return None


def format_date(value: date, fmt: str = "%Y-%m-%d") -> str:
    """Formate une date (ISO par défaut)."""
    return value.strftime(fmt)
