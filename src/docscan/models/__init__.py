"""Modèles de données pour la classification et l'extraction."""

from .document_type import DocumentType
from .extraction import ExtractionResult

__all__ = ["DocumentType", "ExtractionResult"]
