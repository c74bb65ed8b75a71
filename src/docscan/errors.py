"""Taxonomie des erreurs du moteur de traitement de documents."""

from typing import Optional


class DocScanError(Exception):
    """Erreur de base du moteur."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message} ({type(self.cause).__name__}: {self.cause})"
        return self.message


class ModelLoadFailed(DocScanError):
    """Le backend n'a pas pu être initialisé ou chargé.

    Jamais relancé automatiquement : un rechargement explicite est nécessaire.
    """


class InferenceError(DocScanError):
    """Un appel de génération a échoué ou a dépassé son délai."""

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        timed_out: bool = False,
    ):
        super().__init__(message, cause)
        self.timed_out = timed_out


class ExtractionParseError(DocScanError):
    """La sortie du modèle ne correspond pas à la structure attendue."""

    def __init__(
        self,
        message: str,
        raw_output: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message, cause)
        self.raw_output = raw_output
