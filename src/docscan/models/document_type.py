"""Types de documents supportés."""

from enum import Enum


class DocumentType(str, Enum):
    """Types de documents reconnus, dans l'ordre de priorité par défaut."""

    INVOICE = "invoice"
    PRESCRIPTION = "prescription"
    LAB_REPORT = "lab_report"

    @property
    def secondary_field_label(self) -> str:
        """Préfixe de la ligne du champ secondaire dans la réponse du modèle."""
        return {
            DocumentType.INVOICE: "COMPANY",
            DocumentType.PRESCRIPTION: "DOCTOR",
            DocumentType.LAB_REPORT: "LAB",
        }[self]

    @property
    def extracts_patient(self) -> bool:
        """Indique si le nom du patient fait partie de l'extraction."""
        return self is not DocumentType.INVOICE
