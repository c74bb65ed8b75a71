"""Modèle de données pour le résultat d'extraction."""

import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ExtractionResult(BaseModel):
    """Champs extraits d'un document, tous optionnels (extraction best-effort)."""

    model_config = ConfigDict(frozen=True)

    date: Optional[datetime.date] = Field(None, description="Date du document")
    secondary_field: Optional[str] = Field(
        None, description="Émetteur, médecin ou laboratoire selon le type"
    )
    patient_name: Optional[str] = Field(None, description="Nom du patient")

    def is_empty(self) -> bool:
        """Vrai si aucun champ n'a pu être extrait."""
        return not any(self.get_extracted_fields().values())

    def get_extracted_fields(self) -> dict[str, bool]:
        """Retourne les champs extraits avec succès."""
        return {name: getattr(self, name) is not None for name in type(self).model_fields}

    def to_dict_display(self) -> dict:
        """Convertit en dictionnaire pour affichage."""
        data = self.model_dump()
        if data.get("date"):
            data["date"] = data["date"].isoformat()
        return data
