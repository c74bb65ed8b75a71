"""Fixtures partagées."""

import pytest
from PIL import Image


@pytest.fixture
def sample_image() -> Image.Image:
    """Image de document minimale."""
    return Image.new("RGB", (64, 64), color="white")


@pytest.fixture
def invoice_text() -> str:
    """Texte reconnu d'une facture."""
    return """
    Muster Handels GmbH
    Hauptstraße 12, 10115 Berlin

    Rechnung Nr. 2024-117
    Rechnungsdatum: 15.03.2024

    Beratung                  450,00 EUR
    Gesamt                    535,50 EUR
    """


@pytest.fixture
def prescription_text() -> str:
    """Texte reconnu d'une ordonnance."""
    return """
    Praxis Dr. med. Gesine Kaiser
    Allgemeinmedizin

    Patient: Max Mustermann
    Datum: 02.05.2024

    Ibuprofen 600mg  1-0-1
    """
