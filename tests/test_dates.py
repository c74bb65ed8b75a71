"""Tests pour le parsing des dates et les modèles de données."""

from datetime import date

import pytest
from pydantic import ValidationError

from docscan.dates import extract_date_from_text, format_date, parse_date
from docscan.models import DocumentType, ExtractionResult


class TestParseDate:
    """Tests pour parse_date."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("2024-01-05", date(2024, 1, 5)),
            ("05.01.2024", date(2024, 1, 5)),
            ("5.1.2024", date(2024, 1, 5)),
            ("05/01/2024", date(2024, 1, 5)),
            ("12/31/2024", date(2024, 12, 31)),
            ("  2024-01-05 ", date(2024, 1, 5)),
        ],
    )
    def test_accepted_formats(self, value, expected):
        """Les formats acceptés sont essayés dans l'ordre."""
        assert parse_date(value) == expected

    @pytest.mark.parametrize("value", [None, "", "yesterday", "2024-13-01", "31.02.2024"])
    def test_unparsable(self, value):
        """Une valeur non parsable donne None."""
        assert parse_date(value) is None


class TestExtractDateFromText:
    """Tests pour la recherche de date dans un texte libre."""

    def test_first_valid_date(self):
        """La première date valide est retenue."""
        text = "Rechnung 99.99.2024, ausgestellt am 15.03.2024, fällig 15.04.2024"
        assert extract_date_from_text(text) == date(2024, 3, 15)

    def test_no_date(self):
        """Test texte sans date."""
        assert extract_date_from_text("Rechnung Nr. 2024-117") is None
        assert extract_date_from_text("") is None

    def test_format_date(self):
        """Test formatage."""
        assert format_date(date(2024, 1, 5)) == "2024-01-05"
        assert format_date(date(2024, 1, 5), "%d.%m.%Y") == "05.01.2024"


class TestDocumentType:
    """Tests pour DocumentType."""

    def test_values(self):
        """Test valeurs et ordre par défaut."""
        assert [t.value for t in DocumentType] == ["invoice", "prescription", "lab_report"]

    def test_secondary_field_labels(self):
        """Chaque type a son libellé de champ secondaire."""
        assert DocumentType.INVOICE.secondary_field_label == "COMPANY"
        assert DocumentType.PRESCRIPTION.secondary_field_label == "DOCTOR"
        assert DocumentType.LAB_REPORT.secondary_field_label == "LAB"

    def test_extracts_patient(self):
        """Les factures ne portent pas de patient."""
        assert DocumentType.INVOICE.extracts_patient is False
        assert DocumentType.PRESCRIPTION.extracts_patient is True
        assert DocumentType.LAB_REPORT.extracts_patient is True


class TestExtractionResult:
    """Tests pour ExtractionResult."""

    def test_empty(self):
        """Tous les champs sont optionnels."""
        result = ExtractionResult()
        assert result.is_empty() is True
        assert result.get_extracted_fields() == {
            "date": False,
            "secondary_field": False,
            "patient_name": False,
        }

    def test_partial(self):
        """Test résultat partiel."""
        result = ExtractionResult(date=date(2024, 1, 5), patient_name="Jane Doe")

        assert result.is_empty() is False
        assert result.get_extracted_fields()["secondary_field"] is False
        assert result.to_dict_display() == {
            "date": "2024-01-05",
            "secondary_field": None,
            "patient_name": "Jane Doe",
        }

    def test_frozen(self):
        """Le résultat est immuable."""
        result = ExtractionResult()
        with pytest.raises(ValidationError):
            result.patient_name = "Jane Doe"
