"""Templates de prompts pour la classification et l'extraction."""

from dataclasses import dataclass

from ..models import DocumentType


@dataclass(frozen=True)
class Prompt:
    """Instruction système et instruction utilisateur d'un appel au modèle texte."""

    system: str
    user: str


CLASSIFICATION_PROMPTS: dict[DocumentType, str] = {
    DocumentType.INVOICE: (
        "Is this document an INVOICE (Rechnung)? Look for billing information, "
        "amounts, invoice numbers. Answer only YES or NO."
    ),
    DocumentType.PRESCRIPTION: (
        "Is this document a DOCTOR'S PRESCRIPTION (Arzt-Rezept)? Look for medication "
        "names, doctor information, patient details. Answer only YES or NO."
    ),
    DocumentType.LAB_REPORT: (
        "Is this document a LABORATORY REPORT (Laborbefund)? Look for test names, "
        "measured values, reference ranges, laboratory details. Answer only YES or NO."
    ),
}


EXTRACTION_SYSTEM_PROMPTS: dict[DocumentType, str] = {
    DocumentType.INVOICE: (
        "You are an invoice data extraction assistant. Extract information "
        "accurately and respond in the exact format requested."
    ),
    DocumentType.PRESCRIPTION: (
        "You are a medical prescription data extraction assistant. Extract "
        "information accurately and respond in the exact format requested."
    ),
    DocumentType.LAB_REPORT: (
        "You are a laboratory report data extraction assistant. Extract "
        "information accurately and respond in the exact format requested."
    ),
}


INVOICE_EXTRACTION_PROMPT = """Extract the following information from this invoice text:
1. Invoice date (Rechnungsdatum): Provide in format YYYY-MM-DD
2. Invoicing party (company name that issued the invoice)

IMPORTANT RULES:
- For date: Look for "Rechnungsdatum", "Invoice Date", or similar. Convert to YYYY-MM-DD format.
- For company: Extract the company NAME that issued the invoice, NOT the customer name.
- If you cannot find a value with certainty, respond with "NOT_FOUND" for that field.

Invoice text:
---
{text}
---

Respond in this exact format (no other text):
DATE: YYYY-MM-DD
COMPANY: Company Name"""


PRESCRIPTION_EXTRACTION_PROMPT = """Extract the following information from this prescription text:
1. Prescription date: Provide in format YYYY-MM-DD
2. Prescribing doctor's name (without title like Dr. or Dr.med.)
3. Patient name

IMPORTANT RULES:
- For date: Look for the prescription/issue date, NOT pharmacy stamp dates. Convert to YYYY-MM-DD format.
- For doctor: Extract ONLY the name (e.g., "Gesine Kaiser"), NOT titles like "Dr." or "Dr.med."
- If multiple doctors are listed, use the one who signed or is marked as prescriber.
- If you cannot find a value with certainty, respond with "NOT_FOUND" for that field.

Prescription text:
---
{text}
---

Respond in this exact format (no other text):
DATE: YYYY-MM-DD
DOCTOR: Doctor Name
PATIENT: Patient Name"""


LAB_REPORT_EXTRACTION_PROMPT = """Extract the following information from this laboratory report text:
1. Report date (sample or issue date): Provide in format YYYY-MM-DD
2. Laboratory name (the laboratory that issued the report)
3. Patient name

IMPORTANT RULES:
- For date: Prefer the report issue date over the sample collection date. Convert to YYYY-MM-DD format.
- For laboratory: Extract the laboratory or practice NAME, NOT the referring doctor.
- If you cannot find a value with certainty, respond with "NOT_FOUND" for that field.

Laboratory report text:
---
{text}
---

Respond in this exact format (no other text):
DATE: YYYY-MM-DD
LAB: Laboratory Name
PATIENT: Patient Name"""


EXTRACTION_USER_PROMPTS: dict[DocumentType, str] = {
    DocumentType.INVOICE: INVOICE_EXTRACTION_PROMPT,
    DocumentType.PRESCRIPTION: PRESCRIPTION_EXTRACTION_PROMPT,
    DocumentType.LAB_REPORT: LAB_REPORT_EXTRACTION_PROMPT,
}


def get_classification_prompt(document_type: DocumentType) -> str:
    """Génère la question oui/non posée au VLM pour un type de document."""
    return CLASSIFICATION_PROMPTS[document_type]


def get_extraction_prompt(document_type: DocumentType, text: str) -> Prompt:
    """Génère le prompt d'extraction pour un type de document."""
    return Prompt(
        system=EXTRACTION_SYSTEM_PROMPTS[document_type],
        user=EXTRACTION_USER_PROMPTS[document_type].format(text=text),
    )
