"""Tests pour le module LLM."""

import asyncio
from datetime import date

import pytest
from PIL import Image

from docscan.errors import ExtractionParseError, InferenceError, ModelLoadFailed
from docscan.llm import (
    DocumentClassifier,
    MockTextLLMClient,
    MockVLMClient,
    SessionState,
    StructuredExtractor,
    get_classification_prompt,
    get_extraction_prompt,
    parse_extraction_response,
    parse_yes_no_response,
)
from docscan.llm.classifier import normalize_response
from docscan.llm.extractors import (
    sanitize_company_name,
    sanitize_doctor_name,
    sanitize_person_name,
    strip_code_fences,
)
from docscan.models import DocumentType, ExtractionResult
from docscan.retry import RetryPolicy


class TestPrompts:
    """Tests pour les templates de prompts."""

    @pytest.mark.parametrize("document_type", list(DocumentType))
    def test_classification_prompt_asks_yes_no(self, document_type):
        """Chaque question de classification demande une réponse YES/NO."""
        assert get_classification_prompt(document_type).endswith("Answer only YES or NO.")

    def test_classification_prompts_are_distinct(self):
        """Un prompt différent par type."""
        prompts = {get_classification_prompt(t) for t in DocumentType}
        assert len(prompts) == len(DocumentType)

    def test_extraction_prompt_embeds_text(self):
        """Le texte du document est inséré entre les marqueurs."""
        prompt = get_extraction_prompt(DocumentType.INVOICE, "ACME GmbH {not a field}")

        assert "---\nACME GmbH {not a field}\n---" in prompt.user
        assert "COMPANY:" in prompt.user
        assert "invoice" in prompt.system

    def test_extraction_prompt_patient_line(self):
        """Seuls les types avec patient demandent la ligne PATIENT."""
        assert "PATIENT:" not in get_extraction_prompt(DocumentType.INVOICE, "x").user
        assert "PATIENT:" in get_extraction_prompt(DocumentType.PRESCRIPTION, "x").user
        assert "LAB:" in get_extraction_prompt(DocumentType.LAB_REPORT, "x").user


class TestYesNoParsing:
    """Tests pour l'interprétation des réponses du VLM."""

    @pytest.mark.parametrize("response", ["YES", "yes", " Yes \n", "YES.", "Ja", "**YES**"])
    def test_affirmative(self, response):
        """Test réponses affirmatives."""
        assert parse_yes_no_response(response) is True

    @pytest.mark.parametrize(
        "response",
        ["NO", "no.", "", None, "maybe", "Yes, this is an invoice", "YESNO", "Nein"],
    )
    def test_negative(self, response):
        """Tout le reste est une réponse négative, sans erreur."""
        assert parse_yes_no_response(response) is False

    def test_normalize(self):
        """Test normalisation."""
        assert normalize_response("  yes!\n") == "YES"
        assert normalize_response(None) == ""


class TestDocumentClassifier:
    """Tests pour DocumentClassifier."""

    @pytest.mark.asyncio
    async def test_first_match_wins(self, sample_image):
        """Deux types affirmatifs : le premier dans l'ordre de priorité l'emporte."""
        vlm = MockVLMClient(answers={DocumentType.INVOICE: "YES", DocumentType.LAB_REPORT: "YES"})
        classifier = DocumentClassifier(
            vlm, priority=[DocumentType.INVOICE, DocumentType.LAB_REPORT]
        )

        result = await classifier.classify(sample_image)

        assert result.document_type is DocumentType.INVOICE
        assert vlm.asked_types == [DocumentType.INVOICE]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("document_type", list(DocumentType))
    async def test_returns_type_answered_yes(self, sample_image, document_type):
        """Le type répondu YES est retourné si aucun type prioritaire n'a matché."""
        vlm = MockVLMClient(answers={document_type: "YES"})

        result = await DocumentClassifier(vlm).classify(sample_image)

        assert result.document_type is document_type
        assert result.is_classified is True
        assert vlm.asked_types[-1] is document_type

    @pytest.mark.asyncio
    async def test_priority_order_respected(self, sample_image):
        """L'ordre de priorité configuré détermine l'ordre des questions."""
        vlm = MockVLMClient(answers={DocumentType.INVOICE: "YES", DocumentType.LAB_REPORT: "YES"})
        classifier = DocumentClassifier(
            vlm, priority=[DocumentType.LAB_REPORT, DocumentType.INVOICE]
        )

        result = await classifier.classify(sample_image)

        assert result.document_type is DocumentType.LAB_REPORT

    @pytest.mark.asyncio
    async def test_unclassified(self, sample_image):
        """Aucun type reconnu : résultat non classifié, sans erreur."""
        vlm = MockVLMClient(answers={DocumentType.INVOICE: "maybe", DocumentType.PRESCRIPTION: ""})

        result = await DocumentClassifier(vlm).classify(sample_image)

        assert result.document_type is None
        assert result.is_classified is False
        assert result.error is None
        assert list(result.responses) == list(DocumentType)
        assert result.responses[DocumentType.INVOICE] == "maybe"

    @pytest.mark.asyncio
    async def test_candidates_override(self, sample_image):
        """Les candidats explicites remplacent l'ordre par défaut."""
        vlm = MockVLMClient(default_answer="YES")

        result = await DocumentClassifier(vlm).classify(
            sample_image, candidates=[DocumentType.PRESCRIPTION]
        )

        assert result.document_type is DocumentType.PRESCRIPTION
        assert vlm.asked_types == [DocumentType.PRESCRIPTION]

    @pytest.mark.asyncio
    async def test_inference_error_propagates(self, sample_image):
        """Un échec du VLM n'est pas une réponse négative."""
        vlm = MockVLMClient(fail_times=1)

        with pytest.raises(InferenceError):
            await DocumentClassifier(vlm).classify(sample_image)

    @pytest.mark.asyncio
    async def test_retry_policy_applied_per_call(self, sample_image):
        """Avec une politique de retry, un échec transitoire est absorbé."""
        vlm = MockVLMClient(answers={DocumentType.INVOICE: "YES"}, fail_times=2)

        result = await DocumentClassifier(vlm).classify(
            sample_image, retry=RetryPolicy(max_retries=2)
        )

        assert result.document_type is DocumentType.INVOICE
        assert len(vlm.calls) == 3

    @pytest.mark.asyncio
    async def test_responses_kept_before_failure(self, sample_image):
        """Les réponses obtenues avant un échec restent disponibles pour l'appelant."""
        vlm = MockVLMClient()
        responses = {}

        async def fail_on_prescription(image, prompt, model_name=None):
            if prompt == get_classification_prompt(DocumentType.PRESCRIPTION):
                raise InferenceError("VLM indisponible")
            return "NO"

        vlm.generate_from_image = fail_on_prescription

        with pytest.raises(InferenceError):
            await DocumentClassifier(vlm).classify(sample_image, responses=responses)

        assert responses == {DocumentType.INVOICE: "NO"}

    @pytest.mark.parametrize(
        "priority",
        [[], [DocumentType.INVOICE, DocumentType.LAB_REPORT, DocumentType.INVOICE]],
    )
    def test_invalid_priority_rejected(self, priority):
        """Un ordre de priorité vide ou avec doublons est refusé."""
        with pytest.raises(ValueError):
            DocumentClassifier(MockVLMClient(), priority=priority)

    @pytest.mark.asyncio
    async def test_model_name_forwarded(self, sample_image):
        """Le backend choisi est transmis au fournisseur."""
        vlm = MockVLMClient(default_answer="YES")

        await DocumentClassifier(vlm, model_name="gemini-pro-vision").classify(sample_image)

        assert vlm.calls[0][2] == "gemini-pro-vision"


class TestMockVLMClient:
    """Tests pour MockVLMClient."""

    @pytest.mark.asyncio
    async def test_answer_by_prompt(self, sample_image):
        """Une réponse peut être scriptée par prompt exact."""
        prompt = "Is this a receipt? Answer only YES or NO."
        vlm = MockVLMClient(answers={prompt: "YES"})

        assert await vlm.generate_from_image(sample_image, prompt) == "YES"
        assert vlm.asked_types == [None]

    @pytest.mark.asyncio
    async def test_rejects_empty_prompt(self, sample_image):
        """Test prompt vide."""
        with pytest.raises(ValueError):
            await MockVLMClient().generate_from_image(sample_image, "  ")

    @pytest.mark.asyncio
    async def test_rejects_undecoded_image(self):
        """Une image non décodée est refusée."""
        with pytest.raises(TypeError):
            await MockVLMClient().generate_from_image(b"\x89PNG", "prompt")

    @pytest.mark.asyncio
    async def test_lazy_load(self, sample_image):
        """Le premier appel charge le VLM simulé."""
        vlm = MockVLMClient()
        assert vlm.is_ready() is False

        await vlm.generate_from_image(sample_image, "prompt")

        assert vlm.is_ready() is True
        await vlm.unload()
        assert vlm.is_ready() is False

    @pytest.mark.asyncio
    async def test_failed_load_needs_explicit_preload(self, sample_image):
        """Après un chargement en échec, seul preload relance le VLM."""
        vlm = MockVLMClient(fail_loads=1)

        with pytest.raises(ModelLoadFailed):
            await vlm.generate_from_image(sample_image, "prompt")
        with pytest.raises(ModelLoadFailed):
            await vlm.generate_from_image(sample_image, "prompt")
        assert vlm.lifecycle.state is SessionState.FAILED

        await vlm.preload()

        assert await vlm.generate_from_image(sample_image, "prompt") == "NO"
        assert vlm.lifecycle.load_count == 2
        assert len(vlm.calls) == 1


class TestParseExtractionResponse:
    """Tests pour le parsing de la réponse d'extraction."""

    def test_invoice(self):
        """Test réponse facture complète."""
        result = parse_extraction_response(
            "DATE: 2024-03-15\nCOMPANY: Muster Handels GmbH", DocumentType.INVOICE
        )

        assert result.date == date(2024, 3, 15)
        assert result.secondary_field == "Muster Handels GmbH"
        assert result.patient_name is None

    def test_invoice_ignores_patient_line(self):
        """Une facture ne porte jamais de patient."""
        result = parse_extraction_response(
            "DATE: 2024-03-15\nCOMPANY: ACME\nPATIENT: Max Mustermann", DocumentType.INVOICE
        )
        assert result.patient_name is None

    def test_prescription(self):
        """Test réponse ordonnance avec titre à retirer."""
        result = parse_extraction_response(
            "DATE: 02.05.2024\nDOCTOR: Dr. med. Gesine Kaiser\nPATIENT: Max Mustermann",
            DocumentType.PRESCRIPTION,
        )

        assert result.date == date(2024, 5, 2)
        assert result.secondary_field == "Gesine Kaiser"
        assert result.patient_name == "Max Mustermann"

    def test_patient_and_date_without_secondary(self):
        """Champ secondaire absent, les autres sont conservés."""
        result = parse_extraction_response(
            "DATE: 2024-01-05\nLAB: NOT_FOUND\nPATIENT: Jane Doe", DocumentType.LAB_REPORT
        )

        assert result == ExtractionResult(
            date=date(2024, 1, 5), secondary_field=None, patient_name="Jane Doe"
        )

    def test_unparsable_date_only_fails_that_field(self):
        """Une date non parsable laisse la date vide sans échouer l'appel."""
        result = parse_extraction_response(
            "DATE: sometime in spring\nCOMPANY: ACME", DocumentType.INVOICE
        )

        assert result.date is None
        assert result.secondary_field == "ACME"

    def test_invalid_calendar_date(self):
        """Une date impossible est traitée comme non parsable."""
        result = parse_extraction_response("DATE: 2024-02-30", DocumentType.INVOICE)
        assert result.date is None

    def test_code_fences_and_bullets(self):
        """Les blocs de code et puces sont tolérés."""
        response = "```\n- DATE: 2024-06-01\n- COMPANY: ACME\n```"
        result = parse_extraction_response(response, DocumentType.INVOICE)

        assert result.date == date(2024, 6, 1)
        assert result.secondary_field == "ACME"

    def test_case_insensitive_keys(self):
        """Les clés sont reconnues sans tenir compte de la casse."""
        result = parse_extraction_response("date: 2024-06-01\ncompany: ACME", DocumentType.INVOICE)
        assert result.secondary_field == "ACME"

    def test_conflicting_values_left_absent(self):
        """Deux valeurs différentes pour un champ : champ laissé vide."""
        result = parse_extraction_response(
            "DATE: 2024-06-01\nCOMPANY: ACME\nCOMPANY: Globex", DocumentType.INVOICE
        )

        assert result.secondary_field is None
        assert result.date == date(2024, 6, 1)

    def test_repeated_identical_value(self):
        """Une valeur répétée à l'identique reste non ambiguë."""
        result = parse_extraction_response(
            "COMPANY: ACME\nCOMPANY: ACME", DocumentType.INVOICE
        )
        assert result.secondary_field == "ACME"

    @pytest.mark.parametrize("missing", ["NOT_FOUND", "unknown", "N/A", ""])
    def test_missing_markers(self, missing):
        """Les marqueurs d'absence laissent le champ vide."""
        result = parse_extraction_response(
            f"DATE: {missing}\nCOMPANY: {missing}", DocumentType.INVOICE
        )
        assert result.is_empty()

    @pytest.mark.parametrize("response", ["", "I cannot read this document.", "TOTAL: 12 EUR"])
    def test_no_recognised_line_raises(self, response):
        """Aucune ligne attendue : ExtractionParseError."""
        with pytest.raises(ExtractionParseError) as exc_info:
            parse_extraction_response(response, DocumentType.INVOICE)

        assert exc_info.value.raw_output == response


class TestSanitizers:
    """Tests pour le nettoyage des champs."""

    def test_strip_code_fences(self):
        """Test retrait des blocs de code."""
        assert strip_code_fences("```text\nDATE: x\n```") == "DATE: x"
        assert strip_code_fences("DATE: x") == "DATE: x"

    def test_company_name(self):
        """Caractères interdits retirés et longueur bornée."""
        assert sanitize_company_name('ACME: "Best" <Tools>') == "ACME Best Tools"
        assert len(sanitize_company_name("A" * 80)) == 50

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("Dr. Gesine Kaiser", "Gesine Kaiser"),
            ("Dr. med. Gesine Kaiser", "Gesine Kaiser"),
            ("Dr.med. Gesine Kaiser", "Gesine Kaiser"),
            ("Prof. Dr. Hans Weber", "Hans Weber"),
            ("Drews Anna", "Drews Anna"),
            ("Medina Lopez", "Medina Lopez"),
        ],
    )
    def test_doctor_name(self, raw, expected):
        """Les titres sont retirés sans tronquer les noms qui leur ressemblent."""
        assert sanitize_doctor_name(raw) == expected

    def test_person_name(self):
        """Test nettoyage d'un nom de patient."""
        assert sanitize_person_name("  Max   Mustermann ") == "Max Mustermann"
        assert len(sanitize_person_name("B" * 60)) == 40


class TestStructuredExtractor:
    """Tests pour StructuredExtractor."""

    @pytest.mark.asyncio
    async def test_jane_doe_scenario(self):
        """Réponse du modèle avec date et patient mais sans champ secondaire."""
        llm = MockTextLLMClient(
            responses={
                DocumentType.PRESCRIPTION: "DATE: 2024-01-05\nDOCTOR: NOT_FOUND\nPATIENT: Jane Doe"
            }
        )
        extractor = StructuredExtractor(llm)

        result = await extractor.extract(
            DocumentType.PRESCRIPTION, "Patient: Jane Doe, Date: 2024-01-05"
        )

        assert result == ExtractionResult(
            date=date(2024, 1, 5), secondary_field=None, patient_name="Jane Doe"
        )

    @pytest.mark.asyncio
    async def test_uses_type_specific_prompt(self):
        """Le prompt système et la borne de tokens sont transmis."""
        llm = MockTextLLMClient()
        extractor = StructuredExtractor(llm, max_tokens=64)

        await extractor.extract(DocumentType.LAB_REPORT, "Labor Dr. Klein")

        system, user, max_tokens = llm.calls[0]
        assert "laboratory" in system
        assert "Labor Dr. Klein" in user
        assert max_tokens == 64

    @pytest.mark.asyncio
    async def test_empty_text(self):
        """Texte vide : résultat vide sans appel au modèle."""
        llm = MockTextLLMClient()

        result = await StructuredExtractor(llm).extract(DocumentType.INVOICE, "   ")

        assert result.is_empty()
        assert llm.calls == []

    @pytest.mark.asyncio
    async def test_rejects_unknown_type(self):
        """Un type non déclaré est refusé."""
        with pytest.raises(TypeError):
            await StructuredExtractor(MockTextLLMClient()).extract("invoice", "text")

    @pytest.mark.asyncio
    async def test_no_date_keeps_other_fields(self):
        """Pas de date exploitable : la date reste vide, les autres champs sont remplis."""
        llm = MockTextLLMClient(
            responses={DocumentType.INVOICE: "DATE: NOT_FOUND\nCOMPANY: ACME GmbH"}
        )

        result = await StructuredExtractor(llm).extract(
            DocumentType.INVOICE, "ACME GmbH, facture sans date"
        )

        assert result.date is None
        assert result.secondary_field == "ACME GmbH"

    @pytest.mark.asyncio
    async def test_date_fallback_disabled_by_default(self):
        """Sans fallback, une date présente dans le texte n'est pas inventée."""
        llm = MockTextLLMClient(
            responses={DocumentType.INVOICE: "DATE: NOT_FOUND\nCOMPANY: ACME"}
        )

        result = await StructuredExtractor(llm).extract(DocumentType.INVOICE, "ACME 15.03.2024")

        assert result.date is None

    @pytest.mark.asyncio
    async def test_date_fallback_enabled(self):
        """Avec fallback, la date est cherchée dans le texte reconnu."""
        llm = MockTextLLMClient(
            responses={DocumentType.INVOICE: "DATE: NOT_FOUND\nCOMPANY: ACME"}
        )
        extractor = StructuredExtractor(llm, date_fallback=True)

        result = await extractor.extract(DocumentType.INVOICE, "ACME 15.03.2024")

        assert result.date == date(2024, 3, 15)
        assert result.secondary_field == "ACME"

    @pytest.mark.asyncio
    async def test_parse_error_propagates(self):
        """Une réponse sans structure lève ExtractionParseError."""
        llm = MockTextLLMClient(responses={DocumentType.INVOICE: "Sorry, I can't help."})

        with pytest.raises(ExtractionParseError):
            await StructuredExtractor(llm).extract(DocumentType.INVOICE, "text")


class TestMockTextLLMClient:
    """Tests pour MockTextLLMClient."""

    @pytest.mark.asyncio
    async def test_simulated_invoice(self, invoice_text):
        """Test extraction simulée d'une facture."""
        result = await MockTextLLMClient().extract_data(DocumentType.INVOICE, invoice_text)

        assert result.date == date(2024, 3, 15)
        assert result.secondary_field == "Muster Handels GmbH"
        assert result.patient_name is None

    @pytest.mark.asyncio
    async def test_simulated_prescription(self, prescription_text):
        """Test extraction simulée d'une ordonnance."""
        result = await MockTextLLMClient().extract_data(
            DocumentType.PRESCRIPTION, prescription_text
        )

        assert result.date == date(2024, 5, 2)
        assert result.secondary_field == "Gesine Kaiser"
        assert result.patient_name == "Max Mustermann"

    @pytest.mark.asyncio
    async def test_scripted_result(self):
        """Un résultat scripté court-circuite la génération."""
        expected = ExtractionResult(secondary_field="Labor Berlin")
        llm = MockTextLLMClient(results={DocumentType.LAB_REPORT: expected})

        assert await llm.extract_data(DocumentType.LAB_REPORT, "x") == expected
        assert llm.calls == []
        assert llm.extract_calls == [(DocumentType.LAB_REPORT, "x")]

    @pytest.mark.asyncio
    async def test_loads_on_demand(self):
        """La première génération charge le modèle."""
        llm = MockTextLLMClient()
        assert llm.is_ready() is False

        await llm.generate("system", "user", 16)

        assert llm.is_ready() is True
        assert llm.lifecycle.state is SessionState.READY

    @pytest.mark.asyncio
    async def test_preload_progress(self):
        """Le chargement simulé rapporte ses étapes."""
        llm = MockTextLLMClient(load_steps=(0.1, 0.7, 1.0))
        progress = []

        await llm.preload(progress.append)

        assert progress == [0.1, 0.7, 1.0]

    @pytest.mark.asyncio
    async def test_failed_load(self):
        """Un chargement en échec rend le modèle indisponible."""
        llm = MockTextLLMClient(fail_loads=1)

        with pytest.raises(ModelLoadFailed):
            await llm.preload()
        with pytest.raises(ModelLoadFailed):
            await llm.generate("system", "user", 16)

        assert llm.is_ready() is False

    @pytest.mark.asyncio
    async def test_unload(self):
        """Test déchargement."""
        llm = MockTextLLMClient()
        await llm.preload()

        await llm.unload()

        assert llm.is_ready() is False

    @pytest.mark.asyncio
    async def test_simulated_failures(self):
        """Les N premiers appels échouent avec l'erreur configurée."""
        llm = MockTextLLMClient(fail_times=1)

        with pytest.raises(InferenceError):
            await llm.generate("system", "user", 16)
        assert await llm.generate("system", "DATE: x", 16)

    @pytest.mark.asyncio
    async def test_concurrent_generations_share_one_load(self):
        """Des générations concurrentes ne déclenchent qu'un chargement."""
        llm = MockTextLLMClient(load_delay=0.01)

        await asyncio.gather(*(llm.generate("system", "user", 16) for _ in range(4)))

        assert llm.lifecycle.load_count == 1
        assert len(llm.calls) == 4


def test_sample_image_fixture(sample_image):
    """La fixture fournit une image décodée."""
    assert isinstance(sample_image, Image.Image)
