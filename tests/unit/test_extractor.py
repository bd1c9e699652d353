"""
Unit tests for structured response extraction.
"""

import json
import logging

import pytest

from vocational_backend.errors import MalformedCompletionError
from vocational_backend.extractor import (
    coerce_percentage,
    extract_response,
    find_numbered_block,
    parse_free_text,
    parse_strict,
)
from vocational_backend.prompt_builder import OutputContract

FENCED = (
    '```json\n{"chatReply":"hi","suggestedCareers":[{"name":"Psicología",'
    '"percentageMatch":87,"reason":"x"}]}\n```'
)


class TestStrictGrammar:
    """Fenced-or-bare JSON parsing with no lenient fallback."""

    def test_fenced_block_is_parsed(self):
        """The fenced example yields the reply and one 87% suggestion."""
        # Act
        result = parse_strict(FENCED)

        # Assert
        assert result.chat_reply == "hi"
        assert len(result.suggested_careers) == 1
        suggestion = result.suggested_careers[0]
        assert suggestion.name == "Psicología"
        assert suggestion.percentageMatch == 87
        assert suggestion.reason == "x"

    def test_bare_json_matches_fenced_result(self):
        """Removing the fence does not change the extracted payload."""
        bare = FENCED.replace("```json\n", "").replace("\n```", "")

        assert parse_strict(bare) == parse_strict(FENCED)

    def test_fence_with_surrounding_prose(self):
        raw = "Aquí tienes tu respuesta:\n" + FENCED + "\n¡Suerte!"

        result = parse_strict(raw)

        assert result.chat_reply == "hi"

    def test_truncated_json_raises_with_raw_text(self):
        """Invalid JSON is a hard error that keeps the raw completion."""
        raw = '```json\n{"chatReply": "hi", "suggestedCareers": [\n```'

        with pytest.raises(MalformedCompletionError) as exc_info:
            parse_strict(raw)

        assert exc_info.value.raw_text == raw

    def test_prose_without_json_raises(self):
        with pytest.raises(MalformedCompletionError):
            parse_strict("Claro, te recomiendo Psicología.")

    def test_missing_chat_reply_raises(self):
        with pytest.raises(MalformedCompletionError):
            parse_strict('{"suggestedCareers": []}')

    def test_non_object_payload_raises(self):
        with pytest.raises(MalformedCompletionError):
            parse_strict("[1, 2, 3]")

    def test_non_list_suggestions_degrade_to_empty(self):
        result = parse_strict('{"chatReply": "hola", "suggestedCareers": "Psicología"}')

        assert result.chat_reply == "hola"
        assert result.suggested_careers == []

    def test_non_object_items_are_skipped(self):
        raw = json.dumps(
            {
                "chatReply": "hola",
                "suggestedCareers": ["Psicología", {"name": "Mecatrónica", "percentageMatch": 55, "reason": "r"}],
            }
        )

        result = parse_strict(raw)

        assert [s.name for s in result.suggested_careers] == ["Mecatrónica"]


class TestPercentageCoercion:
    """Percentages are clamped to 0 instead of failing the turn."""

    @pytest.mark.parametrize(
        "value, expected",
        [
            (87, 87),
            (0, 0),
            (100, 100),
            (150, 0),
            (-5, 0),
            ("72", 72),
            ("64%", 64),
            (86.6, 87),
            ("alto", 0),
            (None, 0),
            (True, 0),
            (float("nan"), 0),
            ([80], 0),
        ],
    )
    def test_coerce_percentage(self, value, expected):
        assert coerce_percentage(value) == expected

    def test_out_of_range_value_is_enforced_in_extraction(self):
        """percentageMatch 150 comes back as 0 while the suggestion is kept."""
        raw = json.dumps(
            {
                "chatReply": "hola",
                "suggestedCareers": [{"name": "Psicología", "percentageMatch": 150, "reason": "r"}],
            }
        )

        result = parse_strict(raw)

        assert result.suggested_careers[0].name == "Psicología"
        assert result.suggested_careers[0].percentageMatch == 0

    @pytest.mark.parametrize("raw_percentage, warned", [("0%", False), (" 0 ", False), (0.2, False), (150, True), ("alto", True)])
    def test_range_warning_only_for_unusable_values(self, caplog, raw_percentage, warned):
        raw = json.dumps(
            {"chatReply": "hola", "suggestedCareers": [{"name": "Psicología", "percentageMatch": raw_percentage}]}
        )

        with caplog.at_level(logging.WARNING, logger="vocational.extractor"):
            result = parse_strict(raw)

        assert result.suggested_careers[0].percentageMatch == 0
        assert any("out of range" in record.getMessage() for record in caplog.records) is warned


class TestCatalogSoftValidation:
    """Names outside the catalog are logged and kept."""

    def test_unknown_name_is_kept_with_warning(self, catalog, caplog):
        raw = json.dumps(
            {
                "chatReply": "hola",
                "suggestedCareers": [
                    {"name": "Astronomía", "percentageMatch": 80, "reason": "r"},
                    {"name": "Psicología", "percentageMatch": 70, "reason": "r"},
                    {"name": "Mecatrónica", "percentageMatch": 60, "reason": "r"},
                ],
            }
        )

        with caplog.at_level(logging.WARNING, logger="vocational.extractor"):
            result = parse_strict(raw, catalog.names)

        assert [s.name for s in result.suggested_careers] == ["Astronomía", "Psicología", "Mecatrónica"]
        assert any("Astronomía" in record.getMessage() for record in caplog.records)


class TestFreeTextGrammar:
    """Prose followed by a numbered list."""

    def test_reply_and_labels_are_split(self):
        """The documented example yields the reply and three labels."""
        raw = "Great, let's explore!\n1. Psicología\n2. Diseño Gráfico Digital\n3. Mecatrónica"

        result = parse_free_text(raw)

        assert result.chat_reply == "Great, let's explore!"
        assert [s.name for s in result.suggested_careers] == [
            "Psicología",
            "Diseño Gráfico Digital",
            "Mecatrónica",
        ]

    def test_no_list_means_reply_only(self):
        raw = "  Cuéntame más sobre lo que te gusta hacer.  "

        result = parse_free_text(raw)

        assert result.chat_reply == "Cuéntame más sobre lo que te gusta hacer."
        assert result.suggested_careers == []

    def test_only_first_block_is_used(self):
        raw = "Opciones:\n1. Psicología\n2. Mecatrónica\n\nOtras ideas:\n1. Ingeniería Civil\n2. Contaduría Pública"

        result = parse_free_text(raw)

        assert result.chat_reply == "Opciones:"
        assert [s.name for s in result.suggested_careers] == ["Psicología", "Mecatrónica"]

    def test_single_numbered_line_is_not_a_list(self):
        raw = "2024. fue un gran año.\nSigamos hablando."

        result = parse_free_text(raw)

        assert result.suggested_careers == []
        assert result.chat_reply == raw

    def test_empty_labels_are_discarded(self):
        lines = ["Mira esto:", "1. Psicología", "2.  ", "3. Mecatrónica"]

        result = parse_free_text("\n".join(lines))

        assert find_numbered_block(lines) == (1, 4)
        assert result.chat_reply == "Mira esto:"
        assert [s.name for s in result.suggested_careers] == ["Psicología", "Mecatrónica"]

    def test_free_text_never_raises_on_json(self):
        result = parse_free_text(FENCED)

        assert result.chat_reply == FENCED.strip()


class TestDispatch:
    def test_contract_selects_grammar(self):
        strict = extract_response(FENCED, OutputContract.STRICT)
        free_text = extract_response("Hola\n1. Psicología\n2. Mecatrónica", OutputContract.FREE_TEXT)

        assert strict.chat_reply == "hi"
        assert [s.name for s in free_text.suggested_careers] == ["Psicología", "Mecatrónica"]
