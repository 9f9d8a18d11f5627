"""Tests for the record parser.

These tests verify:
- CSV and XLSX parsing into candidate records
- Header normalization (byte-order mark, whitespace, legacy aliases)
- Row drops for missing required fields or unknown vocabulary values
- Row numbering relative to the source file
- Unsupported formats are rejected by extension
"""

from datetime import datetime
from io import BytesIO

import pytest
from openpyxl import Workbook

from conftest import build_csv, sentence_row
from corpus_engine.ingestion import (
    RecordParseError,
    UnsupportedFileFormatError,
    parse_csv,
    parse_file,
    parse_xlsx,
)
from corpus_engine.models.vocabulary import (
    Domain,
    SafetyFlag,
    Script,
    SensitiveCharacteristic,
    SourceType,
    Theme,
)


class TestParseCsv:
    """Test delimited-text parsing."""

    def test_parses_valid_rows_in_order(self):
        """Test that every valid row becomes a candidate with typed fields."""
        data = build_csv([sentence_row("Mata su zauna a gida."), sentence_row("Yara su je makaranta.")])

        candidates = parse_csv(data)

        assert [c.text for c in candidates] == ["Mata su zauna a gida.", "Yara su je makaranta."]
        first = candidates[0]
        assert first.row_number == 1
        assert first.language == "hausa"
        assert first.country == "Nigeria"
        assert first.source_type == SourceType.COMMUNITY
        assert first.domain == Domain.EDUCATION
        assert first.theme == Theme.STEREOTYPES
        assert first.script == Script.LATIN
        assert first.sensitive_characteristic == SensitiveCharacteristic.GENDER
        assert first.pii_removed is True
        assert first.collection_date == datetime(2024, 3, 1)
        assert first.notes is None

        print(f"Parsed {len(candidates)} candidates: {[c.text for c in candidates]}")

    def test_byte_order_mark_and_header_whitespace_are_normalized(self):
        """Test that a BOM and padded header names still match fields."""
        data = (
            "\ufeff text , language ,country, source_type ,domain,theme\n"
            "Hello there,yoruba,Nigeria,media,health,public_interest\n"
        ).encode("utf-8")

        candidates = parse_csv(data)

        assert len(candidates) == 1
        assert candidates[0].text == "Hello there"
        assert candidates[0].language == "yoruba"
        assert candidates[0].theme == Theme.PUBLIC_INTEREST

    def test_rows_missing_required_fields_are_dropped(self):
        """Test that rows without country or with an unknown domain are dropped."""
        data = build_csv([
            sentence_row("kept"),
            sentence_row("no country", country=""),
            sentence_row("bad domain", domain="astrology"),
            sentence_row("bad theme", theme="gossip"),
            sentence_row("also kept"),
        ])

        candidates = parse_csv(data)

        assert [c.text for c in candidates] == ["kept", "also kept"]
        # Dropped rows leave gaps instead of renumbering later rows
        assert [c.row_number for c in candidates] == [1, 5]

        print(f"Kept rows: {[c.row_number for c in candidates]}")

    def test_blank_text_is_kept_for_validation(self):
        """Test that a blank text cell is passed on so it can be reported."""
        data = build_csv([sentence_row("first"), sentence_row("   "), sentence_row("third")])

        candidates = parse_csv(data)

        assert [c.row_number for c in candidates] == [1, 2, 3]
        assert candidates[1].text == ""

    def test_enum_values_are_case_insensitive(self):
        """Test that vocabulary matching ignores case and padding."""
        data = build_csv([sentence_row("x", source_type=" Web_Public ", domain="HEALTH", safety_flag="Sensitive")])

        candidate = parse_csv(data)[0]

        assert candidate.source_type == SourceType.WEB_PUBLIC
        assert candidate.domain == Domain.HEALTH
        assert candidate.safety_flag == SafetyFlag.SENSITIVE

    def test_blank_optional_enums_take_defaults(self):
        """Test defaults for blank optional vocabulary cells."""
        data = build_csv([sentence_row("x", script="", safety_flag="", sensitive_characteristic="")])

        candidate = parse_csv(data)[0]

        assert candidate.script == Script.LATIN
        assert candidate.safety_flag == SafetyFlag.SAFE
        assert candidate.sensitive_characteristic is None

    @pytest.mark.parametrize("overrides", [
        {"script": "klingon"},
        {"safety_flag": "bogus"},
        {"sensitive_characteristic": "zzz"},
    ])
    def test_unknown_optional_enum_drops_row(self, overrides):
        """Test that a non-blank value outside the vocabulary drops the row."""
        data = build_csv([sentence_row("kept"), sentence_row("dropped", **overrides)])

        candidates = parse_csv(data)

        assert [c.text for c in candidates] == ["kept"]
        assert candidates[0].row_number == 1

    @pytest.mark.parametrize("raw,expected", [("yes", True), ("1", True), ("TRUE", True), ("no", False), ("0", False), ("", False)])
    def test_pii_removed_parsing(self, raw, expected):
        """Test boolean parsing of pii_removed."""
        candidate = parse_csv(build_csv([sentence_row("x", pii_removed=raw)]))[0]
        assert candidate.pii_removed is expected

    def test_unparseable_collection_date_becomes_none(self):
        """Test that an invalid date does not drop the row."""
        candidate = parse_csv(build_csv([sentence_row("x", collection_date="not a date")]))[0]
        assert candidate.collection_date is None

    def test_language_hint_fills_blank_language(self):
        """Test that the caller's language applies only to blank cells."""
        data = build_csv([sentence_row("a", language=""), sentence_row("b", language="igbo")])

        candidates = parse_csv(data, language_hint="hausa")

        assert [c.language for c in candidates] == ["hausa", "igbo"]

    def test_blank_language_without_hint_is_dropped(self):
        """Test that language stays required when no hint is given."""
        assert parse_csv(build_csv([sentence_row("a", language="")])) == []

    def test_legacy_sentence_header_is_accepted(self):
        """Test the legacy sentence/original_content layout."""
        data = (
            "sentence,original_content,bias_category,language,country,source_type,domain,theme\n"
            "Translated,Asali,gender,hausa,Niger,interview,governance_civic,misinformation\n"
        ).encode("utf-8")

        candidates = parse_csv(data)

        assert len(candidates) == 1
        assert candidates[0].text == "Translated"
        assert candidates[0].original_content == "Asali"

    def test_empty_file_returns_no_candidates(self):
        """Test that empty input is not an error at the parser level."""
        assert parse_csv(b"") == []
        assert parse_csv(build_csv([])) == []


class TestParseXlsx:
    """Test workbook parsing."""

    @staticmethod
    def _workbook_bytes(rows):
        workbook = Workbook()
        sheet = workbook.active
        sheet.append(["text", "language", "country", "source_type", "domain", "theme"])
        for row in rows:
            sheet.append(row)
        # A second sheet must be ignored
        other = workbook.create_sheet("ignored")
        other.append(["text", "language", "country", "source_type", "domain", "theme"])
        other.append(["from second sheet", "hausa", "Nigeria", "media", "health", "stereotypes"])
        buffer = BytesIO()
        workbook.save(buffer)
        return buffer.getvalue()

    def test_parses_first_sheet_only(self):
        """Test that the first sheet's rows are parsed."""
        data = self._workbook_bytes([
            ["Maza ne shugabanni.", "hausa", "Nigeria", "community", "governance_civic", "stereotypes"],
            ["dropped", "hausa", "Nigeria", "community", "not-a-domain", "stereotypes"],
            ["Mata ma shugabanni ne.", "hausa", "Ghana", "media", "media_and_online", "hate_or_insult"],
        ])

        candidates = parse_xlsx(data)

        assert [c.text for c in candidates] == ["Maza ne shugabanni.", "Mata ma shugabanni ne."]
        assert [c.row_number for c in candidates] == [1, 3]
        assert candidates[1].theme == Theme.HATE_OR_INSULT

        print(f"Parsed workbook rows: {[c.row_number for c in candidates]}")

    def test_invalid_workbook_raises(self):
        """Test that unreadable workbook bytes raise RecordParseError."""
        with pytest.raises(RecordParseError):
            parse_xlsx(b"definitely not a zip archive")


class TestParseFile:
    """Test format dispatch."""

    def test_dispatches_on_extension(self):
        """Test that the extension selects the CSV parser regardless of case."""
        candidates = parse_file(build_csv([sentence_row("x")]), "Upload.CSV")
        assert len(candidates) == 1

    def test_unsupported_extension_names_it(self):
        """Test that an unsupported extension is a hard failure naming it."""
        with pytest.raises(UnsupportedFileFormatError) as exc_info:
            parse_file(b"{}", "sentences.json")

        assert exc_info.value.extension == "json"
        assert "json" in str(exc_info.value)
        assert isinstance(exc_info.value, RecordParseError)
