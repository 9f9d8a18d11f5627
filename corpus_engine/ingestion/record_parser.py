"""Tabular upload parsing into candidate records.

Delimited text is read with pandas, workbooks with pandas + openpyxl (first
sheet only). Every cell is read as a string so vocabulary matching sees the
raw value. Rows that cannot become a candidate are dropped, never raised.
"""

import logging
from datetime import datetime
from io import BytesIO
from pathlib import PurePath
from typing import Any, Dict, List, Optional

import pandas as pd

from corpus_engine.models import CandidateRecord
from corpus_engine.models.vocabulary import (
    Domain,
    SafetyFlag,
    Script,
    SensitiveCharacteristic,
    SourceType,
    Theme,
    lookup,
)

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = ("csv", "xlsx", "xls")

# Headers of the legacy sentence + category layout
LEGACY_HEADER_ALIASES = {"sentence": "text"}

REQUIRED_FIELDS = ("language", "country", "source_type", "domain", "theme")

TRUE_VALUES = {"true", "1", "yes"}


class RecordParseError(Exception):
    """Raised when an uploaded file cannot be read at all."""

    pass


class UnsupportedFileFormatError(RecordParseError):
    """Raised for a file extension the parser does not handle."""

    def __init__(self, extension: str):
        self.extension = extension
        super().__init__(f"Unsupported file format: {extension or '(none)'}")


def _normalize_header(header: Any) -> str:
    return str(header).replace("\ufeff", "").strip().lower()


def _prepare_frame(df: pd.DataFrame) -> pd.DataFrame:
    df = df.fillna("")
    df.columns = [_normalize_header(column) for column in df.columns]
    for legacy, canonical in LEGACY_HEADER_ALIASES.items():
        if legacy in df.columns and canonical not in df.columns:
            df = df.rename(columns={legacy: canonical})
    return df


def _cell(row: Dict[str, Any], key: str) -> Optional[str]:
    """Trimmed cell value, or None when absent or blank."""
    value = row.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _parse_bool(value: Optional[str]) -> bool:
    return bool(value) and value.lower() in TRUE_VALUES


def _parse_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = pd.to_datetime(value, errors="coerce")
    if pd.isna(parsed):
        return None
    return parsed.to_pydatetime()


def map_row(row: Dict[str, Any], row_number: int, language_hint: Optional[str] = None) -> Optional[CandidateRecord]:
    """Map one raw row to a candidate, or None when the row must be dropped.

    A blank ``text`` cell is kept (as an empty string) so it can be reported
    as a row-level validation error downstream.
    """
    values = {key: _cell(row, key) for key in REQUIRED_FIELDS}
    if not values["language"] and language_hint:
        values["language"] = language_hint.strip() or None

    missing = [key for key, value in values.items() if not value]
    if missing:
        logger.debug(f"Dropping row {row_number}: missing {', '.join(missing)}")
        return None

    source_type = lookup(SourceType, values["source_type"])
    domain = lookup(Domain, values["domain"])
    theme = lookup(Theme, values["theme"])
    if source_type is None or domain is None or theme is None:
        logger.debug(f"Dropping row {row_number}: unknown source_type, domain or theme")
        return None

    optional = {
        "script": (Script, _cell(row, "script")),
        "sensitive_characteristic": (SensitiveCharacteristic, _cell(row, "sensitive_characteristic")),
        "safety_flag": (SafetyFlag, _cell(row, "safety_flag")),
    }
    # Blank means the default; a value outside the vocabulary drops the row
    resolved = {key: lookup(vocabulary, raw) for key, (vocabulary, raw) in optional.items()}
    unknown = [key for key, (_, raw) in optional.items() if raw and resolved[key] is None]
    if unknown:
        logger.debug(f"Dropping row {row_number}: unknown {', '.join(unknown)}")
        return None

    return CandidateRecord(
        row_number=row_number,
        text=_cell(row, "text") or "",
        language=values["language"],
        country=values["country"],
        source_type=source_type,
        domain=domain,
        theme=theme,
        script=resolved["script"] or Script.LATIN,
        original_content=_cell(row, "original_content"),
        region_dialect=_cell(row, "region_dialect"),
        source_ref=_cell(row, "source_ref"),
        collection_date=_parse_date(_cell(row, "collection_date")),
        topic=_cell(row, "topic"),
        sensitive_characteristic=resolved["sensitive_characteristic"],
        safety_flag=resolved["safety_flag"] or SafetyFlag.SAFE,
        pii_removed=_parse_bool(_cell(row, "pii_removed")),
        notes=_cell(row, "notes"),
    )


def _map_frame(df: pd.DataFrame, language_hint: Optional[str]) -> List[CandidateRecord]:
    df = _prepare_frame(df)
    rows = df.to_dict(orient="records")

    candidates = []
    for index, row in enumerate(rows, start=1):
        candidate = map_row(row, index, language_hint)
        if candidate is not None:
            candidates.append(candidate)

    dropped = len(rows) - len(candidates)
    if dropped:
        logger.warning(f"Dropped {dropped} of {len(rows)} rows with missing or unknown values")
    return candidates


def parse_csv(data: bytes, language_hint: Optional[str] = None) -> List[CandidateRecord]:
    """Parse delimited text. A byte-order mark on the first header is ignored.

    Raises:
        RecordParseError: If the bytes are not readable as CSV.
    """
    try:
        df = pd.read_csv(
            BytesIO(data),
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=False,
            encoding="utf-8-sig",
        )
    except pd.errors.EmptyDataError:
        return []
    except (pd.errors.ParserError, UnicodeDecodeError) as e:
        raise RecordParseError(f"Failed to parse CSV file: {e}") from e
    return _map_frame(df, language_hint)


def parse_xlsx(data: bytes, language_hint: Optional[str] = None) -> List[CandidateRecord]:
    """Parse the first sheet of a workbook.

    Raises:
        RecordParseError: If the bytes are not a readable workbook.
    """
    try:
        df = pd.read_excel(
            BytesIO(data),
            sheet_name=0,
            dtype=str,
            keep_default_na=False,
            engine="openpyxl",
        )
    except Exception as e:
        raise RecordParseError(f"Failed to parse XLSX file: {e}") from e
    return _map_frame(df, language_hint)


def file_extension(filename: str) -> str:
    return PurePath(filename).suffix.lower().lstrip(".")


def parse_file(data: bytes, filename: str, language_hint: Optional[str] = None) -> List[CandidateRecord]:
    """Parse an uploaded file, choosing the format from its extension.

    Args:
        data: Raw file bytes.
        filename: Declared filename; only the extension is used.
        language_hint: Language applied to rows with a blank language cell.

    Returns:
        Candidates in source-row order; empty when no row is usable.

    Raises:
        UnsupportedFileFormatError: If the extension is not csv, xlsx or xls.
        RecordParseError: If the file cannot be read.
    """
    extension = file_extension(filename)
    if extension not in SUPPORTED_EXTENSIONS:
        raise UnsupportedFileFormatError(extension)

    if extension == "csv":
        candidates = parse_csv(data, language_hint)
    else:
        candidates = parse_xlsx(data, language_hint)

    logger.info(f"Parsed {len(candidates)} candidate rows from {filename}")
    return candidates
