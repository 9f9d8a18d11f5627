"""CSV rendering of exported session sentences."""

from typing import Any, Dict, List, Optional

import pandas as pd

from ..models import CorpusRecord

EXPORT_COLUMNS = [
    "sentence_id",
    "language",
    "script",
    "country",
    "region_dialect",
    "source_type",
    "source_ref",
    "collection_date",
    "text",
    "domain",
    "topic",
    "theme",
    "sensitive_characteristic",
    "safety_flag",
    "pii_removed",
    "target_gender",
    "bias_label",
    "explicitness",
    "stereotype_category",
    "sentiment_toward_referent",
    "device",
    "qa_status",
    "annotation_date",
    "collector_email",
    "annotator_email",
    "notes",
]

SENTENCE_FIELDS = (
    "script", "country", "region_dialect", "source_type", "source_ref",
    "collection_date", "domain", "topic", "theme", "sensitive_characteristic",
    "safety_flag",
)

ANNOTATION_FIELDS = (
    "target_gender", "bias_label", "explicitness", "stereotype_category",
    "sentiment_toward_referent", "device", "qa_status", "annotation_date",
)


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value).lower()
    return str(value)


def export_row(record: CorpusRecord, emails: Dict[str, str]) -> Dict[str, str]:
    """Flatten one sentence, its annotation and the people involved."""
    annotation = record.annotation.to_dict() if record.annotation else {}
    annotator_id: Optional[str] = annotation.get("annotator_id")

    row = {"sentence_id": record.id, "language": record.language, "text": record.text}
    for name in SENTENCE_FIELDS:
        row[name] = _text(record.fields.get(name))
    row["pii_removed"] = _text(record.fields.get("pii_removed"))
    for name in ANNOTATION_FIELDS:
        row[name] = _text(annotation.get(name))
    row["collector_email"] = emails.get(record.collector_id or "", "")
    row["annotator_email"] = emails.get(annotator_id or "", "")
    # Annotator notes take precedence over collection notes
    row["notes"] = _text(annotation.get("notes") or record.fields.get("notes"))
    return row


def render_export_csv(records: List[CorpusRecord], emails: Dict[str, str]) -> bytes:
    """Render records as UTF-8 CSV with a fixed header row."""
    df = pd.DataFrame([export_row(record, emails) for record in records], columns=EXPORT_COLUMNS)
    return df.to_csv(index=False).encode("utf-8")
