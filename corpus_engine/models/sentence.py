"""Sentence models for the ingestion pipeline and the corpus."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from corpus_engine.models.vocabulary import (
    BiasLabel,
    Device,
    Domain,
    Explicitness,
    QAStatus,
    SafetyFlag,
    Script,
    SensitiveCharacteristic,
    SentimentTowardReferent,
    SourceType,
    StereotypeCategory,
    TargetGender,
    Theme,
    lookup,
)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _enum_value(member) -> Optional[str]:
    return member.value if member is not None else None


@dataclass(frozen=True)
class CandidateRecord:
    """A parsed row from an uploaded file, not yet validated or deduplicated.

    ``row_number`` is the 1-based position of the row among the data rows of
    the source file, header excluded.
    """

    row_number: int
    text: str
    language: str
    country: str
    source_type: SourceType
    domain: Domain
    theme: Theme
    script: Script = Script.LATIN
    original_content: Optional[str] = None
    region_dialect: Optional[str] = None
    source_ref: Optional[str] = None
    collection_date: Optional[datetime] = None
    topic: Optional[str] = None
    sensitive_characteristic: Optional[SensitiveCharacteristic] = None
    safety_flag: SafetyFlag = SafetyFlag.SAFE
    pii_removed: bool = False
    notes: Optional[str] = None

    @property
    def duplicate_key(self) -> str:
        """Corpus equivalence key: the trimmed primary text alone."""
        return self.text.strip()

    def to_document(self, document_id: str, collector_id: Optional[str]) -> Dict[str, Any]:
        """Build the corpus document inserted for this candidate.

        The batch identifier is always the one supplied here.
        """
        return {
            "document_id": document_id,
            "collector_id": collector_id,
            "text": self.duplicate_key,
            "original_content": self.original_content,
            "language": self.language,
            "script": self.script.value,
            "country": self.country,
            "region_dialect": self.region_dialect,
            "source_type": self.source_type.value,
            "source_ref": self.source_ref,
            "collection_date": _iso(self.collection_date),
            "domain": self.domain.value,
            "topic": self.topic,
            "theme": self.theme.value,
            "sensitive_characteristic": _enum_value(self.sensitive_characteristic),
            "safety_flag": self.safety_flag.value,
            "pii_removed": self.pii_removed,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class Annotation:
    """Bias labels attached to a corpus sentence by an annotator."""

    target_gender: TargetGender
    bias_label: BiasLabel
    explicitness: Explicitness
    annotator_id: str
    qa_status: QAStatus = QAStatus.NEEDS_REVIEW
    stereotype_category: Optional[StereotypeCategory] = None
    sentiment_toward_referent: Optional[SentimentTowardReferent] = None
    device: Optional[Device] = None
    annotation_date: Optional[datetime] = None
    notes: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target_gender": self.target_gender.value,
            "bias_label": self.bias_label.value,
            "explicitness": self.explicitness.value,
            "annotator_id": self.annotator_id,
            "qa_status": self.qa_status.value,
            "stereotype_category": _enum_value(self.stereotype_category),
            "sentiment_toward_referent": _enum_value(self.sentiment_toward_referent),
            "device": _enum_value(self.device),
            "annotation_date": _iso(self.annotation_date),
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Annotation":
        return cls(
            target_gender=TargetGender(data["target_gender"]),
            bias_label=BiasLabel(data["bias_label"]),
            explicitness=Explicitness(data["explicitness"]),
            annotator_id=data["annotator_id"],
            qa_status=lookup(QAStatus, data.get("qa_status")) or QAStatus.NEEDS_REVIEW,
            stereotype_category=lookup(StereotypeCategory, data.get("stereotype_category")),
            sentiment_toward_referent=lookup(
                SentimentTowardReferent, data.get("sentiment_toward_referent")
            ),
            device=lookup(Device, data.get("device")),
            annotation_date=_parse_datetime(data.get("annotation_date")),
            notes=data.get("notes"),
        )


@dataclass(frozen=True)
class CorpusRecord:
    """A persisted corpus sentence."""

    id: str
    text: str
    language: str
    document_id: Optional[str] = None  # Upload batch; None for pre-batch records
    collector_id: Optional[str] = None
    original_content: Optional[str] = None
    fields: Dict[str, Any] = field(default_factory=dict)
    annotation: Optional[Annotation] = None
    exported_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "CorpusRecord":
        """Build a record from a stored document (sqlite row or Cosmos item)."""
        reserved = {
            "id", "text", "language", "document_id", "collector_id",
            "original_content", "annotation", "exported_at", "created_at",
            "updated_at",
        }
        annotation = data.get("annotation")
        return cls(
            id=str(data["id"]),
            text=data["text"],
            language=data.get("language") or "",
            document_id=data.get("document_id"),
            collector_id=data.get("collector_id"),
            original_content=data.get("original_content"),
            fields={
                key: value for key, value in data.items()
                if key not in reserved and not key.startswith("_")
            },
            annotation=Annotation.from_dict(annotation) if annotation else None,
            exported_at=_parse_datetime(data.get("exported_at")),
            created_at=_parse_datetime(data.get("created_at")),
            updated_at=_parse_datetime(data.get("updated_at")),
        )
