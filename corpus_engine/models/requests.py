"""Request models validated at the caller boundary."""

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from corpus_engine.models.annotation_session import SessionStatus
from corpus_engine.models.vocabulary import (
    BiasLabel,
    Device,
    Explicitness,
    QAStatus,
    SentimentTowardReferent,
    StereotypeCategory,
    TargetGender,
)


class CreateSessionRequest(BaseModel):
    """New annotation session."""

    name: str = Field(min_length=1)
    description: Optional[str] = None
    language_filter: Optional[str] = None


class UpdateSessionRequest(BaseModel):
    """Partial session update; only set fields are applied."""

    name: Optional[str] = None
    description: Optional[str] = None
    status: Optional[SessionStatus] = None
    language_filter: Optional[str] = None


class ExportSessionRequest(BaseModel):
    """Export options. Without ``sentence_ids`` every unexported sentence is exported."""

    sentence_ids: Optional[List[str]] = None
    file_name: Optional[str] = None

    @field_validator("file_name")
    @classmethod
    def _file_name_is_plain(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and ("/" in value or "\\" in value or not value.strip()):
            raise ValueError("file_name must be a plain file name")
        return value


class AnnotationRequest(BaseModel):
    """Labels attached to one sentence."""

    target_gender: TargetGender
    bias_label: BiasLabel
    explicitness: Explicitness
    qa_status: QAStatus = QAStatus.NEEDS_REVIEW
    stereotype_category: Optional[StereotypeCategory] = None
    sentiment_toward_referent: Optional[SentimentTowardReferent] = None
    device: Optional[Device] = None
    notes: Optional[str] = None
