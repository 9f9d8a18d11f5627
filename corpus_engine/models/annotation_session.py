"""Annotation session models with export bookkeeping."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class SessionStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    EXPORTED = "exported"


# Caller-driven status changes the ledger accepts
ALLOWED_TRANSITIONS = {
    SessionStatus.ACTIVE: {SessionStatus.PAUSED, SessionStatus.COMPLETED},
    SessionStatus.PAUSED: {SessionStatus.ACTIVE, SessionStatus.COMPLETED},
    SessionStatus.COMPLETED: {SessionStatus.EXPORTED},
    SessionStatus.EXPORTED: set(),
}


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class ExportEvent:
    """One rendering-and-handoff of session sentences to storage."""

    exported_at: datetime
    exported_by: str
    sentence_count: int
    file_name: str
    storage_key: str
    download_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "exported_at": self.exported_at.isoformat(),
            "exported_by": self.exported_by,
            "sentence_count": self.sentence_count,
            "file_name": self.file_name,
            "storage_key": self.storage_key,
            "download_url": self.download_url,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExportEvent":
        return cls(
            exported_at=datetime.fromisoformat(data["exported_at"]),
            exported_by=data["exported_by"],
            sentence_count=data["sentence_count"],
            file_name=data["file_name"],
            storage_key=data["storage_key"],
            download_url=data.get("download_url"),
        )


@dataclass
class AnnotationSession:
    """A user's unit of annotation work.

    Invariant: every id in ``exported_sentence_ids`` is also in
    ``annotated_sentence_ids``, and exported ids are never removed.
    """

    id: str
    name: str
    user_id: str
    status: SessionStatus
    started_at: datetime
    last_activity_at: datetime
    created_at: datetime
    description: Optional[str] = None
    language_filter: Optional[str] = None
    annotated_sentence_ids: List[str] = field(default_factory=list)
    exported_sentence_ids: List[str] = field(default_factory=list)
    total_annotated: int = 0
    total_exported: int = 0
    completed_at: Optional[datetime] = None
    exports: List[ExportEvent] = field(default_factory=list)
    version: Optional[str] = None  # Concurrency token from the store

    @property
    def exportable_ids(self) -> List[str]:
        exported = set(self.exported_sentence_ids)
        return [sid for sid in self.annotated_sentence_ids if sid not in exported]

    def recount(self) -> None:
        self.total_annotated = len(self.annotated_sentence_ids)
        self.total_exported = len(self.exported_sentence_ids)

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "user_id": self.user_id,
            "status": self.status.value,
            "annotated_sentence_ids": list(self.annotated_sentence_ids),
            "exported_sentence_ids": list(self.exported_sentence_ids),
            "total_annotated": self.total_annotated,
            "total_exported": self.total_exported,
            "started_at": self.started_at.isoformat(),
            "last_activity_at": self.last_activity_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "created_at": self.created_at.isoformat(),
            "exports": [e.to_dict() for e in self.exports],
            "language_filter": self.language_filter,
        }

    @classmethod
    def from_document(cls, data: Dict[str, Any], version: Optional[str] = None) -> "AnnotationSession":
        return cls(
            id=data["id"],
            name=data["name"],
            description=data.get("description"),
            user_id=data["user_id"],
            status=SessionStatus(data["status"]),
            annotated_sentence_ids=list(data.get("annotated_sentence_ids") or []),
            exported_sentence_ids=list(data.get("exported_sentence_ids") or []),
            total_annotated=data.get("total_annotated") or 0,
            total_exported=data.get("total_exported") or 0,
            started_at=datetime.fromisoformat(data["started_at"]),
            last_activity_at=datetime.fromisoformat(data["last_activity_at"]),
            completed_at=_parse_datetime(data.get("completed_at")),
            created_at=datetime.fromisoformat(data["created_at"]),
            exports=[ExportEvent.from_dict(e) for e in data.get("exports") or []],
            language_filter=data.get("language_filter"),
            version=version if version is not None else data.get("_etag"),
        )
