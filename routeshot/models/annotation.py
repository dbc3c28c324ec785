"""Annotation session data structures for the client review workflow."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AnnotationStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    RESOLVED = "resolved"


# Forward-only ordering of annotation statuses
STATUS_ORDER = {
    AnnotationStatus.PENDING: 0,
    AnnotationStatus.IN_PROGRESS: 1,
    AnnotationStatus.RESOLVED: 2,
}


class SessionStatus(str, Enum):
    OPEN = "open"
    PUBLISHED = "published"
    RESOLVING = "resolving"
    RESOLVED = "resolved"


ACTIVE_SESSION_STATUSES = (
    SessionStatus.OPEN,
    SessionStatus.PUBLISHED,
    SessionStatus.RESOLVING,
)


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class Position(BaseModel):
    # Fractions of the captured image, so the viewer's display scale does not matter
    x: float = Field(ge=0.0, le=1.0)
    y: float = Field(ge=0.0, le=1.0)


class Annotation(BaseModel):
    id: str
    timestamp: str = Field(default_factory=utc_now)
    route: str
    viewport: str
    position: Position
    content: str
    priority: Priority = Priority.MEDIUM
    status: AnnotationStatus = AnnotationStatus.PENDING
    supersedes: Optional[str] = None  # id of an earlier annotation this reopens


class ArtifactRef(BaseModel):
    route: str
    viewport: str
    blob_key: str

    @property
    def key(self) -> tuple[str, str]:
        return (self.route, self.viewport)


class AnnotationSession(BaseModel):
    session_id: str
    scope: str = "default"
    created_at: str = Field(default_factory=utc_now)
    status: SessionStatus = SessionStatus.OPEN
    version: int = 0
    capture_run_id: str = ""
    artifacts: list[ArtifactRef] = Field(default_factory=list)
    annotations: list[Annotation] = Field(default_factory=list)
    published_at: Optional[str] = None
    resolved_at: Optional[str] = None

    def find_annotation(self, annotation_id: str) -> Annotation | None:
        for annotation in self.annotations:
            if annotation.id == annotation_id:
                return annotation
        return None

    def artifact_keys(self) -> set[tuple[str, str]]:
        return {ref.key for ref in self.artifacts}

    def outstanding_count(self) -> int:
        return sum(1 for a in self.annotations if a.status != AnnotationStatus.RESOLVED)


class DownloadBundle(BaseModel):
    """Export of a session with its screenshots inlined.

    Holds a deep snapshot taken at assembly time; editing the bundle never
    touches the stored session. Fields cannot be reassigned.
    """

    model_config = ConfigDict(frozen=True)

    session: AnnotationSession
    # route -> viewport -> base64-encoded PNG
    screenshots: dict[str, dict[str, str]] = Field(default_factory=dict)
