"""Capture run data structures produced by the orchestrator."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class CaptureStatus(str, Enum):
    OK = "ok"
    FAILED = "failed"


class CaptureArtifact(BaseModel):
    route: str
    viewport: str
    url: str = ""
    image_bytes: bytes = Field(default=b"", exclude=True, repr=False)
    captured_at: str  # ISO timestamp
    status: CaptureStatus
    error: Optional[str] = None
    blob_key: Optional[str] = None  # set once the image is persisted

    @property
    def key(self) -> tuple[str, str]:
        return (self.route, self.viewport)


class FailedCapture(BaseModel):
    route: str
    viewport: str
    error: str


class CaptureRunResult(BaseModel):
    run_id: str
    profile_id: str = ""
    started_at: str
    completed_at: str = ""
    requested: int = 0
    artifacts: list[CaptureArtifact] = Field(default_factory=list)
    failed: list[FailedCapture] = Field(default_factory=list)
    cancelled: bool = False
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return any(a.status == CaptureStatus.OK for a in self.artifacts)

    @property
    def ok_artifacts(self) -> list[CaptureArtifact]:
        return [a for a in self.artifacts if a.status == CaptureStatus.OK]
