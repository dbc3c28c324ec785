"""Annotation session store — the state machine behind client review.

Session states: open -> published -> resolving -> resolved.
Annotation states: pending -> in-progress -> resolved (forward only).

Every mutation happens inside `transaction()`: the caller edits a deep copy
under the store lock, and the copy replaces the live session only after it
has been persisted. Anything that raises inside the block leaves the session
exactly as it was.
"""

from __future__ import annotations

import base64
import json
import logging
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator

from pydantic import ValidationError

from routeshot.capture.artifact_store import ArtifactStore
from routeshot.errors import (
    ActiveSessionError,
    ConcurrentModificationError,
    EmptyCaptureError,
    IllegalTransitionError,
    InvalidAnnotationError,
    SessionClosedError,
    SessionNotFoundError,
)
from routeshot.models.annotation import (
    ACTIVE_SESSION_STATUSES,
    STATUS_ORDER,
    Annotation,
    AnnotationSession,
    AnnotationStatus,
    ArtifactRef,
    DownloadBundle,
    SessionStatus,
)
from routeshot.models.capture import CaptureRunResult
from routeshot.storage.file_storage import FileOperations

logger = logging.getLogger(__name__)


class AnnotationSessionStore:
    """Holds at most one active annotation session per project scope."""

    def __init__(
        self,
        storage: FileOperations,
        artifact_store: ArtifactStore | None = None,
        scope: str = "default",
    ):
        self.storage = storage
        self.artifact_store = artifact_store or ArtifactStore(storage)
        self.scope = scope
        self._lock = threading.RLock()
        self._sessions: dict[str, AnnotationSession] = {}
        self.quarantined: list[str] = []
        self._load_active()

    # -- persistence ---------------------------------------------------------

    @property
    def _active_path(self) -> str:
        return f"sessions/{self.scope}/active.json"

    def published_path(self, session_id: str) -> str:
        return f"sessions/{self.scope}/published/{session_id}.json"

    def archive_path(self, session_id: str) -> str:
        return f"sessions/{self.scope}/archive/{session_id}.json"

    def corrupt_path(self, stamp: str) -> str:
        return f"sessions/{self.scope}/active.corrupt-{stamp}.json"

    def _load_active(self) -> None:
        if not self.storage.file_exists(self._active_path):
            return
        raw = self.storage.read_file(self._active_path)
        try:
            session = AnnotationSession.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            self._quarantine(raw, e)
            return
        self._sessions[session.session_id] = session
        logger.debug("Loaded active session %s (%s)", session.session_id, session.status.value)

    def _quarantine(self, raw: str, error: Exception) -> None:
        # the unreadable record is kept verbatim so its annotations can be recovered by hand
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        target = self.corrupt_path(stamp)
        self.storage.write_file(target, raw)
        self.storage.remove(self._active_path)
        self.quarantined.append(target)
        logger.error(
            "Active session for scope %s is unreadable (%s); moved it to %s",
            self.scope, error, target,
        )

    def _persist(self, session: AnnotationSession) -> None:
        payload = json.dumps(session.model_dump(mode="json"), indent=2)
        if session.status == SessionStatus.RESOLVED:
            self.storage.write_file(self.archive_path(session.session_id), payload)
            if self.storage.file_exists(self._active_path):
                self.storage.remove(self._active_path)
            logger.info("Archived session %s", session.session_id)
        else:
            self.storage.write_file(self._active_path, payload)

    # -- reads ---------------------------------------------------------------

    def _require(self, session_id: str) -> AnnotationSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def get_session(self, session_id: str) -> AnnotationSession:
        with self._lock:
            return self._require(session_id).model_copy(deep=True)

    def active_session(self) -> AnnotationSession | None:
        with self._lock:
            for session in self._sessions.values():
                if session.status in ACTIVE_SESSION_STATUSES:
                    return session.model_copy(deep=True)
        return None

    # -- transactional boundary ---------------------------------------------

    @contextmanager
    def transaction(
        self, session_id: str, expected_version: int | None = None,
    ) -> Iterator[AnnotationSession]:
        """Serialize a mutation: yield a working copy, commit it if it changed."""
        with self._lock:
            current = self._require(session_id)
            if expected_version is not None and expected_version != current.version:
                raise ConcurrentModificationError(session_id, expected_version, current.version)
            working = current.model_copy(deep=True)
            yield working
            if working == current:
                return
            working.version = current.version + 1
            self._persist(working)
            self._sessions[session_id] = working
            logger.debug("Session %s committed at version %d", session_id, working.version)

    # -- operations ----------------------------------------------------------

    def create_session(self, run_result: CaptureRunResult) -> AnnotationSession:
        """Open a session over a capture run's successful screenshots."""
        with self._lock:
            active = self.active_session()
            if active is not None:
                raise ActiveSessionError(self.scope, active.session_id, active.status.value)

            refs = []
            for artifact in run_result.ok_artifacts:
                if artifact.blob_key is None:
                    self.artifact_store.store_artifact(run_result.run_id, artifact)
                refs.append(ArtifactRef(
                    route=artifact.route, viewport=artifact.viewport, blob_key=artifact.blob_key,
                ))
            if not refs:
                raise EmptyCaptureError(run_result.run_id)

            session = AnnotationSession(
                session_id=f"session_{uuid.uuid4().hex[:12]}",
                scope=self.scope,
                capture_run_id=run_result.run_id,
                artifacts=refs,
            )
            self._persist(session)
            self._sessions[session.session_id] = session
            logger.info("Opened session %s with %d screenshot(s) from %s",
                        session.session_id, len(refs), run_result.run_id)
            return session.model_copy(deep=True)

    def submit_annotations(
        self,
        session_id: str,
        annotations: list[Annotation],
        expected_version: int | None = None,
    ) -> int:
        """Append a batch of client annotations atomically. Returns how many were new.

        Resubmitting an identical annotation is a no-op, so a client can retry
        a submission without duplicating its feedback.
        """
        with self.transaction(session_id, expected_version) as session:
            if session.status != SessionStatus.OPEN:
                raise SessionClosedError(session_id, session.status.value, "submit annotations to")

            keys = session.artifact_keys()
            existing = {a.id: a for a in session.annotations}
            batch_ids: set[str] = set()
            to_add: list[Annotation] = []

            for annotation in annotations:
                if annotation.id in batch_ids:
                    raise InvalidAnnotationError(annotation.id, "duplicate id in submission")
                batch_ids.add(annotation.id)
                if not annotation.content.strip():
                    raise InvalidAnnotationError(annotation.id, "content is empty")
                if (annotation.route, annotation.viewport) not in keys:
                    raise InvalidAnnotationError(
                        annotation.id,
                        f"no screenshot for {annotation.route} @ {annotation.viewport}",
                    )
                if annotation.id in existing:
                    if existing[annotation.id] == annotation:
                        continue
                    raise InvalidAnnotationError(
                        annotation.id, "conflicts with an existing annotation",
                    )
                if annotation.status != AnnotationStatus.PENDING:
                    raise InvalidAnnotationError(
                        annotation.id, "new annotations must be pending",
                    )
                if annotation.supersedes == annotation.id:
                    raise InvalidAnnotationError(annotation.id, "cannot supersede itself")
                to_add.append(annotation.model_copy(deep=True))

            session.annotations.extend(to_add)

        logger.info("Session %s: accepted %d annotation(s) (%d submitted)",
                    session_id, len(to_add), len(annotations))
        return len(to_add)

    def update_status(
        self,
        session_id: str,
        annotation_id: str,
        new_status: AnnotationStatus,
        expected_version: int | None = None,
    ) -> Annotation:
        """Move an annotation forward. The first update moves the session to resolving."""
        new_status = AnnotationStatus(new_status)
        with self.transaction(session_id, expected_version) as session:
            if session.status not in (SessionStatus.PUBLISHED, SessionStatus.RESOLVING):
                raise SessionClosedError(
                    session_id, session.status.value, "update annotation status in",
                )
            annotation = session.find_annotation(annotation_id)
            if annotation is None:
                raise InvalidAnnotationError(annotation_id, "not found in session")

            current = annotation.status
            if STATUS_ORDER[new_status] < STATUS_ORDER[current]:
                raise IllegalTransitionError(
                    f"annotation {annotation_id}", current.value, new_status.value,
                )
            if new_status != current:
                annotation.status = new_status
                if session.status == SessionStatus.PUBLISHED:
                    session.status = SessionStatus.RESOLVING
                logger.info("Annotation %s: %s -> %s",
                            annotation_id, current.value, new_status.value)
            return annotation.model_copy()

    def assemble_bundle(self, session_id: str) -> DownloadBundle:
        """Snapshot a session with its screenshots inlined as base64."""
        with self._lock:
            snapshot = self._require(session_id).model_copy(deep=True)

        screenshots: dict[str, dict[str, str]] = {}
        for ref in snapshot.artifacts:
            image = self.artifact_store.read_image(ref.blob_key)
            screenshots.setdefault(ref.route, {})[ref.viewport] = (
                base64.b64encode(image).decode("ascii")
            )
        return DownloadBundle(session=snapshot, screenshots=screenshots)
