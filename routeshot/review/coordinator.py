"""Publish/resolve coordinator — the client and developer handoff on top of the session store."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from routeshot.capture.artifact_store import ArtifactStore
from routeshot.errors import (
    PartialResolutionError,
    PublishError,
    SessionClosedError,
    StorageError,
)
from routeshot.models.annotation import AnnotationSession, SessionStatus, utc_now
from routeshot.review.session_store import AnnotationSessionStore

logger = logging.getLogger(__name__)


class ReviewCoordinator:
    """Moves sessions through publish (client) and resolve (developer)."""

    def __init__(
        self, store: AnnotationSessionStore, artifact_store: ArtifactStore | None = None,
    ):
        self.store = store
        self.artifact_store = artifact_store or store.artifact_store

    def publish(self, session_id: str) -> AnnotationSession:
        """Persist the session manifest and move it from open to published.

        If anything fails the session stays open with its annotations intact,
        so the client can simply publish again.
        """
        try:
            with self.store.transaction(session_id) as session:
                if session.status != SessionStatus.OPEN:
                    raise SessionClosedError(session_id, session.status.value, "publish")

                missing = [
                    ref for ref in session.artifacts
                    if not self.artifact_store.has_image(ref.blob_key)
                ]
                if missing:
                    raise PublishError(
                        session_id,
                        f"{len(missing)} screenshot(s) missing from storage, "
                        f"first: {missing[0].route} @ {missing[0].viewport}",
                    )

                session.status = SessionStatus.PUBLISHED
                session.published_at = utc_now()
                self.store.storage.write_file(
                    self.store.published_path(session_id),
                    json.dumps(session.model_dump(mode="json"), indent=2),
                )
        except OSError as e:
            logger.error("Publish of session %s failed: %s", session_id, e)
            raise PublishError(session_id, str(e)) from e

        logger.info("Published session %s", session_id)
        return self.store.get_session(session_id)

    def resolve(self, session_id: str) -> AnnotationSession:
        """Close a published session once every annotation is resolved, then archive it."""
        try:
            with self.store.transaction(session_id) as session:
                if session.status not in (SessionStatus.PUBLISHED, SessionStatus.RESOLVING):
                    raise SessionClosedError(session_id, session.status.value, "resolve")
                outstanding = session.outstanding_count()
                if outstanding:
                    raise PartialResolutionError(session_id, outstanding)
                session.status = SessionStatus.RESOLVED
                session.resolved_at = utc_now()
        except OSError as e:
            logger.error("Resolve of session %s failed: %s", session_id, e)
            raise StorageError(session_id, "resolve", str(e)) from e

        logger.info("Resolved session %s", session_id)
        return self.store.get_session(session_id)

    def export_bundle(self, session_id: str, output_path: str | Path) -> Path:
        """Write the download bundle (screenshots inlined) as a portable JSON file."""
        bundle = self.store.assemble_bundle(session_id)
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(bundle.model_dump(mode="json"), f, indent=2)
        logger.info("Exported bundle for session %s to %s", session_id, path)
        return path
