"""Pipeline orchestrator — coordinates discovery, capture, and the review session."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from pathlib import Path

from pydantic import ValidationError

from routeshot.capture.artifact_store import ArtifactStore
from routeshot.capture.orchestrator import CaptureOrchestrator
from routeshot.discovery.manifest import build
from routeshot.errors import AnnotationFileError, InvalidAnnotationError
from routeshot.integrations.mounts import (
    MountName,
    build_mount_config,
    default_mount_points,
    files_url_for,
)
from routeshot.models.annotation import Annotation, AnnotationSession, AnnotationStatus
from routeshot.models.capture import CaptureRunResult
from routeshot.models.config import ProjectConfig
from routeshot.models.routes import RouteDescriptor, SourceTree
from routeshot.review.coordinator import ReviewCoordinator
from routeshot.review.session_store import AnnotationSessionStore
from routeshot.storage.file_storage import FileStorage

logger = logging.getLogger(__name__)

ROUTES_FILE = "routes.json"


def _describe(error: ValidationError) -> str:
    """One-line summary of a pydantic error: "position.x: Input should be ..."."""
    parts = []
    for err in error.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "annotation"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


class Pipeline:
    """Wires configuration, storage and the core components together."""

    def __init__(self, config: ProjectConfig, scope: str = "default"):
        self.config = config
        self.storage = FileStorage(config.storage_path)
        self.storage.ensure_dir(".")
        self.artifact_store = ArtifactStore(self.storage)
        self.session_store = AnnotationSessionStore(
            self.storage, self.artifact_store, scope=scope,
        )
        self.coordinator = ReviewCoordinator(self.session_store, self.artifact_store)

    # -- discovery -----------------------------------------------------------

    def discover_routes(self) -> list[RouteDescriptor]:
        """Build a fresh route manifest from the project tree and save it."""
        tree = SourceTree.from_directory(self.config.project_root, self.config.route_table)
        logger.debug("Scanned %d source file(s) under %s",
                     len(tree.files), self.config.project_root)
        routes = build(tree, exclude_prefixes=self.config.exclude_prefixes)
        self.storage.write_file(
            ROUTES_FILE,
            json.dumps([r.model_dump(mode="json") for r in routes], indent=2),
        )
        return routes

    # -- capture -------------------------------------------------------------

    def run_capture(self, profile_id: str | None = None, open_session: bool = True) -> dict:
        """Discover routes, capture every route at every viewport, open a review session."""
        return asyncio.run(self._run_capture(profile_id, open_session))

    async def _run_capture(self, profile_id: str | None, open_session: bool) -> dict:
        start = time.time()
        logger.info("=== Starting capture for %s ===", self.config.base_url)

        logger.info("--- Stage 1: Discover routes ---")
        routes = self.discover_routes()

        logger.info("--- Stage 2: Capture (%d routes) ---", len(routes))
        profile = self.config.get_profile(profile_id)
        orchestrator = CaptureOrchestrator(self.config, self.artifact_store)
        result = await orchestrator.run(routes, self.config.viewports, profile)

        session: AnnotationSession | None = None
        if open_session and result.succeeded:
            logger.info("--- Stage 3: Open review session ---")
            session = self.session_store.create_session(result)
        elif open_session:
            logger.warning("No screenshots succeeded; review session not opened")

        duration = time.time() - start
        logger.info("=== Capture complete in %.1fs ===", duration)
        return {
            "run_id": result.run_id,
            "duration": round(duration, 2),
            "routes": len(routes),
            "requested": result.requested,
            "ok": len(result.ok_artifacts),
            "failed": [f.model_dump() for f in result.failed],
            "session_id": session.session_id if session else None,
        }

    def load_capture(self, run_id: str | None = None) -> CaptureRunResult:
        return self.artifact_store.load_run(run_id)

    # -- review --------------------------------------------------------------

    def require_active_session(self) -> AnnotationSession:
        session = self.session_store.active_session()
        if session is None:
            raise FileNotFoundError("No active review session. Run 'routeshot capture' first.")
        return session

    def submit_annotations_file(self, path: str | Path) -> int:
        """Validate a JSON list of annotations and submit it as one batch."""
        session = self.require_active_session()
        with open(path) as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise AnnotationFileError(str(path), f"invalid JSON: {e}") from e
        if not isinstance(data, list):
            raise AnnotationFileError(str(path), "expected a JSON list of annotations")

        annotations = []
        for index, item in enumerate(data):
            annotation_id = f"#{index}"
            if isinstance(item, dict) and isinstance(item.get("id"), str):
                annotation_id = item["id"]
            try:
                annotations.append(Annotation.model_validate(item))
            except ValidationError as e:
                raise InvalidAnnotationError(annotation_id, _describe(e)) from e
        return self.session_store.submit_annotations(session.session_id, annotations)

    def mark(self, annotation_id: str, status: str) -> Annotation:
        session = self.require_active_session()
        return self.session_store.update_status(
            session.session_id, annotation_id, AnnotationStatus(status),
        )

    def publish(self) -> AnnotationSession:
        return self.coordinator.publish(self.require_active_session().session_id)

    def resolve(self) -> AnnotationSession:
        return self.coordinator.resolve(self.require_active_session().session_id)

    def export_bundle(self, output_path: str | Path, session_id: str | None = None) -> Path:
        session_id = session_id or self.require_active_session().session_id
        return self.coordinator.export_bundle(session_id, output_path)

    def mount_config(self, name: str) -> dict:
        session = self.require_active_session()
        mounts = {m.name: m for m in default_mount_points(self.config.mount_prefix)}
        return build_mount_config(
            mounts[MountName(name)], session, files_url_for(self.config.mount_prefix),
        )
