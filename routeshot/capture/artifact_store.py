"""Artifact store — persists capture images as blobs and run manifests as JSON."""

from __future__ import annotations

import hashlib
import json
import logging
import re

from routeshot.models.capture import CaptureArtifact, CaptureRunResult, CaptureStatus
from routeshot.storage.file_storage import FileOperations

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9_-]+")


def route_slug(route: str) -> str:
    """Readable, collision-free file name component for a route path."""
    readable = _UNSAFE.sub("_", route.strip("/")).strip("_") or "index"
    digest = hashlib.md5(route.encode()).hexdigest()[:8]
    return f"{readable}-{digest}"


def blob_key(run_id: str, route: str, viewport: str) -> str:
    return f"captures/{run_id}/images/{route_slug(route)}__{_UNSAFE.sub('_', viewport)}.png"


class ArtifactStore:
    """Stores one image blob per (route, viewport) key plus a per-run manifest."""

    def __init__(self, storage: FileOperations):
        self.storage = storage

    @staticmethod
    def _manifest_path(run_id: str) -> str:
        return f"captures/{run_id}/capture.json"

    def store_artifact(self, run_id: str, artifact: CaptureArtifact) -> CaptureArtifact:
        """Write an ok artifact's image; re-capturing the same key overwrites it."""
        if artifact.status != CaptureStatus.OK:
            return artifact
        key = blob_key(run_id, artifact.route, artifact.viewport)
        self.storage.write_bytes(key, artifact.image_bytes)
        artifact.blob_key = key
        logger.debug("Stored %s @ %s as %s", artifact.route, artifact.viewport, key)
        return artifact

    def save_run(self, result: CaptureRunResult) -> str:
        """Persist the run manifest. Image bytes are referenced by key, never embedded."""
        path = self._manifest_path(result.run_id)
        self.storage.ensure_dir(f"captures/{result.run_id}")
        self.storage.write_file(path, json.dumps(result.model_dump(mode="json"), indent=2))
        self.storage.write_file("captures/latest", result.run_id)
        logger.debug("Saved capture manifest to %s", path)
        return path

    def load_run(self, run_id: str | None = None) -> CaptureRunResult:
        """Load a run manifest (the latest run when run_id is None)."""
        if run_id is None:
            if not self.storage.file_exists("captures/latest"):
                raise FileNotFoundError("No capture run found. Run 'routeshot capture' first.")
            run_id = self.storage.read_file("captures/latest").strip()
        data = json.loads(self.storage.read_file(self._manifest_path(run_id)))
        return CaptureRunResult.model_validate(data)

    def read_image(self, key: str) -> bytes:
        return self.storage.read_bytes(key)

    def has_image(self, key: str) -> bool:
        return self.storage.file_exists(key)
