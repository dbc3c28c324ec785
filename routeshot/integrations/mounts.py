"""Mount point configuration for the framework route-injection collaborator.

A dev-server plugin serves two extra routes, "annotate" for the client and
"resolve" for the developer. Each page reads a JSON config that must be in
place before application code runs; this module builds that config and the
script tag that delivers it.
"""

from __future__ import annotations

import json
import logging
import posixpath
from enum import Enum

from pydantic import BaseModel

from routeshot.fixtures.injector import check_serializable
from routeshot.models.annotation import AnnotationSession, SessionStatus

logger = logging.getLogger(__name__)

CONFIG_GLOBAL = "__ROUTESHOT_CONFIG__"


class MountName(str, Enum):
    ANNOTATE = "annotate"
    RESOLVE = "resolve"


class MountPoint(BaseModel):
    name: MountName
    path: str


def default_mount_points(prefix: str = "/routeshot") -> list[MountPoint]:
    prefix = prefix.rstrip("/")
    return [MountPoint(name=name, path=f"{prefix}/{name.value}") for name in MountName]


def validate_mount_points(mounts: list[MountPoint], prefix: str = "/routeshot") -> list[str]:
    """Return a list of problems; empty when the mount points are usable."""
    errors = []
    required = prefix.rstrip("/") + "/"
    seen: set[str] = set()
    for mount in mounts:
        if not mount.path.startswith(required):
            errors.append(f"Mount path {mount.path!r} must start with {required!r}")
        if mount.name.value in seen:
            errors.append(f"Mount {mount.name.value!r} is declared more than once")
        seen.add(mount.name.value)
    for name in MountName:
        if name.value not in seen:
            errors.append(f"Missing mount point {name.value!r}")
    return errors


def files_url_for(prefix: str = "/routeshot") -> str:
    """Screenshot files are served under the same prefix as the mount points."""
    return f"{prefix.rstrip('/')}/api/files"


def build_mount_config(
    mount: MountPoint, session: AnnotationSession, files_url: str | None = None,
) -> dict:
    """Build the JSON config a mounted page reads on load.

    Without an explicit files_url, screenshot URLs live under the mount's own prefix.
    """
    if files_url is None:
        files_url = files_url_for(posixpath.dirname(mount.path.rstrip("/")))
    files_url = files_url.rstrip("/")
    screenshots = [
        {
            "route": ref.route,
            "viewport": ref.viewport,
            "url": f"{files_url}/{ref.blob_key}",
        }
        for ref in session.artifacts
    ]
    annotations = [a.model_dump(mode="json") for a in session.annotations]

    config = {
        "mode": mount.name.value,
        "mountPath": mount.path,
        "sessionId": session.session_id,
        "sessionStatus": session.status.value,
        "version": session.version,
        "coordinateSpace": "normalized",
        "screenshots": screenshots,
        "annotations": annotations,
    }
    if mount.name == MountName.ANNOTATE:
        config["readOnly"] = session.status != SessionStatus.OPEN
    else:
        config["outstanding"] = session.outstanding_count()
        config["canResolve"] = (
            session.status in (SessionStatus.PUBLISHED, SessionStatus.RESOLVING)
            and session.outstanding_count() == 0
        )

    check_serializable(config, "config")
    return config


def render_config_script(config: dict, global_name: str = CONFIG_GLOBAL) -> str:
    """Render an inline script that sets the config before the app bundle executes."""
    data = json.dumps(config, sort_keys=True).replace("</", "<\\/")
    return f"<script>window[{json.dumps(global_name)}] = {data};</script>"
