"""Fixture injector — builds the state payload a page reads before it mounts."""

from __future__ import annotations

import copy
import json
import logging
import math
from pathlib import Path
from typing import Any
from urllib.parse import quote

from pydantic import ValidationError

from routeshot.errors import (
    FixtureConfigError,
    MissingRouteParamsError,
    NonSerializableFixtureError,
)
from routeshot.models.fixtures import FixtureProfile, InjectionPayload
from routeshot.models.routes import RouteDescriptor, SegmentKind

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_KEY = "__ROUTESHOT_FIXTURES__"

_INIT_SCRIPT_TEMPLATE = """
(() => {
    const state = %(state)s;
    window[%(key)s] = state;
    try {
        if (state.auth && state.auth.authenticated) {
            localStorage.setItem('auth', JSON.stringify(state.auth));
        } else {
            localStorage.removeItem('auth');
        }
        localStorage.setItem('globalState', JSON.stringify(
            Object.assign({}, state.globalState, { featureFlags: state.featureFlags })
        ));
    } catch (e) {
        // storage can be unavailable on opaque origins such as about:blank
    }
})();
"""


def check_serializable(value: Any, path: str = "$") -> None:
    """Raise NonSerializableFixtureError if value is not plain JSON data."""
    _check(value, path, set())


def _check(value: Any, path: str, active: set[int]) -> None:
    if value is None or isinstance(value, (bool, int, str)):
        return
    if isinstance(value, float):
        if not math.isfinite(value):
            raise NonSerializableFixtureError(path, f"non-finite number {value!r}")
        return
    if isinstance(value, (dict, list, tuple)):
        if id(value) in active:
            raise NonSerializableFixtureError(path, "cyclic reference")
        active.add(id(value))
        try:
            if isinstance(value, dict):
                for key, item in value.items():
                    if not isinstance(key, str):
                        raise NonSerializableFixtureError(
                            path, f"non-string key {key!r}",
                        )
                    _check(item, f"{path}.{key}", active)
            else:
                for index, item in enumerate(value):
                    _check(item, f"{path}[{index}]", active)
        finally:
            active.discard(id(value))
        return
    if callable(value):
        raise NonSerializableFixtureError(path, "functions cannot be serialized")
    raise NonSerializableFixtureError(path, f"unsupported type {type(value).__name__}")


def resolve_route_url(route: RouteDescriptor, params: dict[str, Any] | None) -> str:
    """Substitute fixture values into a route's dynamic and catch-all segments."""
    params = params or {}
    parts = []
    for segment in route.segments:
        if segment.kind == SegmentKind.LITERAL:
            parts.append(quote(segment.name))
            continue
        value = params.get(segment.name)
        if value is None or value == "" or value == []:
            raise MissingRouteParamsError(route.path, segment.name)
        if segment.kind == SegmentKind.CATCH_ALL:
            items = value if isinstance(value, (list, tuple)) else str(value).split("/")
            parts.extend(quote(str(item), safe="") for item in items if str(item))
        else:
            parts.append(quote(str(value), safe=""))
    return "/" + "/".join(parts)


def inject(
    route: RouteDescriptor,
    profile: FixtureProfile,
    storage_key: str = DEFAULT_STORAGE_KEY,
) -> InjectionPayload:
    """Build the injection payload for one route under one fixture profile.

    Raises NonSerializableFixtureError (naming the offending path) before
    MissingRouteParamsError, so a broken profile always surfaces first.
    """
    params = profile.route_params.get(route.path, {})
    auth = profile.auth
    state = {
        "auth": {
            "authenticated": auth.authenticated,
            "user": auth.user,
            "token": auth.token,
            "permissions": sorted(auth.permissions),
        },
        "globalState": profile.global_state,
        "featureFlags": profile.feature_flags,
        "route": {"path": route.path, "params": params},
    }
    for name, value in state.items():
        _check(value, name, set())
    # detach from the profile so later edits to its dicts do not leak into the payload
    state = copy.deepcopy(state)

    url_path = resolve_route_url(route, params) if route.is_dynamic else route.path

    script = _INIT_SCRIPT_TEMPLATE % {
        "state": json.dumps(state, sort_keys=True),
        "key": json.dumps(storage_key),
    }
    return InjectionPayload(
        route=route.path,
        url_path=url_path,
        profile_id=profile.id,
        state=state,
        storage_key=storage_key,
        init_script=script,
    )


def load_fixture_profiles(path: str | Path) -> dict[str, FixtureProfile]:
    """Load fixture profiles from a JSON file: either a list or an id -> profile mapping."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Fixture file not found: {path}")
    try:
        with open(path) as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise FixtureConfigError(f"Failed to parse fixture file {path}: {e}") from e

    if isinstance(data, dict):
        data = [{"id": key, **value} for key, value in data.items()]
    try:
        profiles = [FixtureProfile.model_validate(item) for item in data]
    except (ValidationError, TypeError) as e:
        raise FixtureConfigError(f"Invalid fixture file {path}: {e}") from e

    logger.debug("Loaded %d fixture profile(s) from %s", len(profiles), path)
    return {p.id: p for p in profiles}
