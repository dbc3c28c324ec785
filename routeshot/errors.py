"""Error taxonomy for route discovery, capture, and the review workflow.

Build-time errors (manifest, fixtures) always surface to the caller.
Per-capture errors never appear here: they are recorded on the failed
artifact instead. Session errors are raised before any mutation, so the
session is left exactly as it was.
"""

from __future__ import annotations


class RouteshotError(Exception):
    """Base class for all routeshot errors."""


# ---------------------------------------------------------------------------
# Build-time: manifest
# ---------------------------------------------------------------------------


class ManifestError(RouteshotError):
    pass


class DuplicateRouteError(ManifestError):
    def __init__(self, path: str, first_source: str, second_source: str):
        self.path = path
        self.first_source = first_source
        self.second_source = second_source
        super().__init__(
            f"Route {path!r} is defined by both {first_source!r} and {second_source!r}"
        )


class MalformedRouteError(ManifestError):
    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Malformed route in {source!r}: {reason}")


# ---------------------------------------------------------------------------
# Build-time: fixtures
# ---------------------------------------------------------------------------


class FixtureError(RouteshotError):
    pass


class NonSerializableFixtureError(FixtureError):
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Fixture value at {path!r} is not JSON-serializable: {reason}")


class MissingRouteParamsError(FixtureError):
    def __init__(self, route: str, param: str):
        self.route = route
        self.param = param
        super().__init__(f"No fixture value for parameter {param!r} of route {route!r}")


class FixtureConfigError(FixtureError):
    pass


# ---------------------------------------------------------------------------
# State transitions
# ---------------------------------------------------------------------------


class SessionError(RouteshotError):
    pass


class SessionNotFoundError(SessionError):
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class ActiveSessionError(SessionError):
    def __init__(self, scope: str, session_id: str, status: str):
        self.scope = scope
        self.session_id = session_id
        self.status = status
        super().__init__(
            f"Scope {scope!r} already has an active session {session_id} ({status})"
        )


class SessionClosedError(SessionError):
    def __init__(self, session_id: str, status: str, operation: str):
        self.session_id = session_id
        self.status = status
        self.operation = operation
        super().__init__(f"Cannot {operation} session {session_id} in status {status!r}")


class EmptyCaptureError(SessionError):
    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Capture run {run_id} produced no successful screenshots")


class InvalidAnnotationError(SessionError):
    def __init__(self, annotation_id: str, reason: str):
        self.annotation_id = annotation_id
        self.reason = reason
        super().__init__(f"Invalid annotation {annotation_id}: {reason}")


class IllegalTransitionError(SessionError):
    def __init__(self, subject: str, current: str, requested: str):
        self.subject = subject
        self.current = current
        self.requested = requested
        super().__init__(f"Illegal transition for {subject}: {current} -> {requested}")


class AnnotationFileError(SessionError):
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot read annotations from {path}: {reason}")


class PartialResolutionError(SessionError):
    def __init__(self, session_id: str, outstanding: int):
        self.session_id = session_id
        self.outstanding = outstanding
        super().__init__(
            f"Session {session_id} has {outstanding} unresolved annotation(s)"
        )


class ConcurrentModificationError(SessionError):
    def __init__(self, session_id: str, expected_version: int, actual_version: int):
        self.session_id = session_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Session {session_id} is at version {actual_version}, "
            f"expected {expected_version}"
        )


# ---------------------------------------------------------------------------
# Storage / publish
# ---------------------------------------------------------------------------


class StorageError(RouteshotError):
    def __init__(self, session_id: str, operation: str, reason: str):
        self.session_id = session_id
        self.operation = operation
        self.reason = reason
        super().__init__(f"Failed to {operation} session {session_id}: {reason}")


class PublishError(StorageError):
    def __init__(self, session_id: str, reason: str):
        super().__init__(session_id, "publish", reason)
