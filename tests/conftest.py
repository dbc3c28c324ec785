"""Pytest configuration and shared fixtures."""

import asyncio
from pathlib import Path
from types import SimpleNamespace

import pytest

from routeshot.capture.artifact_store import ArtifactStore
from routeshot.models.annotation import Annotation, Position
from routeshot.models.capture import CaptureArtifact, CaptureRunResult, CaptureStatus
from routeshot.models.config import ProjectConfig, ViewportSpec
from routeshot.models.fixtures import AuthState, FixtureProfile
from routeshot.models.routes import RouteTableEntry, SourceTree
from routeshot.discovery.manifest import build
from routeshot.review.coordinator import ReviewCoordinator
from routeshot.review.session_store import AnnotationSessionStore
from routeshot.storage.file_storage import FileStorage


# ============================================================================
# Fake Playwright browser
# ============================================================================


class FakePage:
    def __init__(self, browser: "FakeBrowser", context: "FakeContext"):
        self.browser = browser
        self.context = context
        self.url = ""

    async def goto(self, url, **kwargs):
        self.url = url
        self.browser.navigations.append(url)
        for suffix, exc in self.browser.fail_on.items():
            if url.endswith(suffix):
                raise exc
        for suffix in self.browser.hang_on:
            if url.endswith(suffix):
                self.browser.hang_started.set()
                await asyncio.Event().wait()
        status = self.browser.status_for.get(url, 200)
        return SimpleNamespace(ok=status < 400, status=status)

    async def wait_for_load_state(self, state="load", timeout=None):
        return None

    async def evaluate(self, script):
        return True

    async def wait_for_timeout(self, ms):
        return None

    async def screenshot(self, **kwargs):
        vp = self.context.kwargs["viewport"]
        self.browser.screenshots_taken.set()
        return f"png:{self.url}:{vp['width']}x{vp['height']}".encode()


class FakeContext:
    def __init__(self, browser: "FakeBrowser", kwargs: dict):
        self.browser = browser
        self.kwargs = kwargs
        self.init_scripts: list[str] = []
        self.closed = False

    async def add_init_script(self, script):
        self.init_scripts.append(script)

    async def new_page(self):
        if self.browser.crash_pages:
            raise RuntimeError("Target page, context or browser has been closed")
        return FakePage(self.browser, self)

    async def close(self):
        self.closed = True


class FakeBrowser:
    """Stands in for a Playwright Browser; records every context it hands out."""

    def __init__(self, fail_on=None, hang_on=(), status_for=None, crash_pages=False):
        self.fail_on = dict(fail_on or {})
        self.hang_on = tuple(hang_on)
        self.status_for = dict(status_for or {})
        self.crash_pages = crash_pages
        self.contexts: list[FakeContext] = []
        self.navigations: list[str] = []
        self.hang_started = asyncio.Event()
        self.screenshots_taken = asyncio.Event()
        self.closed = False

    async def new_context(self, **kwargs):
        context = FakeContext(self, kwargs)
        self.contexts.append(context)
        return context

    async def close(self):
        self.closed = True


@pytest.fixture
def fake_browser_factory():
    return FakeBrowser


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def viewports() -> list[ViewportSpec]:
    return [
        ViewportSpec(name="mobile", width=375, height=667),
        ViewportSpec(name="desktop", width=1440, height=900),
    ]


@pytest.fixture
def fixture_profile() -> FixtureProfile:
    """An authenticated profile with params for the dynamic demo routes."""
    return FixtureProfile(
        id="member",
        auth=AuthState(
            authenticated=True,
            user={"id": "u1", "name": "Ada", "email": "ada@example.com"},
            token="fake-token",
            permissions=frozenset({"read", "comment"}),
        ),
        global_state={"theme": "light", "language": "en"},
        feature_flags={"newCheckout": True},
        route_params={
            "/product/:slug/details": {"slug": "red-shoes"},
            "/user/:id": {"id": 42},
        },
    )


@pytest.fixture
def project_config(tmp_path: Path, viewports) -> ProjectConfig:
    return ProjectConfig(
        base_url="http://localhost:5173",
        project_root=str(tmp_path / "app"),
        viewports=viewports,
        max_parallel_contexts=2,
    )


# ============================================================================
# Route Fixtures
# ============================================================================


@pytest.fixture
def route_table_tree() -> SourceTree:
    return SourceTree(route_table=[
        RouteTableEntry(path="/"),
        RouteTableEntry(path="/about"),
        RouteTableEntry(path="/product/$slug/details"),
    ])


@pytest.fixture
def routes(route_table_tree):
    return build(route_table_tree)


# ============================================================================
# Storage and Review Fixtures
# ============================================================================


@pytest.fixture
def storage(tmp_path: Path) -> FileStorage:
    return FileStorage(tmp_path / ".routeshot")


@pytest.fixture
def artifact_store(storage) -> ArtifactStore:
    return ArtifactStore(storage)


@pytest.fixture
def run_result(artifact_store) -> CaptureRunResult:
    """A capture run with three ok screenshots and one failure, images stored."""
    artifacts = [
        CaptureArtifact(route="/", viewport="desktop", image_bytes=b"png-home-desktop",
                        captured_at="2025-01-01T00:00:00Z", status=CaptureStatus.OK),
        CaptureArtifact(route="/", viewport="mobile", image_bytes=b"png-home-mobile",
                        captured_at="2025-01-01T00:00:00Z", status=CaptureStatus.OK),
        CaptureArtifact(route="/about", viewport="desktop", image_bytes=b"png-about-desktop",
                        captured_at="2025-01-01T00:00:00Z", status=CaptureStatus.OK),
        CaptureArtifact(route="/about", viewport="mobile", captured_at="2025-01-01T00:00:00Z",
                        status=CaptureStatus.FAILED, error="TimeoutError: navigation"),
    ]
    for artifact in artifacts:
        artifact_store.store_artifact("capture_test", artifact)
    return CaptureRunResult(
        run_id="capture_test",
        started_at="2025-01-01T00:00:00Z",
        requested=4,
        artifacts=artifacts,
    )


@pytest.fixture
def session_store(storage, artifact_store) -> AnnotationSessionStore:
    return AnnotationSessionStore(storage, artifact_store)


@pytest.fixture
def coordinator(session_store, artifact_store) -> ReviewCoordinator:
    return ReviewCoordinator(session_store, artifact_store)


@pytest.fixture
def make_annotation():
    def _make(annotation_id: str, route: str = "/", viewport: str = "desktop", **kwargs):
        return Annotation(
            id=annotation_id,
            route=route,
            viewport=viewport,
            position=kwargs.pop("position", Position(x=0.25, y=0.5)),
            content=kwargs.pop("content", f"Feedback {annotation_id}"),
            **kwargs,
        )
    return _make
