"""Tests for the capture orchestrator, browser helpers and artifact store."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from routeshot.capture.artifact_store import ArtifactStore, blob_key, route_slug
from routeshot.capture.browser import create_capture_context, wait_for_stable_render
from routeshot.capture.orchestrator import CaptureOrchestrator
from routeshot.errors import NonSerializableFixtureError
from routeshot.models.capture import CaptureArtifact, CaptureStatus
from routeshot.models.config import ViewportSpec
from routeshot.models.fixtures import FixtureProfile


def _keys(result):
    return {a.key for a in result.artifacts}


# ============================================================================
# Browser helpers
# ============================================================================


class TestCreateCaptureContext:
    """Tests for create_capture_context()."""

    @pytest.mark.asyncio
    async def test_viewport_and_pinned_rendering(self):
        mock_browser = AsyncMock()
        mock_context = AsyncMock()
        mock_browser.new_context = AsyncMock(return_value=mock_context)

        await create_capture_context(mock_browser, ViewportSpec(name="m", width=375, height=667))

        kwargs = mock_browser.new_context.call_args.kwargs
        assert kwargs["viewport"] == {"width": 375, "height": 667}
        assert kwargs["device_scale_factor"] == 1
        assert kwargs["timezone_id"] == "UTC"
        mock_context.add_init_script.assert_not_called()

    @pytest.mark.asyncio
    async def test_init_script_applied(self):
        mock_browser = AsyncMock()
        mock_context = AsyncMock()
        mock_browser.new_context = AsyncMock(return_value=mock_context)

        await create_capture_context(mock_browser, ViewportSpec(), init_script="window.x = 1;")

        mock_context.add_init_script.assert_called_once_with("window.x = 1;")


class TestWaitForStableRender:
    """Tests for wait_for_stable_render()."""

    @pytest.mark.asyncio
    async def test_no_settle_delay_by_default(self):
        page = AsyncMock()
        await wait_for_stable_render(page)
        page.wait_for_load_state.assert_called_once_with("networkidle", timeout=30000)
        page.evaluate.assert_called_once()
        page.wait_for_timeout.assert_not_called()

    @pytest.mark.asyncio
    async def test_settle_delay(self):
        page = AsyncMock()
        await wait_for_stable_render(page, settle_ms=250)
        page.wait_for_timeout.assert_called_once_with(250)

    @pytest.mark.asyncio
    async def test_custom_timeout_bounds_network_idle(self):
        page = AsyncMock()
        await wait_for_stable_render(page, timeout_ms=5000)
        page.wait_for_load_state.assert_called_once_with("networkidle", timeout=5000)

    @pytest.mark.asyncio
    async def test_render_check_that_never_settles_times_out(self):
        page = AsyncMock()

        async def never_settles(script):
            await asyncio.Event().wait()

        page.evaluate = never_settles
        with pytest.raises(asyncio.TimeoutError):
            await wait_for_stable_render(page, timeout_ms=20)
        page.wait_for_timeout.assert_not_called()


# ============================================================================
# Orchestrator
# ============================================================================


class TestCaptureOrchestratorRun:
    """Tests for CaptureOrchestrator.run()."""

    @pytest.mark.asyncio
    async def test_captures_full_cartesian_product(
        self, project_config, routes, viewports, fixture_profile, fake_browser_factory,
    ):
        browser = fake_browser_factory()
        result = await CaptureOrchestrator(project_config).run(
            routes, viewports, fixture_profile, browser=browser,
        )

        assert result.requested == 6
        assert len(result.artifacts) == 6
        assert _keys(result) == {(r.path, v.name) for r in routes for v in viewports}
        assert all(a.status == CaptureStatus.OK for a in result.artifacts)
        assert result.succeeded
        assert result.failed == []
        assert not result.cancelled

    @pytest.mark.asyncio
    async def test_navigates_to_resolved_urls(
        self, project_config, routes, viewports, fixture_profile, fake_browser_factory,
    ):
        browser = fake_browser_factory()
        result = await CaptureOrchestrator(project_config).run(
            routes, viewports, fixture_profile, browser=browser,
        )

        assert "http://localhost:5173/product/red-shoes/details" in browser.navigations
        details = [a for a in result.artifacts if a.route == "/product/:slug/details"]
        assert all(a.url.endswith("/product/red-shoes/details") for a in details)

    @pytest.mark.asyncio
    async def test_each_pair_gets_own_context_with_fixture_script(
        self, project_config, routes, viewports, fixture_profile, fake_browser_factory,
    ):
        browser = fake_browser_factory()
        await CaptureOrchestrator(project_config).run(
            routes, viewports, fixture_profile, browser=browser,
        )

        assert len(browser.contexts) == 6
        assert all(ctx.closed for ctx in browser.contexts)
        assert all(len(ctx.init_scripts) == 1 for ctx in browser.contexts)
        sizes = {(c.kwargs["viewport"]["width"], c.kwargs["viewport"]["height"])
                 for c in browser.contexts}
        assert sizes == {(375, 667), (1440, 900)}

    @pytest.mark.asyncio
    async def test_failure_is_isolated(
        self, project_config, routes, viewports, fixture_profile, fake_browser_factory,
    ):
        browser = fake_browser_factory(
            fail_on={"/about": TimeoutError("Navigation timeout of 30000 ms exceeded")},
        )
        result = await CaptureOrchestrator(project_config).run(
            routes, viewports, fixture_profile, browser=browser,
        )

        assert len(result.artifacts) == 6
        failed = [a for a in result.artifacts if a.status == CaptureStatus.FAILED]
        assert {a.key for a in failed} == {("/about", "mobile"), ("/about", "desktop")}
        assert all("Navigation timeout" in a.error for a in failed)
        assert {(f.route, f.viewport) for f in result.failed} == {a.key for a in failed}
        assert result.succeeded
        assert all(ctx.closed for ctx in browser.contexts)

    @pytest.mark.asyncio
    async def test_http_error_marks_failed(
        self, project_config, routes, viewports, fixture_profile, fake_browser_factory,
    ):
        browser = fake_browser_factory(status_for={"http://localhost:5173/about": 500})
        result = await CaptureOrchestrator(project_config).run(
            routes, viewports, fixture_profile, browser=browser,
        )
        about = [a for a in result.artifacts if a.route == "/about"]
        assert all(a.status == CaptureStatus.FAILED for a in about)
        assert all("HTTP 500" in a.error for a in about)

    @pytest.mark.asyncio
    async def test_all_failures_still_return_every_key(
        self, project_config, routes, viewports, fixture_profile, fake_browser_factory,
    ):
        browser = fake_browser_factory(crash_pages=True)
        result = await CaptureOrchestrator(project_config).run(
            routes, viewports, fixture_profile, browser=browser,
        )
        assert len(result.artifacts) == 6
        assert len(result.failed) == 6
        assert not result.succeeded
        assert all(ctx.closed for ctx in browser.contexts)

    @pytest.mark.asyncio
    async def test_missing_route_params_fail_only_that_route(
        self, project_config, routes, viewports, fake_browser_factory,
    ):
        profile = FixtureProfile(id="anonymous")
        browser = fake_browser_factory()
        result = await CaptureOrchestrator(project_config).run(
            routes, viewports, profile, browser=browser,
        )

        assert len(result.artifacts) == 6
        failed = {a.key for a in result.artifacts if a.status == CaptureStatus.FAILED}
        assert failed == {("/product/:slug/details", "mobile"), ("/product/:slug/details", "desktop")}
        assert len(browser.contexts) == 4

    @pytest.mark.asyncio
    async def test_non_serializable_profile_aborts_before_browser(
        self, project_config, routes, viewports, fake_browser_factory,
    ):
        profile = FixtureProfile(id="bad", global_state={"onLoad": print})
        browser = fake_browser_factory()
        with pytest.raises(NonSerializableFixtureError):
            await CaptureOrchestrator(project_config).run(
                routes, viewports, profile, browser=browser,
            )
        assert browser.contexts == []

    @pytest.mark.asyncio
    async def test_respects_parallel_limit(
        self, project_config, routes, viewports, fixture_profile, fake_browser_factory,
    ):
        browser = fake_browser_factory()
        in_flight = 0
        peak = 0
        original_new_context = browser.new_context

        async def tracking_new_context(**kwargs):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            context = await original_new_context(**kwargs)
            original_close = context.close

            async def close():
                nonlocal in_flight
                in_flight -= 1
                await original_close()

            context.close = close
            await asyncio.sleep(0)
            return context

        browser.new_context = tracking_new_context
        await CaptureOrchestrator(project_config).run(
            routes, viewports, fixture_profile, browser=browser,
        )
        assert peak <= project_config.max_parallel_contexts

    @pytest.mark.asyncio
    async def test_stores_images_when_store_attached(
        self, project_config, routes, viewports, fixture_profile, fake_browser_factory,
        artifact_store,
    ):
        browser = fake_browser_factory()
        result = await CaptureOrchestrator(project_config, artifact_store).run(
            routes, viewports, fixture_profile, browser=browser,
        )

        for artifact in result.artifacts:
            assert artifact.blob_key is not None
            assert artifact_store.read_image(artifact.blob_key) == artifact.image_bytes
        loaded = artifact_store.load_run()
        assert loaded.run_id == result.run_id
        assert len(loaded.artifacts) == 6
        assert all(a.image_bytes == b"" for a in loaded.artifacts)

    @pytest.mark.asyncio
    async def test_launches_and_closes_browser_when_none_given(
        self, project_config, routes, viewports, fixture_profile, fake_browser_factory,
    ):
        browser = fake_browser_factory()
        playwright = MagicMock()
        playwright.chromium.launch = AsyncMock(return_value=browser)
        manager = MagicMock()
        manager.__aenter__ = AsyncMock(return_value=playwright)
        manager.__aexit__ = AsyncMock(return_value=False)

        with patch("routeshot.capture.orchestrator.async_playwright", return_value=manager):
            result = await CaptureOrchestrator(project_config).run(
                routes, viewports, fixture_profile,
            )

        assert len(result.artifacts) == 6
        playwright.chromium.launch.assert_called_once_with(headless=True)
        assert browser.closed


class TestCaptureCancellation:
    """Tests for run-level cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_event_abandons_unfinished_pairs(
        self, project_config, routes, fixture_profile, fake_browser_factory,
    ):
        viewports = [ViewportSpec(name="desktop", width=1440, height=900)]
        browser = fake_browser_factory(hang_on=("/about",))
        cancel = asyncio.Event()
        orchestrator = CaptureOrchestrator(project_config.model_copy(
            update={"max_parallel_contexts": 3},
        ))

        task = asyncio.create_task(orchestrator.run(
            routes, viewports, fixture_profile, cancel_event=cancel, browser=browser,
        ))
        await asyncio.wait_for(browser.hang_started.wait(), timeout=5)
        for _ in range(20):
            await asyncio.sleep(0)
        cancel.set()
        result = await asyncio.wait_for(task, timeout=5)

        assert result.cancelled
        assert ("/about", "desktop") not in _keys(result)
        assert _keys(result) == {("/", "desktop"), ("/product/:slug/details", "desktop")}
        assert all(a.status == CaptureStatus.OK for a in result.artifacts)
        assert all(ctx.closed for ctx in browser.contexts)

    @pytest.mark.asyncio
    async def test_cancel_before_start_records_nothing(
        self, project_config, routes, viewports, fixture_profile, fake_browser_factory,
    ):
        browser = fake_browser_factory()
        cancel = asyncio.Event()
        cancel.set()
        result = await CaptureOrchestrator(project_config).run(
            routes, viewports, fixture_profile, cancel_event=cancel, browser=browser,
        )
        assert result.artifacts == []
        assert result.cancelled
        assert browser.contexts == []

    @pytest.mark.asyncio
    async def test_task_cancellation_closes_every_context(
        self, project_config, routes, viewports, fixture_profile, fake_browser_factory,
    ):
        browser = fake_browser_factory(hang_on=("/", "/about", "/details"))
        task = asyncio.create_task(CaptureOrchestrator(project_config).run(
            routes, viewports, fixture_profile, browser=browser,
        ))
        await asyncio.wait_for(browser.hang_started.wait(), timeout=5)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert browser.contexts
        assert all(ctx.closed for ctx in browser.contexts)


# ============================================================================
# Artifact store
# ============================================================================


class TestArtifactStore:
    """Tests for blob keys and persistence."""

    def test_route_slug_is_readable_and_distinct(self):
        assert route_slug("/").startswith("index-")
        assert route_slug("/product/:slug").startswith("product_slug-")
        assert route_slug("/a_b") != route_slug("/a/b")

    def test_blob_key_layout(self):
        key = blob_key("capture_1", "/about", "desktop")
        assert key.startswith("captures/capture_1/images/about-")
        assert key.endswith("__desktop.png")

    def test_recapture_overwrites(self, artifact_store: ArtifactStore):
        first = CaptureArtifact(route="/", viewport="desktop", image_bytes=b"one",
                                captured_at="t", status=CaptureStatus.OK)
        second = CaptureArtifact(route="/", viewport="desktop", image_bytes=b"two",
                                 captured_at="t", status=CaptureStatus.OK)
        artifact_store.store_artifact("run", first)
        artifact_store.store_artifact("run", second)
        assert first.blob_key == second.blob_key
        assert artifact_store.read_image(second.blob_key) == b"two"

    def test_failed_artifacts_are_not_stored(self, artifact_store: ArtifactStore):
        failed = CaptureArtifact(route="/", viewport="desktop", captured_at="t",
                                 status=CaptureStatus.FAILED, error="boom")
        artifact_store.store_artifact("run", failed)
        assert failed.blob_key is None

    def test_load_without_runs(self, artifact_store: ArtifactStore):
        with pytest.raises(FileNotFoundError):
            artifact_store.load_run()
