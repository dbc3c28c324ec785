"""Capture orchestrator — renders every (route, viewport) pair using Playwright."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
import uuid

from playwright.async_api import Browser, async_playwright

from routeshot.capture.artifact_store import ArtifactStore
from routeshot.capture.browser import (
    create_capture_context,
    launch_browser,
    wait_for_stable_render,
)
from routeshot.errors import MissingRouteParamsError
from routeshot.fixtures.injector import inject
from routeshot.models.annotation import utc_now
from routeshot.models.capture import (
    CaptureArtifact,
    CaptureRunResult,
    CaptureStatus,
    FailedCapture,
)
from routeshot.models.config import ProjectConfig, ViewportSpec
from routeshot.models.fixtures import FixtureProfile, InjectionPayload
from routeshot.models.routes import RouteDescriptor

logger = logging.getLogger(__name__)


class CaptureOrchestrator:
    """Captures screenshots for the Cartesian product of routes and viewports."""

    def __init__(self, config: ProjectConfig, artifact_store: ArtifactStore | None = None):
        self.config = config
        self.artifact_store = artifact_store

    async def run(
        self,
        routes: list[RouteDescriptor],
        viewports: list[ViewportSpec],
        profile: FixtureProfile,
        cancel_event: asyncio.Event | None = None,
        browser: Browser | None = None,
    ) -> CaptureRunResult:
        """Capture all pairs and return the artifacts plus a failure summary.

        Every pair runs in its own browser context. A failing pair yields a
        `failed` artifact and never stops the others. When `cancel_event` is
        set, unfinished pairs are abandoned and produce no artifact at all.
        Raises NonSerializableFixtureError before any browser work if the
        profile cannot be injected.
        """
        run_id = f"capture_{uuid.uuid4().hex[:8]}"
        started_at = utc_now()
        start_time = time.time()
        cancel_event = cancel_event or asyncio.Event()

        payloads, payload_errors = self._prepare_payloads(routes, profile)
        pairs = [(route, viewport) for route in routes for viewport in viewports]
        logger.info("Starting capture run %s: %d route(s) x %d viewport(s) = %d pair(s)",
                    run_id, len(routes), len(viewports), len(pairs))

        if browser is not None:
            results = await self._capture_all(
                browser, run_id, pairs, payloads, payload_errors, cancel_event,
            )
        else:
            async with async_playwright() as p:
                logger.debug("Launching Chromium (headless=%s)...", self.config.headless)
                browser = await launch_browser(p, headless=self.config.headless)
                try:
                    results = await self._capture_all(
                        browser, run_id, pairs, payloads, payload_errors, cancel_event,
                    )
                finally:
                    await browser.close()

        artifacts = [a for a in results if a is not None]
        duration = time.time() - start_time
        result = CaptureRunResult(
            run_id=run_id,
            profile_id=profile.id,
            started_at=started_at,
            completed_at=utc_now(),
            requested=len(pairs),
            artifacts=artifacts,
            failed=[
                FailedCapture(route=a.route, viewport=a.viewport, error=a.error or "")
                for a in artifacts if a.status == CaptureStatus.FAILED
            ],
            cancelled=cancel_event.is_set() and len(artifacts) < len(pairs),
            duration_seconds=round(duration, 2),
        )

        if self.artifact_store is not None:
            self.artifact_store.save_run(result)

        logger.info(
            "Capture run %s complete: %d ok, %d failed, %d abandoned (%.1fs)",
            run_id, len(result.ok_artifacts), len(result.failed),
            len(pairs) - len(artifacts), duration,
        )
        return result

    def _prepare_payloads(
        self, routes: list[RouteDescriptor], profile: FixtureProfile,
    ) -> tuple[dict[str, InjectionPayload], dict[str, str]]:
        payloads: dict[str, InjectionPayload] = {}
        errors: dict[str, str] = {}
        for route in routes:
            try:
                payloads[route.path] = inject(route, profile)
            except MissingRouteParamsError as e:
                # only this route is affected; it is reported per viewport
                errors[route.path] = str(e)
        return payloads, errors

    async def _capture_all(
        self,
        browser: Browser,
        run_id: str,
        pairs: list[tuple[RouteDescriptor, ViewportSpec]],
        payloads: dict[str, InjectionPayload],
        payload_errors: dict[str, str],
        cancel_event: asyncio.Event,
    ) -> list[CaptureArtifact | None]:
        semaphore = asyncio.Semaphore(self.config.max_parallel_contexts)
        total = len(pairs)

        async def _run_one(index: int, route: RouteDescriptor, viewport: ViewportSpec):
            async with semaphore:
                if cancel_event.is_set():
                    return None
                if route.path in payload_errors:
                    logger.warning("[FAILED] %s @ %s: %s",
                                   route.path, viewport.name, payload_errors[route.path])
                    return self._failed(route, viewport, "", payload_errors[route.path])

                logger.info("Capturing [%d/%d]: %s @ %s (%dx%d)", index + 1, total,
                            route.path, viewport.name, viewport.width, viewport.height)
                capture = asyncio.ensure_future(
                    self._capture_pair(browser, route, viewport, payloads[route.path])
                )
                waiter = asyncio.ensure_future(cancel_event.wait())
                try:
                    await asyncio.wait({capture, waiter}, return_when=asyncio.FIRST_COMPLETED)
                finally:
                    waiter.cancel()
                    if not capture.done():
                        capture.cancel()
                        with contextlib.suppress(asyncio.CancelledError):
                            await capture

                if capture.cancelled():
                    logger.info("Abandoned %s @ %s (run cancelled)", route.path, viewport.name)
                    return None
                return self._persist(run_id, capture.result())

        return list(await asyncio.gather(
            *(_run_one(i, route, viewport) for i, (route, viewport) in enumerate(pairs))
        ))

    async def _capture_pair(
        self,
        browser: Browser,
        route: RouteDescriptor,
        viewport: ViewportSpec,
        payload: InjectionPayload,
    ) -> CaptureArtifact:
        """Capture one pair. The context is closed on success, failure and cancellation."""
        url = self.config.base_url.rstrip("/") + payload.url_path
        context = None
        try:
            context = await create_capture_context(browser, viewport, payload.init_script)
            page = await context.new_page()
            response = await page.goto(
                url, wait_until="load", timeout=self.config.navigation_timeout_ms,
            )
            if response is not None and not response.ok:
                return self._failed(route, viewport, url, f"HTTP {response.status} for {url}")
            await wait_for_stable_render(
                page, self.config.settle_ms, self.config.navigation_timeout_ms,
            )
            image = await page.screenshot(full_page=self.config.full_page, type="png")
            logger.debug("Captured %s @ %s (%d bytes)", route.path, viewport.name, len(image))
            return CaptureArtifact(
                route=route.path,
                viewport=viewport.name,
                url=url,
                image_bytes=image,
                captured_at=utc_now(),
                status=CaptureStatus.OK,
            )
        except Exception as e:
            logger.warning("[FAILED] %s @ %s: %s", route.path, viewport.name, e)
            return self._failed(route, viewport, url, f"{type(e).__name__}: {e}")
        finally:
            if context is not None:
                try:
                    await context.close()
                except Exception as e:
                    logger.debug("Closing context for %s @ %s failed: %s",
                                 route.path, viewport.name, e)

    def _persist(self, run_id: str, artifact: CaptureArtifact) -> CaptureArtifact:
        if self.artifact_store is None or artifact.status != CaptureStatus.OK:
            return artifact
        try:
            return self.artifact_store.store_artifact(run_id, artifact)
        except OSError as e:
            logger.warning("Could not store image for %s @ %s: %s",
                           artifact.route, artifact.viewport, e)
            return artifact.model_copy(update={
                "status": CaptureStatus.FAILED,
                "error": f"Failed to store image: {e}",
                "image_bytes": b"",
            })

    @staticmethod
    def _failed(
        route: RouteDescriptor, viewport: ViewportSpec, url: str, error: str,
    ) -> CaptureArtifact:
        return CaptureArtifact(
            route=route.path,
            viewport=viewport.name,
            url=url,
            captured_at=utc_now(),
            status=CaptureStatus.FAILED,
            error=error,
        )
