"""Route manifest builder — canonical route list from heterogeneous sources."""

from __future__ import annotations

import logging

from routeshot.discovery.parsers import RouteSourceParser, default_parsers
from routeshot.errors import DuplicateRouteError
from routeshot.models.routes import RouteDescriptor, SourceTree

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDE_PREFIXES = ("/routeshot",)


def _is_excluded(path: str, prefixes: tuple[str, ...] | list[str]) -> bool:
    for prefix in prefixes:
        prefix = prefix.rstrip("/")
        if prefix and (path == prefix or path.startswith(prefix + "/")):
            return True
    return False


def build(
    source_tree: SourceTree,
    parsers: list[RouteSourceParser] | None = None,
    exclude_prefixes: tuple[str, ...] | list[str] = DEFAULT_EXCLUDE_PREFIXES,
) -> list[RouteDescriptor]:
    """Build the route manifest for a source tree.

    Pure function of its input: reads nothing but the given tree. Raises
    MalformedRouteError for invalid segment placement and DuplicateRouteError
    when two sources normalize to the same canonical path.
    """
    parsers = parsers if parsers is not None else default_parsers()
    by_path: dict[str, RouteDescriptor] = {}

    for parser in parsers:
        discovered = parser.parse(source_tree)
        logger.debug("%s found %d route(s)", type(parser).__name__, len(discovered))
        for route in discovered:
            if _is_excluded(route.path, exclude_prefixes):
                logger.debug("Excluding tool route %s (%s)", route.path, route.source)
                continue
            existing = by_path.get(route.path)
            if existing is not None:
                raise DuplicateRouteError(route.path, existing.source, route.source)
            by_path[route.path] = route

    manifest = [by_path[path] for path in sorted(by_path)]
    logger.info("Route manifest built: %d route(s)", len(manifest))
    return manifest
