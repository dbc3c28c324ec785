"""Route source parsers — one per file-based routing convention.

Every parser turns its slice of a SourceTree into canonical RouteDescriptors.
Supporting a new convention means adding a subclass here and registering it
in default_parsers(); the manifest builder itself never changes.
"""

from __future__ import annotations

import logging
import posixpath
import re
from abc import ABC, abstractmethod
from pathlib import PurePosixPath

from routeshot.errors import MalformedRouteError
from routeshot.models.routes import (
    SOURCE_EXTENSIONS,
    RouteConvention,
    RouteDescriptor,
    RouteSegment,
    SegmentKind,
    SourceTree,
    canonical_path,
)

logger = logging.getLogger(__name__)

SPLAT_NAME = "_splat"
_NAME = r"([A-Za-z_][\w-]*)"

# (pattern, kind), checked in order; first match wins
_SEGMENT_PATTERNS = [
    (re.compile(rf"^\[\[\.\.\.{_NAME}\]\]$"), SegmentKind.CATCH_ALL),  # [[...slug]]
    (re.compile(rf"^\[\.\.\.{_NAME}\]$"), SegmentKind.CATCH_ALL),  # [...slug]
    (re.compile(rf"^\[{_NAME}\]$"), SegmentKind.DYNAMIC),  # [slug]
    (re.compile(rf"^\${_NAME}$"), SegmentKind.DYNAMIC),  # $slug
    (re.compile(rf"^:{_NAME}$"), SegmentKind.DYNAMIC),  # :slug
    (re.compile(rf"^\*{_NAME}$"), SegmentKind.CATCH_ALL),  # *slug
]
_MARKER_CHARS = ("[", "]", "$", ":", "*")


def parse_segment(token: str, source: str) -> RouteSegment:
    """Classify a single path token as literal, dynamic or catch-all."""
    if token in ("$", "*"):
        return RouteSegment(kind=SegmentKind.CATCH_ALL, name=SPLAT_NAME)
    for pattern, kind in _SEGMENT_PATTERNS:
        match = pattern.match(token)
        if match:
            return RouteSegment(kind=kind, name=match.group(1))
    if any(ch in token for ch in _MARKER_CHARS):
        raise MalformedRouteError(source, f"unrecognized parameter syntax {token!r}")
    return RouteSegment(kind=SegmentKind.LITERAL, name=token)


def make_descriptor(
    segments: list[RouteSegment],
    source: str,
    convention: RouteConvention,
    layout_chain: list[str] | None = None,
) -> RouteDescriptor:
    """Validate segment placement and build a RouteDescriptor."""
    seen: set[str] = set()
    for index, segment in enumerate(segments):
        if segment.kind == SegmentKind.LITERAL:
            continue
        if segment.kind == SegmentKind.CATCH_ALL and index != len(segments) - 1:
            raise MalformedRouteError(
                source, f"catch-all segment {segment.text!r} must be the last segment",
            )
        if segment.name in seen:
            raise MalformedRouteError(
                source, f"parameter {segment.name!r} appears more than once",
            )
        seen.add(segment.name)

    return RouteDescriptor(
        path=canonical_path(segments),
        segments=segments,
        source_convention=convention,
        layout_chain=list(layout_chain or []),
        source=source,
    )


def _strip_extension(path: str) -> str:
    for ext in SOURCE_EXTENSIONS:
        if path.endswith(ext):
            return path[: -len(ext)]
    return path


class RouteSourceParser(ABC):
    """Turns one routing convention's files into RouteDescriptors."""

    convention: RouteConvention
    default_roots: tuple[str, ...] = ()

    def __init__(self, roots: list[str] | tuple[str, ...] | None = None):
        roots = roots if roots is not None else self.default_roots
        self.roots = tuple(r.rstrip("/") + "/" for r in roots)

    def _root_for(self, file_path: str) -> str | None:
        matches = [r for r in self.roots if file_path.startswith(r)]
        return max(matches, key=len) if matches else None

    def _source_files(self, tree: SourceTree) -> list[tuple[str, str]]:
        """Return (file, root) for every source file under one of this parser's roots."""
        found = []
        for file_path in tree.files:
            if not file_path.endswith(SOURCE_EXTENSIONS):
                continue
            root = self._root_for(file_path)
            if root is not None:
                found.append((file_path, root))
        return found

    @abstractmethod
    def parse(self, tree: SourceTree) -> list[RouteDescriptor]:
        ...


class AppRouterParser(RouteSourceParser):
    """Directory-based routing: a `page` file marks a route, directories are segments."""

    convention = RouteConvention.APP_ROUTER
    default_roots = ("app", "src/app")

    def parse(self, tree: SourceTree) -> list[RouteDescriptor]:
        files = self._source_files(tree)
        layouts: dict[str, str] = {}
        for file_path, _root in files:
            if PurePosixPath(_strip_extension(file_path)).name == "layout":
                layouts[posixpath.dirname(file_path)] = _strip_extension(file_path)

        routes = []
        for file_path, root in files:
            if PurePosixPath(_strip_extension(file_path)).name != "page":
                continue
            dirs = file_path[len(root):].split("/")[:-1]
            if self._is_hidden(dirs):
                logger.debug("Skipping non-routable page %s", file_path)
                continue

            segments = [
                parse_segment(d, file_path) for d in dirs if not self._is_group(d)
            ]
            chain = []
            for depth in range(len(dirs) + 1):
                directory = posixpath.join(root.rstrip("/"), *dirs[:depth])
                if directory in layouts:
                    chain.append(layouts[directory])
            routes.append(make_descriptor(segments, file_path, self.convention, chain))
        return routes

    @staticmethod
    def _is_group(directory: str) -> bool:
        return directory.startswith("(") and directory.endswith(")")

    @staticmethod
    def _is_hidden(dirs: list[str]) -> bool:
        if dirs and dirs[0] == "api":
            return True
        # private folders, parallel slots, intercepting routes
        return any(d.startswith(("_", "@", "(.")) for d in dirs)


class PagesRouterParser(RouteSourceParser):
    """Flat file-to-path routing under a pages directory."""

    convention = RouteConvention.PAGES_ROUTER
    default_roots = ("pages", "src/pages")
    special_files = ("_app", "_document", "_error")

    def parse(self, tree: SourceTree) -> list[RouteDescriptor]:
        files = self._source_files(tree)
        app_layouts = {
            root: _strip_extension(f) for f, root in files
            if _strip_extension(f[len(root):]) == "_app"
        }

        routes = []
        for file_path, root in files:
            parts = _strip_extension(file_path[len(root):]).split("/")
            if parts[0] == "api" or parts[-1] in self.special_files:
                continue
            if parts[-1] == "index":
                parts = parts[:-1]
            segments = [parse_segment(p, file_path) for p in parts]
            chain = [app_layouts[root]] if root in app_layouts else []
            routes.append(make_descriptor(segments, file_path, self.convention, chain))
        return routes


class FileBasedRouterParser(RouteSourceParser):
    """Flat file-based routing in the TanStack Router style.

    `$name` is dynamic, a bare `$` is a catch-all, `.` in a file name separates
    segments, `__root` is the root layout and `_name` tokens are pathless
    layouts. A route file with child routes doubles as their layout; when the
    children include an index route, it is a layout only.
    """

    convention = RouteConvention.FILE_BASED_ROUTER
    default_roots = ("routes", "src/routes")
    root_layout = "__root"

    def parse(self, tree: SourceTree) -> list[RouteDescriptor]:
        entries: list[tuple[str, tuple[str, ...], str]] = []  # (file, key, last token)
        root_layout_id: str | None = None

        for file_path, root in self._source_files(tree):
            stem = _strip_extension(file_path)
            if stem.endswith(".lazy"):
                stem = stem[: -len(".lazy")]
            rel = stem[len(root):]
            tokens = [t for part in rel.split("/") for t in part.split(".")]
            if any(t.startswith("-") for t in tokens):
                continue
            if tokens == [self.root_layout]:
                root_layout_id = stem
                continue
            last = tokens[-1]
            key = tuple(tokens[:-1]) if last in ("index", "route") else tuple(tokens)
            entries.append((file_path, key, last))

        keys = [key for _, key, _ in entries]
        index_keys = {key for _, key, last in entries if last == "index"}

        layouts: dict[tuple[str, ...], str] = {}
        for file_path, key, last in entries:
            if last == "index":
                continue
            has_children = any(len(k) > len(key) and k[: len(key)] == key for k in keys)
            if has_children or last == "route" or self._is_pathless(last):
                layouts.setdefault(key, _strip_extension(file_path))

        routes = []
        for file_path, key, last in entries:
            own_id = _strip_extension(file_path)
            is_layout = layouts.get(key) == own_id
            if is_layout and (key in index_keys or self._is_pathless(last)):
                continue

            chain = [root_layout_id] if root_layout_id else []
            for depth in range(1, len(key) + 1):
                layout_id = layouts.get(key[:depth])
                if layout_id and layout_id != own_id:
                    chain.append(layout_id)

            # a trailing "_" un-nests a route from its parent layout
            segments = [
                parse_segment(t[:-1] if t.endswith("_") else t, file_path)
                for t in key if not self._is_pathless(t)
            ]
            routes.append(make_descriptor(segments, file_path, self.convention, chain))
        return routes

    @staticmethod
    def _is_pathless(token: str) -> bool:
        return token.startswith("_")


class RouteTableParser(RouteSourceParser):
    """Declarative route tables: explicit path strings with parameter placeholders."""

    convention = RouteConvention.ROUTE_TABLE

    def parse(self, tree: SourceTree) -> list[RouteDescriptor]:
        routes = []
        for entry in tree.route_table:
            source = f"{entry.source}:{entry.path}"
            tokens = [t for t in entry.path.strip().split("/") if t]
            segments = [parse_segment(t, source) for t in tokens]
            routes.append(make_descriptor(segments, source, self.convention))
        return routes


def default_parsers() -> list[RouteSourceParser]:
    return [
        AppRouterParser(),
        PagesRouterParser(),
        FileBasedRouterParser(),
        RouteTableParser(),
    ]
