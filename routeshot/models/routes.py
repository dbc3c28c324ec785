"""Route manifest data structures produced by discovery."""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field

SOURCE_EXTENSIONS = (".tsx", ".ts", ".jsx", ".js", ".mdx")
SKIPPED_DIRECTORIES = {"node_modules", ".git", ".next", "dist", "build", ".routeshot"}


class SegmentKind(str, Enum):
    LITERAL = "literal"
    DYNAMIC = "dynamic"
    CATCH_ALL = "catch_all"


class RouteConvention(str, Enum):
    APP_ROUTER = "app-router"
    PAGES_ROUTER = "pages-router"
    FILE_BASED_ROUTER = "file-based-router"
    ROUTE_TABLE = "route-table"


class RouteSegment(BaseModel):
    kind: SegmentKind
    name: str

    @property
    def text(self) -> str:
        if self.kind == SegmentKind.DYNAMIC:
            return f":{self.name}"
        if self.kind == SegmentKind.CATCH_ALL:
            return f"*{self.name}"
        return self.name


class RouteDescriptor(BaseModel):
    path: str  # canonical, e.g. "/product/:slug"
    segments: list[RouteSegment] = Field(default_factory=list)
    source_convention: RouteConvention
    layout_chain: list[str] = Field(default_factory=list)  # outer to inner
    source: str = ""

    @property
    def is_dynamic(self) -> bool:
        return any(s.kind != SegmentKind.LITERAL for s in self.segments)

    @property
    def parameters(self) -> list[str]:
        return [s.name for s in self.segments if s.kind != SegmentKind.LITERAL]


def canonical_path(segments: list[RouteSegment]) -> str:
    """Render segments as the canonical route path."""
    if not segments:
        return "/"
    return "/" + "/".join(s.text for s in segments)


class RouteTableEntry(BaseModel):
    path: str
    source: str = "route-table"


class SourceTree(BaseModel):
    """Route-definition tree: POSIX file paths relative to the project root."""

    files: list[str] = Field(default_factory=list)
    route_table: list[RouteTableEntry] = Field(default_factory=list)

    @classmethod
    def from_directory(
        cls, root: str | Path, route_table: list[RouteTableEntry] | None = None,
    ) -> "SourceTree":
        """Walk a project directory and collect candidate route source files."""
        root = Path(root)
        files = []
        for path in root.rglob("*"):
            rel = path.relative_to(root)
            if any(part in SKIPPED_DIRECTORIES for part in rel.parts):
                continue
            if path.is_file() and path.suffix in SOURCE_EXTENSIONS:
                files.append(rel.as_posix())
        return cls(files=sorted(files), route_table=list(route_table or []))
