"""Configuration models for routeshot."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from routeshot.models.fixtures import FixtureProfile
from routeshot.models.routes import RouteTableEntry


class ViewportSpec(BaseModel):
    name: str = "desktop"
    width: int = Field(default=1440, gt=0)
    height: int = Field(default=900, gt=0)


class ProjectConfig(BaseModel):
    # Target
    base_url: str
    project_root: str = "."
    storage_dir: str = ".routeshot"

    # Discovery
    route_table: list[RouteTableEntry] = Field(default_factory=list)
    exclude_prefixes: list[str] = Field(default_factory=lambda: ["/routeshot"])
    mount_prefix: str = "/routeshot"

    # Fixtures
    fixture_profiles: dict[str, FixtureProfile] = Field(default_factory=dict)
    default_profile: str = "anonymous"

    # Capture
    viewports: list[ViewportSpec] = Field(
        default_factory=lambda: [
            ViewportSpec(name="mobile", width=375, height=667),
            ViewportSpec(name="desktop", width=1440, height=900),
        ]
    )
    max_parallel_contexts: int = Field(default=3, gt=0)
    navigation_timeout_ms: int = 30000
    settle_ms: int = 0
    full_page: bool = True
    headless: bool = True

    @field_validator("base_url", mode="before")
    @classmethod
    def resolve_env_base_url(cls, v: str) -> str:
        if isinstance(v, str) and v.startswith("env:"):
            env_var = v[4:]
            resolved = os.environ.get(env_var)
            if resolved is None:
                raise ValueError(f"Environment variable '{env_var}' not set")
            return resolved
        return v

    @field_validator("viewports")
    @classmethod
    def unique_viewport_names(cls, v: list[ViewportSpec]) -> list[ViewportSpec]:
        names = [vp.name for vp in v]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate viewport names: {', '.join(duplicates)}")
        return v

    def get_profile(self, profile_id: Optional[str] = None) -> FixtureProfile:
        """Return the named fixture profile, or an anonymous one if none is configured."""
        profile_id = profile_id or self.default_profile
        if profile_id in self.fixture_profiles:
            return self.fixture_profiles[profile_id]
        if profile_id == "anonymous":
            return FixtureProfile(id="anonymous")
        raise KeyError(f"Unknown fixture profile: {profile_id}")

    @property
    def storage_path(self) -> Path:
        return Path(self.project_root) / self.storage_dir

    @classmethod
    def load(cls, path: str | Path) -> "ProjectConfig":
        """Load config from a JSON file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            data = json.load(f)
        return cls(**data)

    def save(self, path: str | Path) -> None:
        """Save config to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2)
