"""Fixture profile and injection payload structures."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class AuthState(BaseModel):
    model_config = ConfigDict(frozen=True)

    authenticated: bool = False
    user: Optional[dict[str, Any]] = None
    token: Optional[str] = None
    permissions: frozenset[str] = Field(default_factory=frozenset)


class FixtureProfile(BaseModel):
    """Named bundle of synthetic state used to render a route for capture.

    Fields cannot be reassigned once built. The dicts they hold are not
    deep-frozen; inject() copies what it reads, so a payload never changes
    after it is built.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    auth: AuthState = Field(default_factory=AuthState)
    global_state: dict[str, Any] = Field(default_factory=dict)
    feature_flags: dict[str, bool] = Field(default_factory=dict)
    # canonical route path -> segment name -> value (list allowed for catch-all)
    route_params: dict[str, dict[str, Any]] = Field(default_factory=dict)


class InjectionPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    route: str
    url_path: str
    profile_id: str
    state: dict[str, Any]
    storage_key: str
    init_script: str
