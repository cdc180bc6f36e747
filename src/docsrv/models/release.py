from __future__ import annotations

from typing import NamedTuple

from pydantic import BaseModel, ConfigDict


class ProjectKey(NamedTuple):
    """``(owner, project)`` pair. Compared exactly, case-sensitive."""

    owner: str
    project: str


class InstallKey(NamedTuple):
    owner: str
    project: str
    version: str


class Release(BaseModel):
    """A published, non-draft, non-prerelease tag of a project."""

    model_config = ConfigDict(frozen=True)

    tag: str  # e.g. "v1.2.3"
    source_url: str  # Downloadable source archive for the tag


class VersionLink(BaseModel):
    """Single entry of the versions.json listing."""

    text: str
    url: str
