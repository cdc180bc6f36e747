from __future__ import annotations

from docsrv.models.release import InstallKey, ProjectKey, Release, VersionLink

__all__ = [
    "ProjectKey",
    "InstallKey",
    "Release",
    "VersionLink",
]
