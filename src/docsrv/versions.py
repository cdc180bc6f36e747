"""Semantic version parsing and ordering for release tags.

Tags are accepted with an optional leading ``v`` and optional minor/patch
components (``v1``, ``1.2``, ``v1.2.3-rc.1``). Anything else is not a version.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import semver

if TYPE_CHECKING:
    from collections.abc import Iterable

    from docsrv.models.release import Release


def parse_version(tag: str) -> semver.Version | None:
    """Parse a release tag. Returns ``None`` when the tag is not a version."""
    candidate = tag.strip()
    if candidate[:1] in ("v", "V"):
        candidate = candidate[1:]
    if not candidate:
        return None
    try:
        return semver.Version.parse(candidate, optional_minor_and_patch=True)
    except (ValueError, TypeError):
        return None


def is_version(tag: str) -> bool:
    return parse_version(tag) is not None


def is_newer(candidate: str, current: str) -> bool:
    """True iff ``candidate`` is strictly greater than ``current``.

    Unparseable tags never compare as newer, and never displace a value.
    """
    new = parse_version(candidate)
    old = parse_version(current)
    if new is None:
        return False
    if old is None:
        return False
    return new > old


def sort_releases(
    releases: Iterable[Release],
    min_version: semver.Version | None = None,
) -> list[Release]:
    """Drop unparseable and below-floor releases, then sort ascending."""
    parsed: list[tuple[semver.Version, Release]] = []
    for release in releases:
        version = parse_version(release.tag)
        if version is None:
            continue
        if min_version is not None and version < min_version:
            continue
        parsed.append((version, release))
    parsed.sort(key=lambda pair: pair[0])
    return [release for _, release in parsed]
