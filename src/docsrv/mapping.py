"""Host → project mapping.

The hosts file is a YAML mapping keyed by request host::

    widget.example.com:
      repository: acme/widget
      min-version: v1.2.0

A missing file yields an empty mapping. Entries that do not validate are
dropped with a warning so the affected host behaves as unmapped; only a file
that cannot be parsed at all is fatal.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from docsrv.errors import ConfigError
from docsrv.models.release import ProjectKey
from docsrv.versions import parse_version

if TYPE_CHECKING:
    from pathlib import Path

    import semver

log = structlog.get_logger()


class ProjectConfig(BaseModel):
    """Single entry of the hosts file."""

    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    repository: str
    min_version: str = Field(default="", alias="min-version")

    @field_validator("repository")
    @classmethod
    def validate_repository(cls, v: str) -> str:
        parts = v.split("/")
        if len(parts) != 2 or not all(parts):
            raise ValueError(f"repository must be '<owner>/<project>', got {v!r}")
        return v

    @property
    def key(self) -> ProjectKey:
        owner, project = self.repository.split("/")
        return ProjectKey(owner, project)


def strip_port(host: str) -> str:
    """``'docs.example.com:9090'`` → ``'docs.example.com'``."""
    if host.startswith("["):
        # IPv6 literal: [::1]:9090
        end = host.find("]")
        return host[: end + 1] if end != -1 else host
    return host.split(":", 1)[0]


@dataclass
class HostMapping:
    """Lookup tables built from the hosts file."""

    by_host: dict[str, ProjectConfig] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.by_host)

    def project_for_host(self, host: str) -> ProjectKey | None:
        entry = self.by_host.get(strip_port(host))
        return entry.key if entry is not None else None

    def min_version_for(self, owner: str, project: str) -> semver.Version | None:
        """Reverse lookup used by the indexer, which only knows the project key."""
        key = ProjectKey(owner, project)
        for entry in self.by_host.values():
            if entry.key == key and entry.min_version:
                return parse_version(entry.min_version)
        return None


def build_mapping(raw: dict) -> HostMapping:
    """Validate raw entries, dropping the ones that do not fit the schema."""
    mapping = HostMapping()
    for host, value in raw.items():
        try:
            mapping.by_host[str(host)] = ProjectConfig.model_validate(value)
        except ValidationError as exc:
            log.warning("hosts_entry_invalid", host=host, errors=exc.error_count())
    return mapping


def load_mapping(path: Path) -> HostMapping:
    """Load the hosts file. Returns an empty mapping if the file is absent."""
    if not path.is_file():
        log.info("hosts_file_missing", path=str(path))
        return HostMapping()

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Unable to read hosts file {path}: {exc}") from exc

    if raw is None:
        return HostMapping()
    if not isinstance(raw, dict):
        raise ConfigError(f"Hosts file {path} must contain a mapping of hosts")

    mapping = build_mapping(raw)
    log.info("hosts_loaded", path=str(path), hosts=len(mapping))
    return mapping
