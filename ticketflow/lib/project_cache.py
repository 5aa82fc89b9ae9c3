"""
Project board field cache.

The board's field and option IDs are cached in .repo/projects.json by an
external refresh job. This module only reads that file into an immutable,
versioned snapshot which callers pass explicitly to every board operation.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from ticketflow.lib import validate
from ticketflow.lib.constants import CONFIG_DIRNAME, PROJECT_CACHE_FILENAME
from ticketflow.lib.errors import ConfigError, SoftSyncWarning

logger = logging.getLogger(__name__)

STATUS_FIELD = "Status"
ID_FIELD = "ID"


@dataclass(frozen=True)
class CachedField:
    id: str
    name: str
    options: dict[str, str] = field(default_factory=dict)  # option name -> option id


@dataclass(frozen=True)
class ProjectSnapshot:
    """Cached field/option map for one project board."""
    version: str
    project_id: str
    fields: dict[str, CachedField]
    path: Path | None = None

    def get_field(self, name: str) -> CachedField:
        try:
            return self.fields[name]
        except KeyError:
            raise SoftSyncWarning(f"Project cache missing {name} field metadata.") from None

    @property
    def status_field(self) -> CachedField:
        return self.get_field(STATUS_FIELD)

    @property
    def id_field(self) -> CachedField:
        return self.get_field(ID_FIELD)

    def status_option_id(self, status: str) -> str:
        option_id = self.status_field.options.get(status)
        if option_id is None:
            raise SoftSyncWarning(f'Status option "{status}" not found in project cache.')
        return option_id


def get_cache_path(root: Path) -> Path:
    return Path(root) / CONFIG_DIRNAME / PROJECT_CACHE_FILENAME


def snapshot_from_dict(data: dict, path: Path | None = None) -> ProjectSnapshot:
    project = data["project"]
    fields = {}
    for name, raw in project.get("fields", {}).items():
        fields[name] = CachedField(
            id=raw["id"],
            name=name,
            options={o["name"]: o["id"] for o in raw.get("options", [])},
        )
    version = data.get("version") or data.get("generatedAt") or "unversioned"
    return ProjectSnapshot(
        version=str(version),
        project_id=str(project["id"]),
        fields=fields,
        path=path,
    )


def load_project_cache(root: Path) -> ProjectSnapshot:
    """Load the project field cache under root.

    Raises:
        SoftSyncWarning: If the cache is missing or malformed. Board sync is
            lower priority than the document and issue, so callers degrade
            instead of aborting.
    """
    cache_path = get_cache_path(root)
    try:
        data = validate.validate_file(cache_path, "projects")
    except ConfigError as e:
        raise SoftSyncWarning(f"Project cache unavailable: {e}") from None

    snapshot = snapshot_from_dict(data, cache_path)
    logger.debug(f"[PROJECT] Loaded project cache {snapshot.version} from {cache_path}")
    return snapshot
