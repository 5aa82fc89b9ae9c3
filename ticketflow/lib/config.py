"""
Lifecycle configuration loader for ticketflow.

Loads .repo/lifecycle.json, validates it against the lifecycle schema and
compiles its naming patterns. Loaded once per process per config path.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from ticketflow.lib import validate
from ticketflow.lib.constants import CONFIG_DIRNAME, LIFECYCLE_CONFIG_FILENAME
from ticketflow.lib.errors import ConfigError
from ticketflow.workflow.state_machine import LifecycleStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LifecycleConfig:
    """Validated lifecycle configuration from lifecycle.json"""
    version: str
    branch_pattern: str
    branch_regex: re.Pattern
    allowed_prefixes: tuple[str, ...]
    pr_title_pattern: str
    pr_title_regex: re.Pattern
    documents_directory: Path  # Absolute, resolved against root
    root: Path
    config_path: Path
    base_branch: str = "main"
    remote: str = "origin"
    statuses: tuple[str, ...] = field(default_factory=lambda: tuple(s.value for s in LifecycleStatus))

    def as_dict(self) -> dict:
        return {
            "branchPattern": self.branch_pattern,
            "prTitlePattern": self.pr_title_pattern,
            "documentsDirectory": str(self.documents_directory),
        }


# Cache keyed by config path
_config_cache: dict[Path, LifecycleConfig] = {}


def get_config_path(root: Path) -> Path:
    return root / CONFIG_DIRNAME / LIFECYCLE_CONFIG_FILENAME


def _compile(pattern: str, what: str) -> re.Pattern:
    try:
        return re.compile(pattern)
    except re.error as e:
        raise ConfigError(f"Invalid {what} pattern in lifecycle config: {e}") from None


def load_lifecycle_config(root: Path, force_reload: bool = False) -> LifecycleConfig:
    """Load lifecycle.json under root and return LifecycleConfig.

    Raises:
        ConfigError: If the file is missing, violates the schema, carries a
            pattern that fails to compile, or lists statuses other than the
            fixed lifecycle.
    """
    root = Path(root).resolve()
    config_path = get_config_path(root)

    if not force_reload and config_path in _config_cache:
        return _config_cache[config_path]

    data = validate.validate_file(config_path, "lifecycle")

    expected_statuses = [s.value for s in LifecycleStatus]
    statuses = data.get("statuses", expected_statuses)
    if statuses != expected_statuses:
        raise ConfigError(
            f"Lifecycle statuses must be exactly {expected_statuses}, got {statuses}"
        )

    branches = data["branches"]
    config = LifecycleConfig(
        version=data["version"],
        branch_pattern=branches["pattern"],
        branch_regex=_compile(branches["pattern"], "branch"),
        allowed_prefixes=tuple(branches["allowedPrefixes"]),
        pr_title_pattern=data["pullRequests"]["titlePattern"],
        pr_title_regex=_compile(data["pullRequests"]["titlePattern"], "pull request title"),
        documents_directory=(root / data["documents"]["directory"]).resolve(),
        root=root,
        config_path=config_path,
        base_branch=branches.get("baseBranch", "main"),
        remote=branches.get("remote", "origin"),
        statuses=tuple(statuses),
    )

    logger.debug(f"Loaded lifecycle config {config.version} from {config_path}")
    _config_cache[config_path] = config
    return config


def clear_config_cache() -> None:
    """Clear cached lifecycle configuration (for testing)."""
    _config_cache.clear()
