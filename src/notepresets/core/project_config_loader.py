"""Loader for ``npr.yaml`` project configuration."""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from ..models.config import ProjectConfig
from ..utils.error_formatter import ErrorCategory, NPError

CONFIG_FILENAME = "npr.yaml"
STORAGE_PATH_ENV = "NPR_STORAGE_PATH"


class ProjectConfigLoader:
    """Loads project configuration from ``npr.yaml``."""

    def __init__(self, project_root: Path):
        self.project_root = Path(project_root)
        self.config_file = self.project_root / CONFIG_FILENAME
        self.logger = logging.getLogger(__name__)

    def load_project_config(self) -> ProjectConfig:
        """Load the project configuration.

        Returns:
            ProjectConfig; defaults when ``npr.yaml`` does not exist

        Raises:
            NPError: If the file is not valid YAML or holds invalid values
        """
        if not self.config_file.exists():
            self.logger.debug(f"No {CONFIG_FILENAME} in {self.project_root}, using defaults")
            config = ProjectConfig()
        else:
            config = self._parse(self._read())

        override = os.environ.get(STORAGE_PATH_ENV)
        if override:
            self.logger.info(f"Storage path overridden by {STORAGE_PATH_ENV}: {override}")
            config = config.model_copy(update={"storage_path": override})
        return config

    def storage_path(self, config: ProjectConfig) -> Path:
        """Storage location, relative paths taken from the project root."""
        path = Path(config.storage_path).expanduser()
        return path if path.is_absolute() else self.project_root / path

    def _read(self) -> Dict[str, Any]:
        try:
            with open(self.config_file, "r", encoding="utf-8") as f:
                content = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise NPError(
                category=ErrorCategory.CONFIG,
                code_number="001",
                title=f"Invalid YAML in {CONFIG_FILENAME}",
                details=str(e),
                suggestions=["Check indentation and quoting in the file"],
                context={"File": str(self.config_file)},
            ) from e
        except OSError as e:
            raise NPError(
                category=ErrorCategory.CONFIG,
                code_number="002",
                title=f"Could not read {CONFIG_FILENAME}",
                details=str(e),
                context={"File": str(self.config_file)},
            ) from e

        if content is None:
            return {}
        if not isinstance(content, dict):
            raise NPError(
                category=ErrorCategory.CONFIG,
                code_number="003",
                title=f"{CONFIG_FILENAME} must contain a mapping",
                details=f"Found {type(content).__name__} at the top level.",
                example="name: my_notes\nstorage_path: .npr/presets.json",
            )
        return content

    def _parse(self, content: Dict[str, Any]) -> ProjectConfig:
        try:
            return ProjectConfig(**content)
        except ValidationError as e:
            problems = [
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            ]
            raise NPError(
                category=ErrorCategory.CONFIG,
                code_number="004",
                title=f"Invalid values in {CONFIG_FILENAME}",
                details="\n".join(problems),
                suggestions=[
                    "Policy values use snake_case, e.g. apply_mode: folder_first",
                    f"Run 'npr init' in an empty directory to see a complete {CONFIG_FILENAME}",
                ],
                context={"File": str(self.config_file)},
            ) from e


def default_config_text(name: Optional[str] = None) -> str:
    """Contents written by ``npr init``."""
    config = ProjectConfig(name=name) if name else ProjectConfig()
    data = config.model_dump(mode="json", exclude={"storage_format"})
    return yaml.safe_dump(data, sort_keys=False)
