"""Shared plumbing for CLI commands."""

import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import click
import yaml

from ...core.project_config_loader import ProjectConfigLoader
from ...models.config import ProjectConfig
from ...models.results import OperationResult
from ...presets.preset_manager import PresetManager
from ...utils.error_formatter import NPError


class BaseCommand:
    """Base for commands: project discovery, manager construction and output."""

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__module__)
        self.verbose = False
        self.project_root: Optional[Path] = None
        self._config: Optional[ProjectConfig] = None
        self._loader: Optional[ProjectConfigLoader] = None

    def setup_from_context(self) -> None:
        ctx = click.get_current_context(silent=True)
        obj: Dict[str, Any] = (ctx.find_root().obj if ctx else None) or {}
        self.verbose = obj.get("verbose", False)
        root = obj.get("project_root")
        self.project_root = Path(root) if root else Path.cwd()

    def ensure_project_root(self) -> Path:
        if self.project_root is None:
            self.setup_from_context()
        return self.project_root

    @property
    def loader(self) -> ProjectConfigLoader:
        if self._loader is None:
            self._loader = ProjectConfigLoader(self.ensure_project_root())
        return self._loader

    def load_config(self) -> ProjectConfig:
        if self._config is None:
            try:
                self._config = self.loader.load_project_config()
            except NPError as e:
                self.fail(str(e))
        return self._config

    def create_manager(self) -> PresetManager:
        config = self.load_config()
        storage_path = self.loader.storage_path(config)
        self.logger.debug(f"Using preset storage {storage_path}")
        manager = PresetManager.from_project_config(config, storage_path)
        manager.notifier.on_error(self._report_error)
        manager.load()
        return manager

    def _report_error(self, event) -> None:
        click.echo(f"⚠️  {event.error}", err=True)

    # -- output ---------------------------------------------------------

    def fail(self, message: str) -> None:
        click.echo(f"❌ {message}", err=True)
        sys.exit(1)

    def check(self, result: OperationResult, success: str) -> OperationResult:
        """Echo ``success`` for an OK result, otherwise fail with the result message."""
        if not result:
            self.fail(result.message or result.status.value)
        click.echo(f"✅ {success}")
        return result

    @staticmethod
    def echo_yaml(data: Any) -> None:
        click.echo(yaml.safe_dump(data, sort_keys=False, allow_unicode=True).rstrip())

    def read_settings_file(self, path: Optional[str]) -> Optional[Dict[str, Any]]:
        if path is None:
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                content = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            self.fail(f"Could not read settings from {path}: {e}")
        if content is None:
            return {}
        if not isinstance(content, dict):
            self.fail(f"{path} must contain a mapping of settings groups")
        return content.get("settings", content)
