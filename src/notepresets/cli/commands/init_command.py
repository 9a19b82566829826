"""Initialize a notes project for presets."""

import click

from .base_command import BaseCommand
from ...core.project_config_loader import CONFIG_FILENAME, default_config_text


class InitCommand(BaseCommand):
    def execute(self, name: str = None) -> None:
        project_root = self.ensure_project_root()
        config_file = project_root / CONFIG_FILENAME
        if config_file.exists():
            self.fail(f"{CONFIG_FILENAME} already exists in {project_root}")

        project_root.mkdir(parents=True, exist_ok=True)
        config_file.write_text(default_config_text(name or project_root.name), encoding="utf-8")
        manager = self.create_manager()
        storage = self.loader.storage_path(self.load_config())
        click.echo(f"✅ Initialized {config_file}")
        click.echo(f"   storage: {storage} ({len(manager.list_presets())} preset)")
