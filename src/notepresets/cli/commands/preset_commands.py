"""Preset CRUD, import and export commands."""

from pathlib import Path
from typing import Optional, Sequence

import click
from pydantic import ValidationError

from .base_command import BaseCommand
from ...parsers.config_parser import ConfigParser
from ...utils.error_formatter import SerializationError


class ListCommand(BaseCommand):
    def execute(self) -> None:
        manager = self.create_manager()
        default_id = manager.store.global_default_id
        presets = manager.list_presets()
        click.echo(f"📋 {len(presets)} preset(s):")
        for preset in presets:
            marker = " (global default)" if preset.id == default_id else ""
            groups = ", ".join(preset.settings.defined_groups()) or "no settings"
            click.echo(f"   • {preset.id}: {preset.name}{marker} [{groups}]")


class ShowCommand(BaseCommand):
    def execute(self, preset_id: str) -> None:
        manager = self.create_manager()
        preset = manager.get_preset(preset_id)
        if preset is None:
            self.fail(f"Preset '{preset_id}' not found")
        data = ConfigParser.dump_preset(preset)
        data["usedBy"] = manager.presets_using(preset_id)
        self.echo_yaml(data)


class CreateCommand(BaseCommand):
    def execute(
        self,
        name: str,
        preset_id: Optional[str] = None,
        description: str = "",
        from_file: Optional[str] = None,
    ) -> None:
        manager = self.create_manager()
        settings = self.read_settings_file(from_file)
        try:
            result = manager.create_preset(name, description, settings, preset_id)
        except ValidationError as e:
            self.fail(f"Invalid settings: {e}")
        self.check(result, f"Created preset '{result.value.id if result else ''}'")


class UpdateCommand(BaseCommand):
    def execute(
        self,
        preset_id: str,
        from_file: Optional[str] = None,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> None:
        if from_file is None and name is None and description is None:
            self.fail("Nothing to update: pass --from-file, --name or --description")
        manager = self.create_manager()
        settings = self.read_settings_file(from_file)
        try:
            result = manager.update_preset(preset_id, settings, name, description)
        except ValidationError as e:
            self.fail(f"Invalid settings: {e}")
        self.check(result, f"Updated preset '{preset_id}'")


class DeleteCommand(BaseCommand):
    def execute(self, preset_id: str) -> None:
        manager = self.create_manager()
        usage = manager.presets_using(preset_id)
        if not manager.delete_preset(preset_id):
            self.fail(f"Preset '{preset_id}' not found")
        click.echo(f"✅ Deleted preset '{preset_id}'")
        for folder in usage["folders"]:
            click.echo(f"   unassigned folder {folder}")
        for tag in usage["tags"]:
            click.echo(f"   unassigned tag {tag}")
        if usage["global_default"]:
            click.echo("   cleared global default")


class RenameCommand(BaseCommand):
    def execute(self, old_id: str, new_id: str) -> None:
        manager = self.create_manager()
        self.check(manager.rename_preset(old_id, new_id), f"Renamed '{old_id}' to '{new_id}'")


class CloneCommand(BaseCommand):
    def execute(self, preset_id: str, name: Optional[str] = None) -> None:
        manager = self.create_manager()
        result = manager.clone_preset(preset_id, name)
        self.check(result, f"Cloned '{preset_id}' as '{result.value.id if result else ''}'")


class ImportCommand(BaseCommand):
    def execute(self, file_path: str) -> None:
        manager = self.create_manager()
        try:
            text = Path(file_path).read_text(encoding="utf-8")
            result = manager.import_presets(text, source=file_path)
        except OSError as e:
            self.fail(f"Could not read {file_path}: {e}")
        except SerializationError as e:
            self.fail(str(e))
        imported = result.value
        if not imported:
            self.fail(f"No presets imported from {file_path}")
        click.echo(f"✅ Imported {len(imported)} preset(s)")
        for preset in imported:
            click.echo(f"   • {preset.id}: {preset.name}")


class ExportCommand(BaseCommand):
    def execute(self, preset_ids: Sequence[str], fmt: str = "json", output: Optional[str] = None) -> None:
        manager = self.create_manager()
        result = manager.export_presets(list(preset_ids) or None, fmt)
        if not result:
            self.fail(result.message)
        if output is None:
            click.echo(result.value.rstrip())
            return
        Path(output).write_text(result.value, encoding="utf-8")
        click.echo(f"✅ Exported to {output}")
