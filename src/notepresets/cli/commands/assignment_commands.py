"""Folder/tag assignment and global default commands."""

from typing import Optional

import click

from .base_command import BaseCommand


class AssignCommand(BaseCommand):
    def execute(self, kind: str, key: str, preset_id: str, overrides_global: Optional[bool] = None) -> None:
        manager = self.create_manager()
        if kind == "folder":
            result = manager.assign_folder(key, preset_id, overrides_global)
        else:
            result = manager.assign_tag(key, preset_id, overrides_global)
        if not result:
            self.fail(result.message)
        record = result.value
        click.echo(
            f"✅ Assigned {kind} '{key}' to '{preset_id}' "
            f"({'overrides' if record.priority else 'yields to'} the global default)"
        )


class UnassignCommand(BaseCommand):
    def execute(self, kind: str, key: str) -> None:
        manager = self.create_manager()
        removed = manager.unassign_folder(key) if kind == "folder" else manager.unassign_tag(key)
        if removed:
            click.echo(f"✅ Unassigned {kind} '{key}'")
        else:
            click.echo(f"ℹ️  {kind.capitalize()} '{key}' had no assignment")


class AssignmentsCommand(BaseCommand):
    def execute(self) -> None:
        manager = self.create_manager()
        click.echo(f"🌐 Global default: {manager.store.global_default_id or '(none)'}")
        for label, index in (("Folders", manager.folder_index), ("Tags", manager.tag_index)):
            click.echo(f"{label}:")
            if not len(index):
                click.echo("   (none)")
            for key, assignment in index.items():
                flag = "" if assignment.priority else " [below global]"
                click.echo(f"   {key} -> {assignment.preset_id}{flag}")


class DefaultCommand(BaseCommand):
    def set(self, preset_id: str) -> None:
        manager = self.create_manager()
        self.check(manager.set_global_default(preset_id), f"Global default set to '{preset_id}'")

    def clear(self) -> None:
        manager = self.create_manager()
        if manager.clear_global_default():
            click.echo("✅ Global default cleared")
        else:
            click.echo("ℹ️  No global default was set")
