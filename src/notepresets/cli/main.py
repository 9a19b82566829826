"""Command line interface for note presets."""

import logging
from pathlib import Path
from typing import Optional

import click

from .. import __version__
from ..models.config import ApplyMode, ConflictResolution, MergeStrategy, PriorityOrder, StorageFormat, TagTieBreak
from .commands.assignment_commands import AssignCommand, AssignmentsCommand, DefaultCommand, UnassignCommand
from .commands.init_command import InitCommand
from .commands.policy_command import PolicyCommand
from .commands.preset_commands import (
    CloneCommand,
    CreateCommand,
    DeleteCommand,
    ExportCommand,
    ImportCommand,
    ListCommand,
    RenameCommand,
    ShowCommand,
    UpdateCommand,
)
from .commands.resolve_command import ResolveCommand


def configure_logging(verbose: bool = False, log_file: Optional[str] = None) -> Optional[Path]:
    """Console logging at WARNING (DEBUG when verbose), plus an optional DEBUG file log."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.setLevel(logging.DEBUG)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    root_logger.addHandler(console_handler)

    if not log_file:
        return None
    path = Path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(path, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    root_logger.addHandler(file_handler)
    return path


def _choices(enum_cls) -> click.Choice:
    return click.Choice([member.value for member in enum_cls])


@click.group()
@click.version_option(version=__version__, prog_name="npr")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option("--log-file", type=click.Path(dir_okay=False), help="Also write a debug log to this file")
@click.option(
    "--project-root",
    type=click.Path(file_okay=False),
    help="Directory holding npr.yaml (defaults to the current directory)",
)
@click.pass_context
def cli(ctx, verbose, log_file, project_root):
    """Note presets: per-folder and per-tag display settings for notes."""
    configure_logging(verbose, log_file)
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["project_root"] = project_root


@cli.command()
@click.option("--name", help="Project name (defaults to the directory name)")
def init(name):
    """Write a default npr.yaml and storage file."""
    InitCommand().execute(name)


@cli.command("list")
def list_presets():
    """List presets."""
    ListCommand().execute()


@cli.command()
@click.argument("preset_id")
def show(preset_id):
    """Show a preset and where it is used."""
    ShowCommand().execute(preset_id)


@cli.command()
@click.argument("name")
@click.option("--id", "preset_id", help="Explicit preset id")
@click.option("--description", default="", help="Preset description")
@click.option("--from-file", type=click.Path(exists=True, dir_okay=False), help="YAML file with settings groups")
def create(name, preset_id, description, from_file):
    """Create a preset."""
    CreateCommand().execute(name, preset_id, description, from_file)


@cli.command()
@click.argument("preset_id")
@click.option("--from-file", type=click.Path(exists=True, dir_okay=False), help="YAML file with settings groups")
@click.option("--name", help="New display name")
@click.option("--description", help="New description")
def update(preset_id, from_file, name, description):
    """Replace the settings groups given in --from-file."""
    UpdateCommand().execute(preset_id, from_file, name, description)


@cli.command()
@click.argument("preset_id")
def delete(preset_id):
    """Delete a preset and every assignment that uses it."""
    DeleteCommand().execute(preset_id)


@cli.command()
@click.argument("old_id")
@click.argument("new_id")
def rename(old_id, new_id):
    """Change a preset id, keeping its assignments."""
    RenameCommand().execute(old_id, new_id)


@cli.command()
@click.argument("preset_id")
@click.argument("name", required=False)
def clone(preset_id, name):
    """Copy a preset under a new name."""
    CloneCommand().execute(preset_id, name)


@cli.command("import")
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False))
def import_presets(file_path):
    """Import presets from a JSON or YAML file."""
    ImportCommand().execute(file_path)


@cli.command("export")
@click.argument("preset_ids", nargs=-1)
@click.option("--format", "fmt", type=_choices(StorageFormat), default="json", show_default=True)
@click.option("--output", "-o", type=click.Path(dir_okay=False), help="Write to a file instead of stdout")
def export_presets(preset_ids, fmt, output):
    """Export presets (all when no ids are given)."""
    ExportCommand().execute(preset_ids, fmt, output)


@cli.command()
@click.argument("kind", type=click.Choice(["folder", "tag"]))
@click.argument("key")
@click.argument("preset_id")
@click.option(
    "--override/--no-override",
    "overrides_global",
    default=None,
    help="Whether the assignment wins over the global default in merged mode",
)
def assign(kind, key, preset_id, overrides_global):
    """Assign a preset to a folder or tag."""
    AssignCommand().execute(kind, key, preset_id, overrides_global)


@cli.command()
@click.argument("kind", type=click.Choice(["folder", "tag"]))
@click.argument("key")
def unassign(kind, key):
    """Remove a folder or tag assignment."""
    UnassignCommand().execute(kind, key)


@cli.command()
def assignments():
    """List folder and tag assignments."""
    AssignmentsCommand().execute()


@cli.group()
def default():
    """Manage the global default preset."""


@default.command("set")
@click.argument("preset_id")
def default_set(preset_id):
    """Make a preset the global default."""
    DefaultCommand().set(preset_id)


@default.command("clear")
def default_clear():
    """Unset the global default."""
    DefaultCommand().clear()


@cli.group()
def policy():
    """Show or change how presets are resolved."""


@policy.command("show")
def policy_show():
    PolicyCommand().show()


@policy.command("set")
@click.option("--apply-mode", type=_choices(ApplyMode))
@click.option("--priority-order", type=_choices(PriorityOrder))
@click.option("--conflict-resolution", type=_choices(ConflictResolution))
@click.option("--merge-strategy", type=_choices(MergeStrategy))
@click.option("--tag-tie-break", type=_choices(TagTieBreak))
@click.option("--auto-apply/--no-auto-apply", default=None)
def policy_set(apply_mode, priority_order, conflict_resolution, merge_strategy, tag_tie_break, auto_apply):
    """Change policy fields; omitted options keep their value."""
    PolicyCommand().set(
        apply_mode=apply_mode,
        priority_order=priority_order,
        conflict_resolution=conflict_resolution,
        merge_strategy=merge_strategy,
        tag_tie_break=tag_tie_break,
        auto_apply=auto_apply,
    )


@cli.command()
@click.argument("path")
@click.option("--tag", "-t", "tags", multiple=True, help="Note tag (repeatable)")
@click.option("--explain", is_flag=True, help="Show candidates, ordering and group sources")
@click.option("--from-file", is_flag=True, help="Read tags from the markdown note at PATH")
def resolve(path, tags, explain, from_file):
    """Print the effective settings for a note."""
    ResolveCommand().execute(path, tags, explain, from_file)


if __name__ == "__main__":
    cli()
