"""Resolve the effective settings for a note."""

from pathlib import Path
from typing import Sequence

import click

from .base_command import BaseCommand
from ...core.file_context import MarkdownFileContextProvider


class ResolveCommand(BaseCommand):
    """Print the settings a note would be displayed with."""

    def execute(self, path: str, tags: Sequence[str], explain: bool = False, from_file: bool = False) -> None:
        manager = self.create_manager()
        tags = list(tags)
        if from_file:
            provider = MarkdownFileContextProvider(self.ensure_project_root())
            if not (self.ensure_project_root() / path).exists() and not Path(path).exists():
                self.fail(f"Note '{path}' does not exist")
            context = provider.context_for(path)
            path = context.path
            tags = context.tags + [t for t in tags if t not in context.tags]

        result = manager.explain(path, tags)
        if explain:
            click.echo(f"🔍 {path} tags={tags}")
            click.echo(
                f"   policy: {manager.policy.apply_mode.value}, {manager.policy.priority_order.value}, "
                f"{manager.policy.conflict_resolution.value}, {manager.policy.merge_strategy.value}"
            )
            for candidate in result.candidates:
                click.echo(f"   candidate {candidate.source} '{candidate.key}' -> {candidate.preset_id}")
            click.echo(f"   order (low to high): {', '.join(result.ordered_preset_ids)}")
            for group, source in result.group_sources.items():
                click.echo(f"   {group}: {source}")
            if result.fallback:
                click.echo("   fallback used")
            if result.merge_error is not None:
                click.echo(f"   merge error: {result.merge_error.title}")
        self.echo_yaml(result.settings.model_dump(by_alias=True, mode="json"))
