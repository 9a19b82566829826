"""Show and change the resolution policy."""

from typing import Any, Dict

import click
from pydantic import ValidationError

from .base_command import BaseCommand


class PolicyCommand(BaseCommand):
    def show(self) -> None:
        manager = self.create_manager()
        self.echo_yaml(manager.policy.model_dump(mode="json"))

    def set(self, **changes: Any) -> None:
        updates: Dict[str, Any] = {k: v for k, v in changes.items() if v is not None}
        if not updates:
            self.fail("Nothing to change; see 'npr policy set --help'")
        manager = self.create_manager()
        try:
            policy = manager.set_policy(**updates)
        except ValidationError as e:
            self.fail(f"Invalid policy: {e}")
        click.echo("✅ Policy updated")
        self.echo_yaml(policy.model_dump(mode="json"))
