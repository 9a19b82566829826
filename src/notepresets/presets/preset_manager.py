"""Preset management: one aggregate owning presets, assignments and policy."""

import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

from pydantic import ValidationError

from ..core.file_context import FileContext
from ..core.notifier import ChangeNotifier, EventHandler, EventKind, Subscription
from ..models.config import (
    Preset,
    PresetSettings,
    ProjectConfig,
    ResolutionPolicy,
    StorageFormat,
    utcnow,
)
from ..models.results import OperationResult, ResultStatus
from ..parsers.config_parser import ConfigParser, ConfigSnapshot
from ..storage.gateway import PersistenceGateway, gateway_for
from ..utils.error_formatter import SerializationError, StorageError
from .consistency import ConsistencyCoordinator
from .folder_index import FolderPresetIndex
from .resolver import MergeRule, PresetResolver, ResolutionResult
from .store import PresetStore, SettingsInput, to_base36
from .tag_index import TagPresetIndex


class PresetManager:
    """Facade over the preset store, both assignment indices and the resolver.

    Every public operation holds one re-entrant lock, so a rename or delete
    cascade is atomic with respect to concurrent resolutions. Successful
    mutations are persisted through the gateway when ``autosave`` is on;
    save failures are retried and then reported on the error channel.
    """

    def __init__(
        self,
        gateway: Optional[PersistenceGateway] = None,
        policy: Optional[ResolutionPolicy] = None,
        autosave: bool = True,
        save_retries: int = 2,
        tag_case_sensitive: bool = True,
        clock: Callable = utcnow,
    ):
        self.gateway = gateway
        self.autosave = autosave
        self.save_retries = save_retries
        self.logger = logging.getLogger(__name__)

        self.notifier = ChangeNotifier()
        self.store = PresetStore(self.notifier, clock)
        self.folder_index = FolderPresetIndex(self.store)
        self.tag_index = TagPresetIndex(self.store, case_sensitive=tag_case_sensitive)
        self.coordinator = ConsistencyCoordinator(self.store, self.folder_index, self.tag_index)
        self.resolver = PresetResolver(self.store, self.folder_index, self.tag_index, self.notifier)
        self.parser = ConfigParser()

        self.policy = policy or ResolutionPolicy()
        self.active_preset_id: Optional[str] = None
        self._lock = threading.RLock()

    @classmethod
    def from_project_config(cls, config: ProjectConfig, storage_path: Union[str, Path]) -> "PresetManager":
        return cls(
            gateway=gateway_for(storage_path, config.storage_format),
            policy=config.policy.model_copy(),
            autosave=config.autosave,
            save_retries=config.save_retries,
            tag_case_sensitive=config.tag_case_sensitive,
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> bool:
        """Load persisted state; returns ``False`` when it had to start over.

        A blob that cannot be read or validated never aborts startup: the
        manager starts from the bootstrap preset and reports the failure.
        """
        with self._lock:
            try:
                blob = self.gateway.load() if self.gateway is not None else None
                if blob is None:
                    self.logger.info("No stored presets, starting from the default preset")
                    self._reset()
                    self.save()
                    return True
                snapshot = self.parser.deserialize(blob, source=str(getattr(self.gateway, "path", "")) or None)
            except (SerializationError, StorageError) as e:
                self.logger.error(f"Could not load stored presets, starting from defaults:\n{e}")
                self._reset()
                self.notifier.report(e, operation="load")
                return False

            self._apply_snapshot(snapshot)
            if snapshot.migrated:
                self.save()
            return True

    def _reset(self) -> None:
        self.store.load([])
        self.folder_index.clear()
        self.tag_index.clear()
        self.store.bootstrap()
        self.active_preset_id = None

    def _apply_snapshot(self, snapshot: ConfigSnapshot) -> None:
        self.store.load(snapshot.presets, snapshot.global_default_id)
        if snapshot.global_default_id and not self.store.exists(snapshot.global_default_id):
            self.logger.warning(f"Dropping unknown global default preset '{snapshot.global_default_id}'")

        for index, assignments in (
            (self.folder_index, snapshot.folder_assignments),
            (self.tag_index, snapshot.tag_assignments),
        ):
            valid = {}
            for key, assignment in assignments.items():
                if self.store.exists(assignment.preset_id):
                    valid[key] = assignment
                else:
                    self.logger.warning(
                        f"Dropping {index.kind_label.lower()} assignment '{key}' to unknown preset "
                        f"'{assignment.preset_id}'"
                    )
            index.load(valid)

        self.policy = snapshot.policy
        if len(self.store) == 0:
            self.store.bootstrap()
        self.logger.info(
            f"Loaded {len(self.store)} preset(s), {len(self.folder_index)} folder and "
            f"{len(self.tag_index)} tag assignment(s)"
        )

    def snapshot(self) -> ConfigSnapshot:
        with self._lock:
            return ConfigSnapshot(
                presets=self.store.list_presets(),
                folder_assignments=dict(self.folder_index.items()),
                tag_assignments=dict(self.tag_index.items()),
                global_default_id=self.store.global_default_id,
                policy=self.policy.model_copy(),
            )

    def save(self) -> bool:
        """Persist the current state, retrying ``save_retries`` times."""
        if self.gateway is None:
            return True
        with self._lock:
            blob = self.parser.serialize(self.snapshot())
            last_error: Optional[Exception] = None
            for attempt in range(1, self.save_retries + 2):
                try:
                    self.gateway.save(blob)
                    return True
                except (StorageError, OSError) as e:
                    last_error = e
                    self.logger.warning(f"Saving presets failed (attempt {attempt}): {e}")
            self.logger.error(f"Giving up saving presets after {self.save_retries + 1} attempt(s)")
            error = last_error if isinstance(last_error, StorageError) else StorageError(str(last_error))
            self.notifier.report(error, operation="save")
            return False

    def _commit(self, result: Any) -> Any:
        if result and self.autosave:
            self.save()
        return result

    # ------------------------------------------------------------------
    # Presets
    # ------------------------------------------------------------------

    def create_preset(
        self,
        name: str,
        description: str = "",
        settings: Optional[SettingsInput] = None,
        preset_id: Optional[str] = None,
    ) -> OperationResult:
        with self._lock:
            return self._commit(self.store.create(name, description, settings, preset_id))

    def get_preset(self, preset_id: str) -> Optional[Preset]:
        with self._lock:
            return self.store.get(preset_id)

    def list_presets(self) -> List[Preset]:
        with self._lock:
            return self.store.list_presets()

    def update_preset(
        self,
        preset_id: str,
        settings: Optional[SettingsInput] = None,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> OperationResult:
        with self._lock:
            return self._commit(self.store.update(preset_id, settings, name, description))

    def delete_preset(self, preset_id: str) -> bool:
        with self._lock:
            deleted = self.store.delete(preset_id)
            if deleted and self.active_preset_id == preset_id:
                self.active_preset_id = None
            return self._commit(deleted)

    def rename_preset(self, old_id: str, new_id: str) -> OperationResult:
        with self._lock:
            result = self.store.rename(old_id, new_id)
            if result and self.active_preset_id == old_id:
                self.active_preset_id = result.value.id
            return self._commit(result)

    def clone_preset(self, preset_id: str, new_name: Optional[str] = None) -> OperationResult:
        with self._lock:
            return self._commit(self.store.clone(preset_id, new_name))

    def presets_using(self, preset_id: str) -> Dict[str, Any]:
        """Where a preset is referenced; empty lists when it is unused."""
        with self._lock:
            return {
                "folders": self.folder_index.list_keys_for(preset_id),
                "tags": self.tag_index.list_keys_for(preset_id),
                "global_default": self.store.global_default_id == preset_id,
            }

    # ------------------------------------------------------------------
    # Import / export
    # ------------------------------------------------------------------

    def export_presets(
        self,
        preset_ids: Optional[Iterable[str]] = None,
        fmt: Union[StorageFormat, str] = StorageFormat.JSON,
    ) -> OperationResult:
        """Document with the requested presets (all when ``preset_ids`` is None)."""
        with self._lock:
            if preset_ids is None:
                presets = self.store.list_presets()
            else:
                presets = []
                for preset_id in preset_ids:
                    preset = self.store.get(preset_id)
                    if preset is None:
                        self.logger.warning(f"Skipping unknown preset '{preset_id}' in export")
                        continue
                    presets.append(preset)
            if not presets:
                return OperationResult(ResultStatus.NOT_FOUND, None, "No presets to export")
            return OperationResult.ok(self.parser.export_document(presets, fmt))

    def import_presets(self, text: str, source: Optional[str] = None) -> OperationResult:
        """Add presets from a JSON or YAML document.

        Entries without ``id`` or ``name`` or with invalid settings are
        skipped. A colliding id gets a ``-<base36 timestamp>`` suffix, a
        colliding name a numeric suffix. Raises :class:`SerializationError`
        when the document itself cannot be parsed.
        """
        entries = self.parser.parse_import_document(text, source)
        with self._lock:
            imported: List[Preset] = []
            for position, entry in enumerate(entries, 1):
                if not isinstance(entry, dict) or not entry.get("id") or not entry.get("name"):
                    self.logger.warning(f"Skipping import entry {position}: 'id' and 'name' are required")
                    continue
                try:
                    preset = Preset.model_validate(entry)
                except ValidationError as e:
                    self.logger.warning(f"Skipping import entry {position} ('{entry.get('id')}'): {e}")
                    continue

                changes: Dict[str, Any] = {"is_default": False}
                if self.store.exists(preset.id):
                    changes["id"] = self._collision_free_id(preset.id)
                    self.logger.info(f"Preset id '{preset.id}' exists, importing as '{changes['id']}'")
                if self.store.get_by_name(preset.name) is not None:
                    changes["name"] = self._collision_free_name(preset.name)
                preset = preset.model_copy(update=changes)
                self.store.add(preset)
                imported.append(preset)

            if imported:
                self.notifier.emit(
                    EventKind.IMPORTED_BATCH,
                    preset_ids=[p.id for p in imported],
                    count=len(imported),
                )
                self.logger.info(f"Imported {len(imported)} preset(s)")
            return self._commit(OperationResult.ok(imported))

    def _collision_free_id(self, preset_id: str) -> str:
        candidate = f"{preset_id}-{to_base36(int(time.time() * 1000))}"
        unique, n = candidate, 1
        while self.store.exists(unique):
            unique = f"{candidate}-{n}"
            n += 1
        return unique

    def _collision_free_name(self, name: str) -> str:
        n = 2
        while self.store.get_by_name(f"{name} ({n})") is not None:
            n += 1
        return f"{name} ({n})"

    # ------------------------------------------------------------------
    # Assignments and global default
    # ------------------------------------------------------------------

    def assign_folder(self, folder_path: str, preset_id: str, overrides_global: Optional[bool] = None) -> OperationResult:
        with self._lock:
            return self._commit(self.folder_index.assign(folder_path, preset_id, overrides_global))

    def unassign_folder(self, folder_path: str) -> bool:
        with self._lock:
            return self._commit(self.folder_index.unassign(folder_path))

    def set_folder_priority(self, folder_path: str, overrides_global: bool) -> OperationResult:
        with self._lock:
            return self._commit(self.folder_index.set_priority(folder_path, overrides_global))

    def assign_tag(self, tag: str, preset_id: str, overrides_global: Optional[bool] = None) -> OperationResult:
        with self._lock:
            return self._commit(self.tag_index.assign(tag, preset_id, overrides_global))

    def unassign_tag(self, tag: str) -> bool:
        with self._lock:
            return self._commit(self.tag_index.unassign(tag))

    def set_tag_priority(self, tag: str, overrides_global: bool) -> OperationResult:
        with self._lock:
            return self._commit(self.tag_index.set_priority(tag, overrides_global))

    def set_global_default(self, preset_id: str) -> OperationResult:
        with self._lock:
            return self._commit(self.store.set_global_default(preset_id))

    def clear_global_default(self) -> bool:
        with self._lock:
            return self._commit(self.store.clear_global_default())

    # ------------------------------------------------------------------
    # Policy
    # ------------------------------------------------------------------

    def set_policy(self, policy: Optional[ResolutionPolicy] = None, **changes: Any) -> ResolutionPolicy:
        """Replace the policy, or change individual fields by keyword.

        Raises pydantic's ``ValidationError`` for unknown fields or values.
        """
        with self._lock:
            base = policy if policy is not None else self.policy
            updated = ResolutionPolicy.model_validate({**base.model_dump(), **changes})
            previous = self.policy.model_dump(mode="json")
            current = updated.model_dump(mode="json")
            changed = sorted(k for k in current if current[k] != previous[k])
            self.policy = updated
            if changed:
                self.logger.info(f"Resolution policy changed: {', '.join(changed)}")
                self.notifier.emit(EventKind.POLICY_CHANGED, changed=changed, policy=current)
                if self.autosave:
                    self.save()
            return updated.model_copy()

    def register_merge_rule(self, group: str, rule: MergeRule) -> None:
        with self._lock:
            self.resolver.register_merge_rule(group, rule)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve_for_file(self, path: str, tags: Optional[Sequence[str]] = None) -> PresetSettings:
        """Effective settings for a note; always fully populated."""
        return self.explain(path, tags).settings

    def explain(self, path: str, tags: Optional[Sequence[str]] = None) -> ResolutionResult:
        with self._lock:
            return self.resolver.resolve(path, list(tags or []), self.policy)

    def apply_preset(self, preset_id: str) -> OperationResult:
        """Make ``preset_id`` the active preset regardless of assignments."""
        with self._lock:
            preset = self.store.get(preset_id)
            if preset is None:
                return OperationResult.not_found(preset_id)
            self._set_active(preset_id, source="manual")
            return OperationResult.ok(preset)

    def on_active_file_changed(
        self,
        context: Union[FileContext, str, None],
        tags: Optional[Sequence[str]] = None,
    ) -> Optional[ResolutionResult]:
        """Resolve for the newly active note and publish ``applied`` if the preset changed.

        Returns ``None`` when there is no active note or automatic
        application is switched off.
        """
        if context is None:
            return None
        if isinstance(context, str):
            context = FileContext(context, list(tags or []))
        with self._lock:
            if not self.policy.auto_apply:
                self.logger.debug(f"Automatic preset application is off, ignoring {context.path}")
                return None
            result = self.explain(context.path, context.tags)
            self._set_active(result.preset_id, source="auto", path=context.path)
            return result

    def _set_active(self, preset_id: Optional[str], **data: Any) -> None:
        if preset_id == self.active_preset_id:
            return
        self.active_preset_id = preset_id
        self.logger.debug(f"Active preset is now '{preset_id}'")
        self.notifier.emit(EventKind.APPLIED, preset_id=preset_id, key=data.pop("path", None), **data)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(
        self,
        kinds: Union[EventKind, Iterable[EventKind], None],
        handler: EventHandler,
    ) -> Subscription:
        return self.notifier.subscribe(kinds, handler)

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.dispose()
