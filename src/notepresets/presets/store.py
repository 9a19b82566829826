"""Preset storage: CRUD over presets plus the global default pointer."""

import logging
import re
import time
from typing import Any, Callable, Dict, List, Optional, Union, TYPE_CHECKING
from datetime import datetime

from ..core.notifier import ChangeNotifier, EventKind
from ..models.config import BOOTSTRAP_PRESET_ID, Preset, PresetSettings, SETTINGS_GROUPS, utcnow
from ..models.results import OperationResult, ResultStatus

if TYPE_CHECKING:
    from .consistency import ConsistencyCoordinator

SettingsInput = Union[PresetSettings, Dict[str, Any]]

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def _coerce_settings(settings: Optional[SettingsInput]) -> PresetSettings:
    if settings is None:
        return PresetSettings()
    if isinstance(settings, PresetSettings):
        return settings.model_copy(deep=True)
    return PresetSettings.model_validate(settings)


class PresetStore:
    """Owns every :class:`Preset` and the global default pointer.

    Mutations that can leave dangling references (delete, rename) hand off
    to the bound :class:`ConsistencyCoordinator` before any notification is
    delivered.
    """

    def __init__(self, notifier: Optional[ChangeNotifier] = None, clock: Callable[[], datetime] = utcnow):
        self.notifier = notifier or ChangeNotifier()
        self.clock = clock
        self.coordinator: Optional["ConsistencyCoordinator"] = None
        self.logger = logging.getLogger(__name__)
        self._presets: Dict[str, Preset] = {}
        self._global_default_id: Optional[str] = None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def exists(self, preset_id: Optional[str]) -> bool:
        return preset_id is not None and preset_id in self._presets

    def get(self, preset_id: str) -> Optional[Preset]:
        """Return a copy of the preset, or ``None`` when it does not exist."""
        preset = self._presets.get(preset_id)
        return preset.model_copy(deep=True) if preset else None

    def get_by_name(self, name: str) -> Optional[Preset]:
        for preset in self._presets.values():
            if preset.name == name:
                return preset.model_copy(deep=True)
        return None

    def list_presets(self) -> List[Preset]:
        return [p.model_copy(deep=True) for p in self._presets.values()]

    def ids(self) -> List[str]:
        return list(self._presets)

    def __len__(self) -> int:
        return len(self._presets)

    def __contains__(self, preset_id: str) -> bool:
        return preset_id in self._presets

    @property
    def global_default_id(self) -> Optional[str]:
        return self._global_default_id

    def global_default(self) -> Optional[Preset]:
        return self.get(self._global_default_id) if self._global_default_id else None

    def bootstrap_default(self) -> Optional[Preset]:
        """The bootstrap preset, found by its flag so that a rename keeps it."""
        for preset in self._presets.values():
            if preset.is_default:
                return preset.model_copy(deep=True)
        return self.get(BOOTSTRAP_PRESET_ID)

    def generate_id(self, name: str) -> str:
        """Slug of ``name`` plus a base-36 millisecond timestamp, made unique."""
        base = re.sub(r"[^a-z0-9]", "", name.lower()) or "preset"
        candidate = f"{base}-{to_base36(int(time.time() * 1000))}"
        unique, n = candidate, 1
        while unique in self._presets:
            unique = f"{candidate}-{n}"
            n += 1
        return unique

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def bootstrap(self) -> Preset:
        """Seed an empty store with the default preset and make it the global default."""
        if not self._presets:
            preset = Preset.bootstrap()
            preset.created_at = preset.updated_at = self.clock()
            self._presets[preset.id] = preset
            self._global_default_id = preset.id
            self.logger.info(f"Bootstrapped default preset '{preset.id}'")
        return self.get(self._global_default_id or next(iter(self._presets)))

    def create(
        self,
        name: str,
        description: str = "",
        settings: Optional[SettingsInput] = None,
        preset_id: Optional[str] = None,
        is_default: bool = False,
    ) -> OperationResult:
        """Create a preset.

        Args:
            name: Display name; must be non-empty and unique
            description: Free text
            settings: Initial settings groups; groups left out stay undefined
            preset_id: Explicit id; generated from ``name`` when omitted
            is_default: Also make the new preset the global default

        Returns:
            OperationResult carrying the new Preset, or DUPLICATE_ID /
            DUPLICATE_NAME / INVALID_NAME
        """
        if not name or not name.strip():
            return OperationResult(ResultStatus.INVALID_NAME, None, "Preset name cannot be empty")
        name = name.strip()
        if self.get_by_name(name) is not None:
            return OperationResult(ResultStatus.DUPLICATE_NAME, None, f"A preset named '{name}' already exists")
        if preset_id is not None:
            preset_id = preset_id.strip()
            if not preset_id:
                return OperationResult(ResultStatus.INVALID_NAME, None, "Preset id cannot be empty")
            if preset_id in self._presets:
                return OperationResult.duplicate_id(preset_id)
        else:
            preset_id = self.generate_id(name)

        now = self.clock()
        preset = Preset(
            id=preset_id,
            name=name,
            description=description or "",
            created_at=now,
            updated_at=now,
            settings=_coerce_settings(settings),
        )
        with self.notifier.deferred():
            self._presets[preset_id] = preset
            self.logger.info(f"Created preset '{preset_id}' ({name})")
            self.notifier.emit(EventKind.CREATED, preset_id=preset_id, name=name)
            if is_default:
                self.set_global_default(preset_id)
        return OperationResult.ok(self.get(preset_id))

    def update(
        self,
        preset_id: str,
        settings: Optional[SettingsInput] = None,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> OperationResult:
        """Replace the provided settings groups wholesale; others are untouched.

        A group counts as provided when it was explicitly set on ``settings``,
        so an explicit ``None`` removes that group from the preset.
        """
        preset = self._presets.get(preset_id)
        if preset is None:
            return OperationResult.not_found(preset_id)

        changes: Dict[str, Any] = {}
        if name is not None:
            name = name.strip()
            if not name:
                return OperationResult(ResultStatus.INVALID_NAME, None, "Preset name cannot be empty")
            other = self.get_by_name(name)
            if other is not None and other.id != preset_id:
                return OperationResult(ResultStatus.DUPLICATE_NAME, None, f"A preset named '{name}' already exists")
            changes["name"] = name
        if description is not None:
            changes["description"] = description

        replaced_groups: List[str] = []
        if settings is not None:
            partial = _coerce_settings(settings)
            merged = preset.settings.model_copy(deep=True)
            for group in SETTINGS_GROUPS:
                if group in partial.model_fields_set:
                    setattr(merged, group, getattr(partial, group))
                    replaced_groups.append(group)
            changes["settings"] = merged

        changes["updated_at"] = self.clock()
        self._presets[preset_id] = preset.model_copy(update=changes)
        self.logger.debug(f"Updated preset '{preset_id}': groups={replaced_groups}")
        self.notifier.emit(
            EventKind.UPDATED,
            preset_id=preset_id,
            groups=replaced_groups,
            fields=sorted(k for k in changes if k not in ("settings", "updated_at")),
        )
        return OperationResult.ok(self.get(preset_id))

    def delete(self, preset_id: str) -> bool:
        """Delete a preset and cascade its removal to every reference.

        Returns ``False`` when the preset does not exist; never raises.
        """
        if preset_id not in self._presets:
            return False
        with self.notifier.deferred():
            del self._presets[preset_id]
            self.logger.info(f"Deleted preset '{preset_id}'")
            self.notifier.emit(EventKind.DELETED, preset_id=preset_id)
            if self.coordinator is not None:
                self.coordinator.on_preset_deleted(preset_id)
            elif self._global_default_id == preset_id:
                self.clear_global_default()
        return True

    def rename(self, old_id: str, new_id: str) -> OperationResult:
        """Change a preset's id, rewriting every reference in place."""
        if old_id not in self._presets:
            return OperationResult.not_found(old_id)
        new_id = (new_id or "").strip()
        if not new_id:
            return OperationResult(ResultStatus.INVALID_NAME, None, "Preset id cannot be empty")
        if new_id == old_id:
            return OperationResult.ok(self.get(old_id))
        if new_id in self._presets:
            return OperationResult.duplicate_id(new_id)

        with self.notifier.deferred():
            # rebuild to keep the preset at its original position
            self._presets = {
                (new_id if key == old_id else key): (
                    preset.model_copy(update={"id": new_id, "updated_at": self.clock()})
                    if key == old_id else preset
                )
                for key, preset in self._presets.items()
            }
            self.logger.info(f"Renamed preset '{old_id}' -> '{new_id}'")
            self.notifier.emit(EventKind.ID_CHANGED, preset_id=new_id, old_id=old_id, new_id=new_id)
            if self.coordinator is not None:
                self.coordinator.on_preset_renamed(old_id, new_id)
            elif self._global_default_id == old_id:
                self._global_default_id = new_id
        return OperationResult.ok(self.get(new_id))

    def clone(self, preset_id: str, new_name: Optional[str] = None) -> OperationResult:
        source = self._presets.get(preset_id)
        if source is None:
            return OperationResult.not_found(preset_id)
        return self.create(
            new_name or f"{source.name} (copy)",
            description=source.description,
            settings=source.settings,
        )

    def set_global_default(self, preset_id: str) -> OperationResult:
        if preset_id not in self._presets:
            return OperationResult.invalid_reference(preset_id, "global default")
        if self._global_default_id != preset_id:
            previous = self._global_default_id
            self._global_default_id = preset_id
            self.logger.info(f"Global default preset set to '{preset_id}'")
            self.notifier.emit(EventKind.GLOBAL_DEFAULT_CHANGED, preset_id=preset_id, previous_preset_id=previous)
        return OperationResult.ok(preset_id)

    def clear_global_default(self) -> bool:
        if self._global_default_id is None:
            return False
        previous = self._global_default_id
        self._global_default_id = None
        self.logger.info("Global default preset cleared")
        self.notifier.emit(EventKind.GLOBAL_DEFAULT_CLEARED, preset_id=previous)
        return True

    def add(self, preset: Preset) -> OperationResult:
        """Insert a fully formed preset (import path); the caller publishes events."""
        if preset.id in self._presets:
            return OperationResult.duplicate_id(preset.id)
        self._presets[preset.id] = preset.model_copy(deep=True)
        return OperationResult.ok(self.get(preset.id))

    def load(self, presets: List[Preset], global_default_id: Optional[str] = None) -> None:
        """Replace the whole store without notifications (used when loading)."""
        self._presets = {}
        for preset in presets:
            if preset.id in self._presets:
                self.logger.warning(f"Duplicate preset id '{preset.id}' in stored data; keeping the first")
                continue
            self._presets[preset.id] = preset
        self._global_default_id = global_default_id if global_default_id in self._presets else None
