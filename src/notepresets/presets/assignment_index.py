"""Shared behavior of the folder and tag assignment indices."""

import logging
from typing import Dict, Iterator, List, Optional, Tuple, Union, TYPE_CHECKING

from ..core.notifier import ChangeNotifier, EventKind
from ..models.config import FolderAssignment, TagAssignment
from ..models.results import OperationResult, ResultStatus

if TYPE_CHECKING:
    from .store import PresetStore

Assignment = Union[FolderAssignment, TagAssignment]


class AssignmentIndex:
    """Key -> assignment map whose entries must reference existing presets.

    The preset id and its ``overrides_global`` flag live in one record, so
    they cannot drift apart. Subclasses define key normalization and lookup.
    """

    kind_label = "Key"
    changed_event: EventKind
    removed_event: EventKind

    def __init__(self, store: "PresetStore", notifier: Optional[ChangeNotifier] = None):
        self.store = store
        self.notifier = notifier or store.notifier
        self.logger = logging.getLogger(self.__class__.__module__)
        self._assignments: Dict[str, Assignment] = {}

    # -- subclass hooks -------------------------------------------------

    def normalize_key(self, key: str) -> str:
        raise NotImplementedError

    def _make_record(self, key: str, preset_id: str, overrides_global: Optional[bool]) -> Assignment:
        raise NotImplementedError

    def lookup(self, key: str) -> Optional[Assignment]:
        """Return the assignment that applies to ``key`` (exact match by default)."""
        normalized = self.normalize_key(key)
        if not normalized:
            return None
        return self._assignments.get(normalized)

    # -- queries --------------------------------------------------------

    def get(self, key: str) -> Optional[Assignment]:
        """Exact-match lookup, no inheritance."""
        return self._assignments.get(self.normalize_key(key))

    def resolve(self, key: str) -> Optional[str]:
        assignment = self.lookup(key)
        return assignment.preset_id if assignment else None

    def priority(self, key: str) -> bool:
        """Whether the assignment applying to ``key`` overrides the global default.

        Unset flags, and keys with no assignment at all, read as ``True``.
        """
        assignment = self.lookup(key)
        return assignment.priority if assignment else True

    def list_keys_for(self, preset_id: str) -> List[str]:
        return sorted(key for key, a in self._assignments.items() if a.preset_id == preset_id)

    def referenced_preset_ids(self) -> List[str]:
        return sorted({a.preset_id for a in self._assignments.values()})

    def items(self) -> List[Tuple[str, Assignment]]:
        return sorted(self._assignments.items())

    def __len__(self) -> int:
        return len(self._assignments)

    def __contains__(self, key: str) -> bool:
        return self.normalize_key(key) in self._assignments

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._assignments))

    # -- mutations ------------------------------------------------------

    def assign(self, key: str, preset_id: str, overrides_global: Optional[bool] = None) -> OperationResult:
        """Create or replace the assignment for ``key``.

        Returns ``INVALID_REFERENCE`` when ``preset_id`` is not in the store.
        """
        normalized = self.normalize_key(key)
        if not normalized:
            return OperationResult(ResultStatus.INVALID_NAME, None, f"{self.kind_label} '{key}' is empty")
        if not self.store.exists(preset_id):
            self.logger.warning(f"Refusing to assign unknown preset '{preset_id}' to '{normalized}'")
            return OperationResult.invalid_reference(preset_id, normalized)

        previous = self._assignments.get(normalized)
        record = self._make_record(normalized, preset_id, overrides_global)
        self._assignments[normalized] = record
        if previous != record:
            self.logger.debug(f"Assigned {normalized} -> {preset_id} (overrides_global={overrides_global})")
            self.notifier.emit(
                self.changed_event,
                preset_id=preset_id,
                key=normalized,
                overrides_global=record.priority,
                previous_preset_id=previous.preset_id if previous else None,
            )
        return OperationResult.ok(record)

    def unassign(self, key: str) -> bool:
        """Remove the assignment for ``key``; unmapped keys are a silent no-op."""
        normalized = self.normalize_key(key)
        removed = self._assignments.pop(normalized, None)
        if removed is None:
            return False
        self.logger.debug(f"Unassigned {normalized} (was {removed.preset_id})")
        self.notifier.emit(self.removed_event, preset_id=removed.preset_id, key=normalized)
        return True

    def set_priority(self, key: str, overrides_global: bool) -> OperationResult:
        normalized = self.normalize_key(key)
        current = self._assignments.get(normalized)
        if current is None:
            return OperationResult.not_found(key, self.kind_label)
        return self.assign(normalized, current.preset_id, overrides_global)

    def replace_preset(self, old_id: str, new_id: str) -> List[str]:
        """Point every assignment of ``old_id`` at ``new_id``; returns the keys touched."""
        keys = self.list_keys_for(old_id)
        for key in keys:
            current = self._assignments[key]
            self._assignments[key] = current.model_copy(update={"preset_id": new_id})
            self.notifier.emit(
                self.changed_event,
                preset_id=new_id,
                key=key,
                overrides_global=current.priority,
                previous_preset_id=old_id,
            )
        return keys

    def remove_preset(self, preset_id: str) -> List[str]:
        """Unassign every key mapped to ``preset_id``; returns the keys removed."""
        keys = self.list_keys_for(preset_id)
        for key in keys:
            self.unassign(key)
        return keys

    def load(self, assignments: Dict[str, Assignment]) -> None:
        """Replace the whole index without notifications (used when loading)."""
        self._assignments = {}
        for key, assignment in assignments.items():
            normalized = self.normalize_key(key)
            if normalized:
                self._assignments[normalized] = self._make_record(
                    normalized, assignment.preset_id, assignment.overrides_global
                )

    def clear(self) -> None:
        self._assignments.clear()
