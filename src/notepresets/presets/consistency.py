"""Keeps folder/tag assignments and the global default pointing at real presets."""

import logging
from dataclasses import dataclass, field
from typing import List, TYPE_CHECKING

if TYPE_CHECKING:
    from .store import PresetStore
    from .folder_index import FolderPresetIndex
    from .tag_index import TagPresetIndex


@dataclass
class CascadeReport:
    """What a cascade touched."""
    preset_id: str
    folders: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    global_default: bool = False

    @property
    def touched(self) -> int:
        return len(self.folders) + len(self.tags) + int(self.global_default)


class ConsistencyCoordinator:
    """Rewrites index entries when presets are deleted or renamed.

    Runs synchronously inside the store mutation that triggered it, so no
    resolution can observe the intermediate state.
    """

    def __init__(self, store: "PresetStore", folder_index: "FolderPresetIndex", tag_index: "TagPresetIndex"):
        self.store = store
        self.folder_index = folder_index
        self.tag_index = tag_index
        self.logger = logging.getLogger(__name__)
        store.coordinator = self

    def on_preset_deleted(self, preset_id: str) -> CascadeReport:
        report = CascadeReport(preset_id)
        report.folders = self.folder_index.remove_preset(preset_id)
        report.tags = self.tag_index.remove_preset(preset_id)
        if self.store.global_default_id == preset_id:
            report.global_default = self.store.clear_global_default()
        if report.touched:
            self.logger.info(
                f"Removed references to deleted preset '{preset_id}': "
                f"{len(report.folders)} folder(s), {len(report.tags)} tag(s), "
                f"global default={'cleared' if report.global_default else 'unchanged'}"
            )
        return report

    def on_preset_renamed(self, old_id: str, new_id: str) -> CascadeReport:
        report = CascadeReport(new_id)
        report.folders = self.folder_index.replace_preset(old_id, new_id)
        report.tags = self.tag_index.replace_preset(old_id, new_id)
        if self.store.global_default_id == old_id:
            report.global_default = bool(self.store.set_global_default(new_id))
        if report.touched:
            self.logger.info(
                f"Rewrote references '{old_id}' -> '{new_id}': "
                f"{len(report.folders)} folder(s), {len(report.tags)} tag(s)"
            )
        return report

    def dangling_references(self) -> List[str]:
        """Referenced preset ids missing from the store (empty when consistent)."""
        referenced = set(self.folder_index.referenced_preset_ids())
        referenced.update(self.tag_index.referenced_preset_ids())
        if self.store.global_default_id:
            referenced.add(self.store.global_default_id)
        return sorted(pid for pid in referenced if not self.store.exists(pid))

    def prune(self) -> CascadeReport:
        """Drop every reference to a preset that no longer exists."""
        report = CascadeReport(preset_id="*")
        for preset_id in self.dangling_references():
            partial = self.on_preset_deleted(preset_id)
            report.folders.extend(partial.folders)
            report.tags.extend(partial.tags)
            report.global_default = report.global_default or partial.global_default
        return report
