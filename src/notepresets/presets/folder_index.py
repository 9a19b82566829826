"""Folder path -> preset assignments with ancestor inheritance."""

import re
from typing import List, Optional

from ..core.notifier import EventKind
from ..models.config import FolderAssignment, ROOT_FOLDER
from .assignment_index import AssignmentIndex


def normalize_folder_path(folder_path: str) -> str:
    """Canonical folder key: forward slashes, no leading/trailing slash, ``/`` for root.

    >>> normalize_folder_path("/Projects//Work/")
    'Projects/Work'
    >>> normalize_folder_path("")
    '/'
    """
    path = (folder_path or "").strip().replace("\\", "/")
    path = re.sub(r"/+", "/", path).strip("/")
    return path or ROOT_FOLDER


def folder_of(file_path: str) -> str:
    """Folder containing ``file_path``; files at the top level live in root."""
    path = (file_path or "").strip().replace("\\", "/").strip("/")
    if "/" not in path:
        return ROOT_FOLDER
    return normalize_folder_path(path.rsplit("/", 1)[0])


def ancestors_of(folder_path: str) -> List[str]:
    """Ancestors of a folder from the nearest parent up to and including root."""
    path = normalize_folder_path(folder_path)
    if path == ROOT_FOLDER:
        return []
    parents = []
    while "/" in path:
        path = path.rsplit("/", 1)[0]
        parents.append(path)
    parents.append(ROOT_FOLDER)
    return parents


class FolderPresetIndex(AssignmentIndex):
    """Folder assignments resolved hierarchically.

    A folder without its own assignment inherits the nearest ancestor's,
    walking up to root; the first match wins.
    """

    kind_label = "Folder"
    changed_event = EventKind.FOLDER_MAPPING_CHANGED
    removed_event = EventKind.FOLDER_MAPPING_REMOVED

    def normalize_key(self, key: str) -> str:
        return normalize_folder_path(key)

    def _make_record(self, key: str, preset_id: str, overrides_global: Optional[bool]) -> FolderAssignment:
        return FolderAssignment(folder_path=key, preset_id=preset_id, overrides_global=overrides_global)

    def lookup(self, key: str) -> Optional[FolderAssignment]:
        folder = self.normalize_key(key)
        exact = self._assignments.get(folder)
        if exact is not None:
            return exact
        for parent in ancestors_of(folder):
            inherited = self._assignments.get(parent)
            if inherited is not None:
                return inherited
        return None

    def resolve_for_file(self, file_path: str) -> Optional[str]:
        return self.resolve(folder_of(file_path))
