"""Tag -> preset assignments (flat, exact match)."""

from typing import Iterable, List, Optional, Tuple, TYPE_CHECKING

from ..core.notifier import ChangeNotifier, EventKind
from ..models.config import TagAssignment
from .assignment_index import AssignmentIndex

if TYPE_CHECKING:
    from .store import PresetStore


def normalize_tag(tag: str, case_sensitive: bool = True) -> str:
    """Strip whitespace and a leading ``#``; case-fold unless ``case_sensitive``."""
    cleaned = (tag or "").strip()
    if cleaned.startswith("#"):
        cleaned = cleaned[1:].strip()
    return cleaned if case_sensitive else cleaned.casefold()


class TagPresetIndex(AssignmentIndex):
    """Tag assignments; tags have no hierarchy so only exact keys match."""

    kind_label = "Tag"
    changed_event = EventKind.TAG_MAPPING_CHANGED
    removed_event = EventKind.TAG_MAPPING_REMOVED

    def __init__(
        self,
        store: "PresetStore",
        notifier: Optional[ChangeNotifier] = None,
        case_sensitive: bool = True,
    ):
        super().__init__(store, notifier)
        self.case_sensitive = case_sensitive

    def normalize_key(self, key: str) -> str:
        return normalize_tag(key, self.case_sensitive)

    def _make_record(self, key: str, preset_id: str, overrides_global: Optional[bool]) -> TagAssignment:
        return TagAssignment(tag_name=key, preset_id=preset_id, overrides_global=overrides_global)

    def candidates(self, tags: Iterable[str]) -> List[Tuple[str, TagAssignment]]:
        """Assignments matching ``tags``, in the order the tags were supplied.

        Each normalized tag is considered once.
        """
        seen = set()
        matches = []
        for tag in tags or []:
            normalized = self.normalize_key(tag)
            if not normalized or normalized in seen:
                continue
            seen.add(normalized)
            assignment = self._assignments.get(normalized)
            if assignment is not None:
                matches.append((normalized, assignment))
        return matches
