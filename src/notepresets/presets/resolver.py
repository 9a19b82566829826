"""Effective settings resolution for a note from folder, tag and global assignments."""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, TYPE_CHECKING

from pydantic import ValidationError

from ..core.notifier import ChangeNotifier
from ..models.config import (
    ApplyMode,
    ConflictResolution,
    MergeStrategy,
    Preset,
    PresetSettings,
    PriorityOrder,
    ResolutionPolicy,
    SETTINGS_GROUPS,
    TagTieBreak,
    default_settings,
)
from ..utils.error_formatter import MergeError
from .folder_index import folder_of

if TYPE_CHECKING:
    from .store import PresetStore
    from .folder_index import FolderPresetIndex
    from .tag_index import TagPresetIndex

BUILTIN_SOURCE = "builtin"

FOLDER = "folder"
TAG = "tag"
GLOBAL = "global"

# (base group fields, override group fields) -> merged group fields
MergeRule = Callable[[Dict[str, Any], Dict[str, Any]], Dict[str, Any]]


@dataclass(frozen=True)
class Candidate:
    """A preset proposed by one assignment axis."""
    source: str
    preset_id: str
    overrides_global: bool = True
    key: Optional[str] = None


@dataclass
class ResolutionResult:
    """Outcome of a resolution, with enough detail to explain it."""
    settings: PresetSettings
    preset_id: Optional[str]
    ordered_preset_ids: List[str] = field(default_factory=list)
    group_sources: Dict[str, str] = field(default_factory=dict)
    candidates: List[Candidate] = field(default_factory=list)
    conflict_resolution: ConflictResolution = ConflictResolution.PRIORITY_ONLY
    fallback: bool = False
    merge_error: Optional[MergeError] = None


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge where ``None`` in ``override`` never clears a base value."""
    result = base.copy()
    for key, value in override.items():
        if value is None:
            continue
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def complete_settings(settings: PresetSettings) -> PresetSettings:
    """Fill every group and field left undefined from the built-in defaults."""
    defaults = default_settings()
    groups = {}
    for group in SETTINGS_GROUPS:
        base = getattr(defaults, group).explicit_fields()
        current = getattr(settings, group)
        merged = _deep_merge(base, current.explicit_fields()) if current is not None else base
        groups[group] = merged
    return PresetSettings.model_validate(groups)


class PresetResolver:
    """Computes one effective :class:`PresetSettings` for a note.

    Resolution only reads the store and indices; the same state, policy,
    path and tags always yield the same result. It never raises: anything
    unexpected degrades to the bootstrap defaults and is reported.
    """

    def __init__(
        self,
        store: "PresetStore",
        folder_index: "FolderPresetIndex",
        tag_index: "TagPresetIndex",
        notifier: Optional[ChangeNotifier] = None,
    ):
        self.store = store
        self.folder_index = folder_index
        self.tag_index = tag_index
        self.notifier = notifier or store.notifier
        self.merge_rules: Dict[str, MergeRule] = {}
        self.logger = logging.getLogger(__name__)

    def register_merge_rule(self, group: str, rule: MergeRule) -> None:
        """Use ``rule`` instead of field-by-field merging for ``group`` under MergeCustom."""
        if group not in SETTINGS_GROUPS:
            raise ValueError(f"Unknown settings group '{group}'. Expected one of: {', '.join(SETTINGS_GROUPS)}")
        self.merge_rules[group] = rule

    def unregister_merge_rule(self, group: str) -> None:
        self.merge_rules.pop(group, None)

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    def resolve_for_file(self, path: str, tags: Sequence[str], policy: ResolutionPolicy) -> PresetSettings:
        return self.resolve(path, tags, policy).settings

    def resolve(self, path: str, tags: Sequence[str], policy: ResolutionPolicy) -> ResolutionResult:
        try:
            return self._resolve(path, list(tags or []), policy)
        except Exception as e:
            self.logger.error(f"Preset resolution failed for '{path}', using defaults: {e}", exc_info=True)
            self.notifier.report(e, path=path)
            bootstrap = self._bootstrap_preset()
            return ResolutionResult(
                settings=complete_settings(bootstrap.settings),
                preset_id=bootstrap.id,
                ordered_preset_ids=[bootstrap.id],
                group_sources={group: bootstrap.id for group in SETTINGS_GROUPS},
                conflict_resolution=policy.conflict_resolution,
                fallback=True,
            )

    # ------------------------------------------------------------------
    # Candidate collection
    # ------------------------------------------------------------------

    def folder_candidate(self, path: str, policy: ResolutionPolicy) -> Optional[Candidate]:
        if not policy.auto_apply_folder:
            return None
        assignment = self.folder_index.lookup(folder_of(path))
        if assignment is None:
            return None
        return Candidate(FOLDER, assignment.preset_id, assignment.priority, assignment.folder_path)

    def tag_candidates(self, tags: Sequence[str], policy: ResolutionPolicy) -> List[Candidate]:
        if not policy.auto_apply_tag:
            return []
        return [
            Candidate(TAG, assignment.preset_id, assignment.priority, tag)
            for tag, assignment in self.tag_index.candidates(tags)
        ]

    @staticmethod
    def pick_tag_candidate(candidates: List[Candidate], tie_break: TagTieBreak) -> Optional[Candidate]:
        """Choose one tag candidate when several tags carry assignments."""
        if not candidates:
            return None
        if tie_break is TagTieBreak.OVERRIDING_FIRST:
            overriding = [c for c in candidates if c.overrides_global]
            return overriding[0] if overriding else candidates[0]
        if tie_break is TagTieBreak.ALPHABETICAL:
            return min(candidates, key=lambda c: c.key or "")
        return candidates[0]

    def global_candidate(self) -> Optional[Candidate]:
        preset_id = self.store.global_default_id
        return Candidate(GLOBAL, preset_id, True) if preset_id else None

    # ------------------------------------------------------------------
    # Ordering
    # ------------------------------------------------------------------

    @staticmethod
    def select_single(
        mode: ApplyMode,
        folder: Optional[Candidate],
        tag: Optional[Candidate],
        global_default: Optional[Candidate],
    ) -> Optional[Candidate]:
        if mode is ApplyMode.FOLDER_ONLY:
            chain = [folder, global_default]
        elif mode is ApplyMode.TAG_ONLY:
            chain = [tag, global_default]
        elif mode is ApplyMode.TAG_FIRST:
            chain = [tag, folder, global_default]
        else:
            chain = [folder, tag, global_default]
        return next((c for c in chain if c is not None), None)

    @staticmethod
    def merge_order(
        order: PriorityOrder,
        folder: Optional[Candidate],
        tag: Optional[Candidate],
        global_default: Optional[Candidate],
    ) -> List[Candidate]:
        """Candidates from lowest to highest priority.

        ``TAG_FOLDER_GLOBAL`` puts the tag above the folder, ``FOLDER_TAG_GLOBAL``
        the reverse. Assignments that do not override the global default are
        moved below it. ``CUSTOM`` applies only that flag; when folder and tag
        land on the same side they keep input order (folder, then tag).
        """
        if order is PriorityOrder.FOLDER_TAG_GLOBAL:
            local = [tag, folder]
        else:
            local = [folder, tag]
        local = [c for c in local if c is not None]
        below = [c for c in local if not c.overrides_global]
        above = [c for c in local if c.overrides_global]
        middle = [global_default] if global_default is not None else []
        return below + middle + above

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def _bootstrap_preset(self) -> Preset:
        stored = self.store.bootstrap_default()
        return stored if stored is not None else Preset.bootstrap()

    def _fallback_preset(self) -> Preset:
        global_default = self.store.global_default()
        return global_default if global_default is not None else self._bootstrap_preset()

    def _resolve(self, path: str, tags: List[str], policy: ResolutionPolicy) -> ResolutionResult:
        folder = self.folder_candidate(path, policy)
        tag_candidates = self.tag_candidates(tags, policy)
        tag = self.pick_tag_candidate(tag_candidates, policy.tag_tie_break)
        global_default = self.global_candidate()

        if policy.apply_mode is ApplyMode.MERGED:
            ordered = self.merge_order(policy.priority_order, folder, tag, global_default)
        else:
            chosen = self.select_single(policy.apply_mode, folder, tag, global_default)
            ordered = [chosen] if chosen is not None else []

        presets: List[Preset] = []
        fallback = False
        for candidate in ordered:
            preset = self.store.get(candidate.preset_id)
            if preset is None:
                # dangling reference; consistency maintenance should make this unreachable
                self.logger.warning(
                    f"{candidate.source} assignment '{candidate.key}' references missing preset "
                    f"'{candidate.preset_id}'"
                )
                fallback = True
                continue
            presets.append(preset)
        if not presets:
            fallback = True
            presets = [self._fallback_preset()]

        all_candidates = [c for c in [folder, global_default] if c is not None] + tag_candidates
        result = ResolutionResult(
            settings=PresetSettings(),
            preset_id=presets[-1].id,
            ordered_preset_ids=[p.id for p in presets],
            candidates=all_candidates,
            conflict_resolution=policy.conflict_resolution,
            fallback=fallback,
        )

        if policy.conflict_resolution is ConflictResolution.PRIORITY_ONLY:
            self._apply_single(result, presets[-1])
        elif policy.conflict_resolution is ConflictResolution.MERGE_PRIORITY:
            self._apply_merge_priority(result, presets)
        else:
            base = self._merge_base(policy.merge_strategy, folder, tag, global_default, presets)
            try:
                self._apply_merge_custom(result, presets, base)
            except MergeError as e:
                self.logger.error(f"Custom merge failed for '{path}', falling back to merge_priority: {e.title}")
                self.notifier.report(e, path=path)
                result.merge_error = e
                self._apply_merge_priority(result, presets)

        self.logger.debug(
            f"Resolved '{path}' tags={tags} -> {result.preset_id} "
            f"(order={result.ordered_preset_ids}, fallback={result.fallback})"
        )
        return result

    def _apply_single(self, result: ResolutionResult, winner: Preset) -> None:
        result.settings = complete_settings(winner.settings)
        result.group_sources = {
            group: (winner.id if getattr(winner.settings, group) is not None else BUILTIN_SOURCE)
            for group in SETTINGS_GROUPS
        }

    def _apply_merge_priority(self, result: ResolutionResult, presets: List[Preset]) -> None:
        groups: Dict[str, Any] = {}
        sources: Dict[str, str] = {}
        for group in SETTINGS_GROUPS:
            sources[group] = BUILTIN_SOURCE
            for preset in reversed(presets):
                value = getattr(preset.settings, group)
                if value is not None:
                    groups[group] = value
                    sources[group] = preset.id
                    break
        result.settings = complete_settings(PresetSettings(**groups))
        result.group_sources = sources

    @staticmethod
    def _merge_base(
        strategy: MergeStrategy,
        folder: Optional[Candidate],
        tag: Optional[Candidate],
        global_default: Optional[Candidate],
        presets: List[Preset],
    ) -> Optional[int]:
        """Position in ``presets`` of the base object selected by ``strategy``."""
        designated = {
            MergeStrategy.FOLDER_BASE: folder,
            MergeStrategy.TAG_BASE: tag,
            MergeStrategy.DEFAULT_BASE: global_default,
        }[strategy]
        if designated is None:
            return None
        for index, preset in enumerate(presets):
            if preset.id == designated.preset_id:
                return index
        return None

    def _apply_merge_custom(self, result: ResolutionResult, presets: List[Preset], base_index: Optional[int]) -> None:
        """Group-level priority merge, except that groups the base preset defines
        are merged field by field onto the base from every higher-priority preset.
        """
        self._apply_merge_priority(result, presets)
        if base_index is None:
            return
        base = presets[base_index]
        groups = {group: getattr(result.settings, group) for group in SETTINGS_GROUPS}
        for group in base.settings.defined_groups():
            merged = getattr(base.settings, group)
            contributors = [base.id]
            for preset in presets[base_index + 1:]:
                override = getattr(preset.settings, group)
                if override is None:
                    continue
                merged = self._merge_group(group, merged, override, contributors + [preset.id])
                contributors.append(preset.id)
            groups[group] = merged
            result.group_sources[group] = "+".join(contributors)
        result.settings = complete_settings(PresetSettings(**groups))

    def _merge_group(self, group: str, base: Any, override: Any, preset_ids: List[str]) -> Any:
        model = type(base)
        rule = self.merge_rules.get(group)
        try:
            if rule is not None:
                merged_fields = rule(base.explicit_fields(), override.explicit_fields())
            else:
                merged_fields = _deep_merge(base.explicit_fields(), override.explicit_fields())
            return model.model_validate(merged_fields)
        except ValidationError as e:
            raise MergeError(group, f"Merged values are invalid: {e}", preset_ids) from e
        except MergeError:
            raise
        except Exception as e:
            raise MergeError(group, f"Merge rule raised {type(e).__name__}: {e}", preset_ids) from e
