"""Tests for PresetResolver: selection, ordering, merging and fallback."""

from unittest.mock import patch

import pytest

from notepresets.core.notifier import EventKind
from notepresets.models.config import (
    BOOTSTRAP_PRESET_ID,
    ApplyMode,
    ConflictResolution,
    FolderAssignment,
    LayoutType,
    MergeStrategy,
    PresetSettings,
    PriorityOrder,
    ResolutionPolicy,
    SETTINGS_GROUPS,
    StyleSettings,
    TagTieBreak,
    default_settings,
)
from notepresets.presets.resolver import BUILTIN_SOURCE, PresetResolver, complete_settings
from notepresets.utils.error_formatter import MergeError


def policy(**kwargs):
    return ResolutionPolicy(**kwargs)


MERGED_PRIORITY = dict(apply_mode=ApplyMode.MERGED, conflict_resolution=ConflictResolution.MERGE_PRIORITY)


@pytest.fixture
def presets(store, work_settings, style_only, layout_only):
    store.create("Work", preset_id="work", settings=work_settings)
    store.create("Tagged", preset_id="tagged", settings=style_only)
    store.create("Folder", preset_id="folder", settings=layout_only)
    return store


class TestSelection:
    """Apply modes pick a single candidate."""

    def test_concrete_scenario(self, presets, folder_index, resolver):
        folder_index.assign("Projects", "work", overrides_global=True)
        p = policy(apply_mode=ApplyMode.FOLDER_FIRST)

        in_projects = resolver.resolve("Projects/a.md", [], p)
        elsewhere = resolver.resolve("Other/a.md", [], p)

        assert in_projects.preset_id == "work"
        assert in_projects.settings.content.show_body is False
        assert elsewhere.preset_id == BOOTSTRAP_PRESET_ID
        assert elsewhere.settings == complete_settings(default_settings())

    def test_folder_first_ignores_tags_when_folder_assigned(self, presets, folder_index, tag_index, resolver):
        folder_index.assign("Projects", "work")
        tag_index.assign("style", "tagged")

        result = resolver.resolve("Projects/Deep/a.md", ["style"], policy(apply_mode=ApplyMode.FOLDER_FIRST))

        assert result.preset_id == "work"

    def test_folder_first_uses_tag_without_folder(self, presets, tag_index, resolver):
        tag_index.assign("style", "tagged")
        result = resolver.resolve("Inbox/a.md", ["style"], policy(apply_mode=ApplyMode.FOLDER_FIRST))
        assert result.preset_id == "tagged"

    def test_tag_first(self, presets, folder_index, tag_index, resolver):
        folder_index.assign("Projects", "work")
        tag_index.assign("style", "tagged")
        result = resolver.resolve("Projects/a.md", ["style"], policy(apply_mode=ApplyMode.TAG_FIRST))
        assert result.preset_id == "tagged"

    def test_folder_only_ignores_tags(self, presets, tag_index, resolver):
        tag_index.assign("style", "tagged")
        result = resolver.resolve("Inbox/a.md", ["style"], policy(apply_mode=ApplyMode.FOLDER_ONLY))
        assert result.preset_id == BOOTSTRAP_PRESET_ID
        assert result.fallback is False

    def test_tag_only_ignores_folder(self, presets, folder_index, resolver):
        folder_index.assign("Projects", "work")
        result = resolver.resolve("Projects/a.md", [], policy(apply_mode=ApplyMode.TAG_ONLY))
        assert result.preset_id == BOOTSTRAP_PRESET_ID

    def test_disabled_axis_is_skipped(self, presets, folder_index, resolver):
        folder_index.assign("Projects", "work")
        p = policy(apply_mode=ApplyMode.FOLDER_FIRST, auto_apply_folder=False)
        assert resolver.resolve("Projects/a.md", [], p).preset_id == BOOTSTRAP_PRESET_ID

    def test_determinism(self, presets, folder_index, tag_index, resolver):
        folder_index.assign("Projects", "work")
        tag_index.assign("style", "tagged")
        p = policy(**MERGED_PRIORITY)

        first = resolver.resolve_for_file("Projects/a.md", ["style"], p)
        second = resolver.resolve_for_file("Projects/a.md", ["style"], p)

        assert first == second


class TestTagTieBreak:
    @pytest.fixture
    def tagged(self, presets, tag_index):
        tag_index.assign("zeta", "work", overrides_global=False)
        tag_index.assign("alpha", "tagged")
        return tag_index

    def test_first_supplied(self, tagged, resolver):
        result = resolver.resolve("a.md", ["zeta", "alpha"], policy(apply_mode=ApplyMode.TAG_ONLY))
        assert result.preset_id == "work"

    def test_overriding_first(self, tagged, resolver):
        p = policy(apply_mode=ApplyMode.TAG_ONLY, tag_tie_break=TagTieBreak.OVERRIDING_FIRST)
        assert resolver.resolve("a.md", ["zeta", "alpha"], p).preset_id == "tagged"

    def test_alphabetical(self, tagged, resolver):
        p = policy(apply_mode=ApplyMode.TAG_ONLY, tag_tie_break=TagTieBreak.ALPHABETICAL)
        assert resolver.resolve("a.md", ["zeta", "alpha"], p).preset_id == "tagged"

    def test_unassigned_tags_are_ignored(self, tagged, resolver):
        result = resolver.resolve("a.md", ["none", "alpha"], policy(apply_mode=ApplyMode.TAG_ONLY))
        assert result.preset_id == "tagged"


class TestMergedOrdering:
    """Merged mode builds an ordered list; PriorityOnly takes its last element."""

    def test_tag_folder_global_order(self, presets, folder_index, tag_index, resolver):
        folder_index.assign("Projects", "folder")
        tag_index.assign("style", "tagged")
        p = policy(apply_mode=ApplyMode.MERGED, priority_order=PriorityOrder.TAG_FOLDER_GLOBAL)

        result = resolver.resolve("Projects/a.md", ["style"], p)

        assert result.ordered_preset_ids == [BOOTSTRAP_PRESET_ID, "folder", "tagged"]
        assert result.preset_id == "tagged"

    def test_folder_tag_global_order(self, presets, folder_index, tag_index, resolver):
        folder_index.assign("Projects", "folder")
        tag_index.assign("style", "tagged")
        p = policy(apply_mode=ApplyMode.MERGED, priority_order=PriorityOrder.FOLDER_TAG_GLOBAL)

        result = resolver.resolve("Projects/a.md", ["style"], p)

        assert result.ordered_preset_ids == [BOOTSTRAP_PRESET_ID, "tagged", "folder"]
        assert result.preset_id == "folder"

    def test_non_overriding_entries_go_below_global(self, presets, folder_index, tag_index, resolver):
        folder_index.assign("Projects", "folder", overrides_global=False)
        tag_index.assign("style", "tagged")
        p = policy(apply_mode=ApplyMode.MERGED, priority_order=PriorityOrder.FOLDER_TAG_GLOBAL)

        result = resolver.resolve("Projects/a.md", ["style"], p)

        assert result.ordered_preset_ids == ["folder", BOOTSTRAP_PRESET_ID, "tagged"]

    def test_explicit_global_beats_non_overriding_local(self, presets, folder_index, resolver):
        folder_index.assign("Projects", "folder", overrides_global=False)
        p = policy(apply_mode=ApplyMode.MERGED)
        assert resolver.resolve("Projects/a.md", [], p).preset_id == BOOTSTRAP_PRESET_ID

    def test_custom_order_uses_flags_only(self, presets, folder_index, tag_index, resolver):
        folder_index.assign("Projects", "folder")
        tag_index.assign("style", "tagged", overrides_global=False)
        p = policy(apply_mode=ApplyMode.MERGED, priority_order=PriorityOrder.CUSTOM)

        result = resolver.resolve("Projects/a.md", ["style"], p)

        assert result.ordered_preset_ids == ["tagged", BOOTSTRAP_PRESET_ID, "folder"]

    def test_no_global_default(self, presets, folder_index, resolver):
        presets.clear_global_default()
        folder_index.assign("Projects", "folder", overrides_global=False)
        result = resolver.resolve("Projects/a.md", [], policy(apply_mode=ApplyMode.MERGED))
        assert result.ordered_preset_ids == ["folder"]


class TestMergePriority:
    def test_group_level_merge(self, presets, folder_index, tag_index, resolver, style_only, layout_only):
        tag_index.assign("style", "tagged")
        folder_index.assign("Projects", "folder")
        p = policy(priority_order=PriorityOrder.FOLDER_TAG_GLOBAL, **MERGED_PRIORITY)

        result = resolver.resolve("Projects/a.md", ["style"], p)
        defaults = default_settings()

        assert result.settings.layout == complete_settings(layout_only).layout
        assert result.settings.style == complete_settings(style_only).style
        assert result.settings.content == defaults.content
        assert result.settings.sort == defaults.sort
        assert result.settings.card_set == defaults.card_set
        assert result.group_sources == {
            "content": BOOTSTRAP_PRESET_ID,
            "style": "tagged",
            "layout": "folder",
            "sort": BOOTSTRAP_PRESET_ID,
            "card_set": BOOTSTRAP_PRESET_ID,
        }

    def test_groups_are_not_field_merged(self, store, folder_index, resolver):
        store.create("Base", preset_id="base", settings={"style": {"bodyFontSize": 30, "showFooter": False}})
        store.set_global_default("base")
        store.create("Top", preset_id="top", settings={"style": {"showHeader": False}})
        folder_index.assign("Projects", "top")

        result = resolver.resolve("Projects/a.md", [], policy(**MERGED_PRIORITY))

        # the whole style group comes from "top"; missing fields are built-in defaults
        assert result.settings.style.show_header is False
        assert result.settings.style.body_font_size == default_settings().style.body_font_size
        assert result.settings.style.show_footer is True


class TestMergeCustom:
    @pytest.fixture
    def layered(self, store, folder_index, tag_index):
        store.create("Folder", preset_id="f", settings={"style": {"bodyFontSize": 18, "showFooter": False}})
        store.create("Tag", preset_id="t", settings={"style": {"showFooter": True}, "sort": {"field": "created"}})
        folder_index.assign("Projects", "f")
        tag_index.assign("deep", "t")
        return store

    def custom(self, strategy=MergeStrategy.FOLDER_BASE, **kwargs):
        return policy(
            apply_mode=ApplyMode.MERGED,
            conflict_resolution=ConflictResolution.MERGE_CUSTOM,
            merge_strategy=strategy,
            **kwargs,
        )

    def test_field_merge_onto_folder_base(self, layered, resolver):
        result = resolver.resolve("Projects/a.md", ["deep"], self.custom())

        assert result.settings.style.body_font_size == 18
        assert result.settings.style.show_footer is True
        assert result.group_sources["style"] == "f+t"
        assert result.group_sources["sort"] == "t"
        assert result.merge_error is None

    def test_absent_field_never_clears_base(self, store, folder_index, tag_index, resolver):
        store.create("Folder", preset_id="f", settings={"layout": {"type": "grid", "cardThresholdWidth": 400}})
        store.create("Tag", preset_id="t", settings={"layout": {"isVertical": False, "type": None}})
        folder_index.assign("Projects", "f")
        tag_index.assign("deep", "t")

        result = resolver.resolve("Projects/a.md", ["deep"], self.custom())

        assert result.settings.layout.type is LayoutType.GRID
        assert result.settings.layout.card_threshold_width == 400
        assert result.settings.layout.is_vertical is False

    def test_missing_base_behaves_like_merge_priority(self, layered, resolver):
        result = resolver.resolve("Projects/a.md", [], self.custom(MergeStrategy.TAG_BASE))
        assert result.group_sources["style"] == "f"

    def test_default_base_merges_everything_above_global(self, layered, resolver):
        result = resolver.resolve("Projects/a.md", ["deep"], self.custom(MergeStrategy.DEFAULT_BASE))

        assert result.settings.style.body_font_size == 18
        assert result.settings.style.show_footer is True
        assert result.settings.style.tags_font_size == default_settings().style.tags_font_size
        assert result.group_sources["style"] == f"{BOOTSTRAP_PRESET_ID}+f+t"

    def test_registered_rule_is_used(self, layered, resolver):
        def keep_larger_font(base, override):
            merged = {**base, **{k: v for k, v in override.items() if v is not None}}
            merged["body_font_size"] = max(base.get("body_font_size") or 0, override.get("body_font_size") or 0)
            return merged

        resolver.register_merge_rule("style", keep_larger_font)
        result = resolver.resolve("Projects/a.md", ["deep"], self.custom())

        assert result.settings.style.body_font_size == 18
        assert result.settings.style.show_footer is True

    def test_failing_rule_falls_back_to_merge_priority(self, layered, resolver, notifier):
        errors = []
        notifier.on_error(errors.append)

        def broken(base, override):
            raise RuntimeError("rule exploded")

        resolver.register_merge_rule("style", broken)
        result = resolver.resolve("Projects/a.md", ["deep"], self.custom())

        assert isinstance(result.merge_error, MergeError)
        assert result.merge_error.group == "style"
        # merge_priority: the tag's style group wins wholesale
        assert result.settings.style.body_font_size == default_settings().style.body_font_size
        assert result.settings.style.show_footer is True
        assert len(errors) == 1
        assert errors[0].kind is EventKind.ERROR
        assert isinstance(errors[0].error, MergeError)

    def test_invalid_merged_values_raise_merge_error(self, layered, resolver):
        resolver.register_merge_rule("style", lambda base, override: {"body_font_size": -1})
        result = resolver.resolve("Projects/a.md", ["deep"], self.custom())
        assert result.merge_error is not None
        assert "Merged values are invalid" in result.merge_error.details

    def test_register_unknown_group(self, resolver):
        with pytest.raises(ValueError):
            resolver.register_merge_rule("colors", lambda b, o: b)


class TestFallback:
    def test_delete_cascade_falls_back_to_bootstrap(self, presets, folder_index, resolver):
        presets.set_global_default("work")
        folder_index.assign("/Notes", "work")

        presets.delete("work")
        result = resolver.resolve("Notes/a.md", [], policy())

        assert presets.global_default_id is None
        assert folder_index.get("Notes") is None
        assert result.preset_id == BOOTSTRAP_PRESET_ID
        assert result.fallback is True

    def test_dangling_reference_uses_global(self, presets, folder_index, resolver):
        folder_index.load({"Ghost": FolderAssignment(folder_path="Ghost", preset_id="ghost")})

        result = resolver.resolve("Ghost/a.md", [], policy())

        assert result.preset_id == BOOTSTRAP_PRESET_ID
        assert result.fallback is True

    def test_synthesized_bootstrap_when_store_lacks_default(self, store, folder_index, resolver):
        store.create("Work", preset_id="work")
        store.delete(BOOTSTRAP_PRESET_ID)

        result = resolver.resolve("a.md", [], policy())

        assert result.preset_id == BOOTSTRAP_PRESET_ID
        assert result.settings.is_complete()

    def test_renamed_bootstrap_preset_is_still_the_fallback(self, store, resolver):
        """The bootstrap preset is found by its flag, not by its original id."""
        store.update(BOOTSTRAP_PRESET_ID, {"style": {"body_font_size": 30}})
        store.rename(BOOTSTRAP_PRESET_ID, "base")
        store.clear_global_default()

        result = resolver.resolve("Notes/a.md", [], policy())

        assert result.preset_id == "base"
        assert result.fallback is True
        assert result.settings.style.body_font_size == 30

    def test_partial_preset_is_completed(self, presets, folder_index, resolver, layout_only):
        folder_index.assign("Projects", "folder")
        result = resolver.resolve("Projects/a.md", [], policy())

        assert result.settings.is_complete()
        assert result.settings.layout.type is LayoutType.GRID
        assert result.settings.layout.smooth_scroll == default_settings().layout.smooth_scroll
        assert result.group_sources["style"] == BUILTIN_SOURCE
        assert result.group_sources["layout"] == "folder"

    def test_unexpected_failure_returns_defaults(self, presets, resolver, notifier):
        errors = []
        notifier.on_error(errors.append)

        with patch.object(PresetResolver, "_resolve", side_effect=RuntimeError("bug")):
            result = resolver.resolve("a.md", [], policy())

        assert result.fallback is True
        assert result.settings.is_complete()
        assert len(errors) == 1


class TestCompleteSettings:
    def test_fills_every_group(self):
        completed = complete_settings(PresetSettings(style=StyleSettings(body_font_size=22)))
        assert completed.is_complete()
        assert completed.style.body_font_size == 22
        for group in SETTINGS_GROUPS:
            assert getattr(completed, group) is not None
