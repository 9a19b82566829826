"""Tests for the PresetManager facade: persistence, import/export and activation."""

import json
import threading
from unittest.mock import Mock

import pytest
from pydantic import ValidationError

from notepresets.core.file_context import FileContext
from notepresets.core.notifier import EventKind
from notepresets.models.config import (
    BOOTSTRAP_PRESET_ID,
    ApplyMode,
    ConflictResolution,
    PriorityOrder,
    ProjectConfig,
    ResolutionPolicy,
)
from notepresets.models.results import ResultStatus
from notepresets.presets.preset_manager import PresetManager
from notepresets.storage.gateway import InMemoryGateway, JsonFileGateway, YamlFileGateway
from notepresets.utils.error_formatter import SerializationError, StorageError


class TestLoad:
    def test_first_run_bootstraps_and_saves(self, manager, gateway):
        assert [p.id for p in manager.list_presets()] == [BOOTSTRAP_PRESET_ID]
        assert manager.store.global_default_id == BOOTSTRAP_PRESET_ID
        assert gateway.blob["globalDefaultPresetId"] == BOOTSTRAP_PRESET_ID

    def test_state_survives_reload(self, manager, gateway, work_settings):
        manager.create_preset("Work", settings=work_settings, preset_id="work")
        manager.assign_folder("Projects", "work", overrides_global=False)
        manager.assign_tag("job", "work")
        manager.set_policy(apply_mode=ApplyMode.MERGED)

        reloaded = PresetManager(gateway=gateway)
        assert reloaded.load()

        assert reloaded.get_preset("work").settings == work_settings
        assert reloaded.folder_index.priority("Projects") is False
        assert reloaded.tag_index.resolve("job") == "work"
        assert reloaded.policy.apply_mode is ApplyMode.MERGED

    def test_invalid_blob_recovers_with_bootstrap(self):
        gateway = InMemoryGateway({"presets": "not a list"})
        manager = PresetManager(gateway=gateway)
        errors = []
        manager.notifier.on_error(errors.append)

        assert manager.load() is False

        assert [p.id for p in manager.list_presets()] == [BOOTSTRAP_PRESET_ID]
        assert isinstance(errors[0].error, SerializationError)
        assert errors[0].data["operation"] == "load"
        # the unreadable blob is left untouched until the next mutation
        assert gateway.blob == {"presets": "not a list"}

    def test_corrupt_file_recovers(self, tmp_path):
        path = tmp_path / "presets.json"
        path.write_text("{broken")
        manager = PresetManager(gateway=JsonFileGateway(path))
        assert manager.load() is False
        assert manager.store.global_default_id == BOOTSTRAP_PRESET_ID

    def test_undecodable_file_recovers(self, tmp_path):
        path = tmp_path / "presets.json"
        path.write_bytes(b'{"presets": [{"id": "x\xff\xfe", "name": "X"}]}')
        manager = PresetManager(gateway=JsonFileGateway(path))
        errors = []
        manager.notifier.on_error(errors.append)

        assert manager.load() is False

        assert [p.id for p in manager.list_presets()] == [BOOTSTRAP_PRESET_ID]
        assert isinstance(errors[0].error, SerializationError)

    def test_dangling_references_dropped_on_load(self, caplog):
        gateway = InMemoryGateway({
            "presets": [{"id": "work", "name": "Work"}],
            "folderAssignments": {"Projects": {"presetId": "work"}, "Ghost": {"presetId": "ghost"}},
            "tagAssignments": {"t": {"presetId": "ghost"}},
            "globalDefaultPresetId": "ghost",
        })
        manager = PresetManager(gateway=gateway)
        manager.load()

        assert list(manager.folder_index) == ["Projects"]
        assert len(manager.tag_index) == 0
        assert manager.store.global_default_id is None
        assert manager.coordinator.dangling_references() == []
        assert "ghost" in caplog.text

    def test_legacy_blob_is_migrated_and_rewritten(self):
        gateway = InMemoryGateway({
            "presets": [{"id": "work", "name": "Work"}],
            "folderPresets": {"Projects": "work"},
            "folderPresetPriorities": {"Projects": False},
        })
        manager = PresetManager(gateway=gateway)
        manager.load()

        assert manager.folder_index.priority("Projects") is False
        assert "folderPresets" not in gateway.blob
        assert gateway.blob["folderAssignments"] == {"Projects": {"presetId": "work", "overridesGlobal": False}}

    def test_empty_store_in_blob_is_bootstrapped(self):
        manager = PresetManager(gateway=InMemoryGateway({"presets": []}))
        manager.load()
        assert manager.store.exists(BOOTSTRAP_PRESET_ID)

    def test_from_project_config(self, tmp_path):
        config = ProjectConfig(policy=ResolutionPolicy(apply_mode=ApplyMode.TAG_ONLY), tag_case_sensitive=False)
        manager = PresetManager.from_project_config(config, tmp_path / "presets.yaml")

        assert isinstance(manager.gateway, YamlFileGateway)
        assert manager.policy.apply_mode is ApplyMode.TAG_ONLY
        assert manager.tag_index.case_sensitive is False


class TestSave:
    def test_autosave_after_mutation(self, manager, gateway):
        count = gateway.save_count
        manager.create_preset("Work", preset_id="work")
        assert gateway.save_count == count + 1

    def test_failed_operation_does_not_save(self, manager, gateway):
        count = gateway.save_count
        manager.assign_folder("Projects", "missing")
        manager.unassign_folder("Nothing")
        assert gateway.save_count == count

    def test_autosave_off(self, gateway):
        manager = PresetManager(gateway=gateway, autosave=False)
        manager.load()
        count = gateway.save_count
        manager.create_preset("Work")
        assert gateway.save_count == count
        assert manager.save()
        assert gateway.save_count == count + 1

    def test_retries_then_reports(self, manager):
        failing = Mock()
        failing.save.side_effect = StorageError("disk full")
        manager.gateway = failing
        errors = []
        manager.notifier.on_error(errors.append)

        result = manager.create_preset("Work")

        assert result
        assert failing.save.call_count == manager.save_retries + 1
        assert isinstance(errors[0].error, StorageError)

    def test_transient_failure_is_retried(self, manager):
        flaky = Mock()
        flaky.save.side_effect = [OSError("busy"), None]
        manager.gateway = flaky
        assert manager.save()
        assert flaky.save.call_count == 2

    def test_file_gateway_end_to_end(self, tmp_path):
        path = tmp_path / "store" / "presets.json"
        manager = PresetManager(gateway=JsonFileGateway(path))
        manager.load()
        manager.create_preset("Work", preset_id="work")

        blob = json.loads(path.read_text())
        assert [p["id"] for p in blob["presets"]] == [BOOTSTRAP_PRESET_ID, "work"]


class TestPresetOperations:
    def test_delete_cascades_and_clears_active(self, manager):
        manager.create_preset("Work", preset_id="work")
        manager.assign_folder("/Notes", "work")
        manager.set_global_default("work")
        manager.apply_preset("work")

        assert manager.delete_preset("work")

        assert manager.active_preset_id is None
        assert manager.folder_index.get("Notes") is None
        assert manager.store.global_default_id is None
        assert manager.resolve_for_file("Notes/a.md") == manager.resolve_for_file("a.md")

    def test_renamed_default_preset_backs_unassigned_notes(self, manager):
        manager.update_preset(BOOTSTRAP_PRESET_ID, {"style": {"body_font_size": 30}})
        manager.rename_preset(BOOTSTRAP_PRESET_ID, "base")
        manager.clear_global_default()

        result = manager.explain("Notes/a.md", [])

        assert result.preset_id == "base"
        assert result.settings.style.body_font_size == 30

    def test_rename_keeps_assignments_and_active(self, manager):
        manager.create_preset("Work", preset_id="A")
        manager.assign_tag("job", "A")
        manager.apply_preset("A")

        assert manager.rename_preset("A", "B")

        assert manager.tag_index.resolve("job") == "B"
        assert manager.active_preset_id == "B"
        assert manager.explain("x.md", ["job"]).preset_id == "B"

    def test_presets_using(self, manager):
        manager.create_preset("Work", preset_id="work")
        manager.assign_folder("Projects", "work")
        manager.assign_tag("job", "work")
        assert manager.presets_using("work") == {"folders": ["Projects"], "tags": ["job"], "global_default": False}

    def test_clone(self, manager, work_settings):
        manager.create_preset("Work", preset_id="work", settings=work_settings)
        clone = manager.clone_preset("work", "Work 2").value
        assert clone.name == "Work 2"
        assert clone.settings == work_settings

    def test_priority_editing(self, manager):
        manager.create_preset("Work", preset_id="work")
        manager.assign_folder("Projects", "work")
        manager.assign_tag("job", "work")

        assert manager.set_folder_priority("Projects", False)
        assert manager.set_tag_priority("job", False)
        assert manager.set_tag_priority("nope", True).status is ResultStatus.NOT_FOUND
        assert manager.folder_index.priority("Projects") is False


class TestImportExport:
    def test_export_skips_unknown_ids(self, manager):
        manager.create_preset("Work", preset_id="work")
        result = manager.export_presets(["work", "missing"])
        assert [e["id"] for e in json.loads(result.value)] == ["work"]

    def test_export_nothing(self, manager):
        assert manager.export_presets(["missing"]).status is ResultStatus.NOT_FOUND

    def test_import_renames_collisions(self, manager, recorder_for):
        events = recorder_for(manager)
        manager.create_preset("Work", preset_id="work")
        document = manager.export_presets(["work"]).value

        result = manager.import_presets(document)

        imported = result.value
        assert len(imported) == 1
        assert imported[0].id.startswith("work-")
        assert imported[0].name == "Work (2)"
        assert not imported[0].is_default
        batch = [e for e in events if e.kind is EventKind.IMPORTED_BATCH]
        assert len(batch) == 1
        assert batch[0].data["preset_ids"] == [imported[0].id]

    def test_import_skips_incomplete_entries(self, manager):
        text = (
            "- {id: a, name: A}\n"
            "- {name: no id}\n"
            "- {id: b}\n"
            "- {id: c, name: C, settings: {layout: {type: spiral}}}\n"
            "- just a string\n"
        )
        result = manager.import_presets(text)
        assert [p.id for p in result.value] == ["a"]

    def test_import_bootstrap_copy_is_not_default(self, manager):
        document = manager.export_presets([BOOTSTRAP_PRESET_ID]).value
        imported = manager.import_presets(document).value[0]
        assert imported.is_default is False
        assert manager.store.global_default_id == BOOTSTRAP_PRESET_ID

    def test_import_invalid_document(self, manager):
        with pytest.raises(SerializationError):
            manager.import_presets("[unclosed")

    def test_nothing_imported_emits_no_event(self, manager, recorder_for):
        events = recorder_for(manager)
        manager.import_presets("[]")
        assert events == []


class TestPolicyAndActivation:
    def test_set_policy_emits_changed_fields(self, manager, recorder_for):
        events = recorder_for(manager)
        manager.set_policy(apply_mode=ApplyMode.MERGED, priority_order=PriorityOrder.FOLDER_TAG_GLOBAL)
        manager.set_policy(apply_mode=ApplyMode.MERGED)

        changes = [e for e in events if e.kind is EventKind.POLICY_CHANGED]
        assert len(changes) == 1
        assert changes[0].data["changed"] == ["apply_mode", "priority_order"]

    def test_set_policy_rejects_unknown(self, manager):
        with pytest.raises(ValidationError):
            manager.set_policy(apply_mode="sideways")
        with pytest.raises(ValidationError):
            manager.set_policy(colour="red")

    def test_set_whole_policy(self, manager):
        manager.set_policy(ResolutionPolicy(conflict_resolution=ConflictResolution.MERGE_PRIORITY))
        assert manager.policy.conflict_resolution is ConflictResolution.MERGE_PRIORITY

    def test_active_file_changes_publish_applied(self, manager, recorder_for):
        manager.create_preset("Work", preset_id="work")
        manager.assign_folder("Projects", "work")
        events = recorder_for(manager)

        manager.on_active_file_changed(FileContext("Projects/a.md", []))
        manager.on_active_file_changed(FileContext("Projects/b.md", []))
        manager.on_active_file_changed("Other/c.md")

        applied = [e for e in events if e.kind is EventKind.APPLIED]
        assert [e.preset_id for e in applied] == ["work", BOOTSTRAP_PRESET_ID]
        assert applied[0].key == "Projects/a.md"
        assert applied[0].data["source"] == "auto"

    def test_auto_apply_off(self, manager):
        manager.set_policy(auto_apply=False)
        assert manager.on_active_file_changed("a.md") is None
        assert manager.active_preset_id is None

    def test_no_active_file(self, manager):
        assert manager.on_active_file_changed(None) is None

    def test_apply_unknown_preset(self, manager):
        assert manager.apply_preset("missing").status is ResultStatus.NOT_FOUND

    def test_unsubscribe(self, manager):
        handler = Mock()
        subscription = manager.subscribe(EventKind.CREATED, handler)
        manager.unsubscribe(subscription)
        manager.create_preset("Work")
        handler.assert_not_called()


class TestReferentialIntegrity:
    def test_no_dangling_references_after_mixed_operations(self, manager):
        for name in ("a", "b", "c"):
            manager.create_preset(name.upper(), preset_id=name)
        manager.assign_folder("x", "a")
        manager.assign_folder("x/y", "b")
        manager.assign_tag("t1", "a")
        manager.assign_tag("t2", "c")
        manager.set_global_default("b")
        manager.rename_preset("a", "a2")
        manager.delete_preset("b")
        manager.assign_folder("z", "missing")
        manager.rename_preset("c", "a2")
        manager.delete_preset("a2")

        assert manager.coordinator.dangling_references() == []
        referenced = manager.folder_index.referenced_preset_ids() + manager.tag_index.referenced_preset_ids()
        assert all(manager.store.exists(pid) for pid in referenced)

    def test_concurrent_resolution_never_sees_renamed_id(self, manager):
        manager.create_preset("Work", preset_id="A")
        manager.assign_folder("Projects", "A")
        manager.set_policy(apply_mode=ApplyMode.FOLDER_ONLY)
        seen = set()
        stop = threading.Event()

        def resolve_loop():
            while not stop.is_set():
                seen.add(manager.explain("Projects/a.md").preset_id)

        worker = threading.Thread(target=resolve_loop)
        worker.start()
        try:
            for i in range(50):
                manager.rename_preset("A" if i % 2 == 0 else "B", "B" if i % 2 == 0 else "A")
        finally:
            stop.set()
            worker.join()

        assert seen <= {"A", "B"}
