"""Serialization of the persisted preset configuration blob.

The blob is a JSON-like dict::

    {version, presets: [...], folderAssignments: {path: {presetId, overridesGlobal}},
     tagAssignments: {tag: {...}}, globalDefaultPresetId, policy: {...}}

Older blobs kept assignments as two parallel maps (``folderPresets`` plus
``folderPresetPriorities``); those are folded into the record form on load.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

import yaml
from jsonschema import Draft202012Validator
from pydantic import ValidationError

from ..models.config import FolderAssignment, Preset, ResolutionPolicy, StorageFormat, TagAssignment
from ..utils.error_formatter import SerializationError

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

_ASSIGNMENT_SCHEMA = {
    "type": "object",
    "required": ["presetId"],
    "properties": {
        "presetId": {"type": "string", "minLength": 1},
        "overridesGlobal": {"type": ["boolean", "null"]},
    },
}

_PRESET_SCHEMA = {
    "type": "object",
    "required": ["id", "name"],
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "name": {"type": "string"},
        "description": {"type": "string"},
        "createdAt": {"type": "string"},
        "updatedAt": {"type": "string"},
        "settings": {"type": "object"},
        "isDefault": {"type": "boolean"},
    },
}

BLOB_SCHEMA = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "properties": {
        "version": {"type": "integer", "minimum": 1},
        "presets": {"type": "array", "items": _PRESET_SCHEMA},
        "folderAssignments": {"type": "object", "additionalProperties": _ASSIGNMENT_SCHEMA},
        "tagAssignments": {"type": "object", "additionalProperties": _ASSIGNMENT_SCHEMA},
        "globalDefaultPresetId": {"type": ["string", "null"]},
        "policy": {"type": "object"},
        # legacy parallel-map layout
        "folderPresets": {"type": "object", "additionalProperties": {"type": "string"}},
        "folderPresetPriorities": {"type": "object", "additionalProperties": {"type": "boolean"}},
        "tagPresets": {"type": "object", "additionalProperties": {"type": "string"}},
        "tagPresetPriorities": {"type": "object", "additionalProperties": {"type": "boolean"}},
        "defaultPresetId": {"type": ["string", "null"]},
    },
}

_validator = Draft202012Validator(BLOB_SCHEMA)


@dataclass
class ConfigSnapshot:
    """Everything the manager persists, in model form."""
    presets: List[Preset] = field(default_factory=list)
    folder_assignments: Dict[str, FolderAssignment] = field(default_factory=dict)
    tag_assignments: Dict[str, TagAssignment] = field(default_factory=dict)
    global_default_id: Optional[str] = None
    policy: ResolutionPolicy = field(default_factory=ResolutionPolicy)
    migrated: bool = False


class ConfigParser:
    """Converts between :class:`ConfigSnapshot` and the raw blob."""

    def validate(self, blob: Any, source: Optional[str] = None) -> None:
        if not isinstance(blob, dict):
            raise SerializationError(
                f"Expected a mapping at the top level, got {type(blob).__name__}", source=source
            )
        errors = sorted(_validator.iter_errors(blob), key=lambda e: [str(p) for p in e.absolute_path])
        if errors:
            messages = [
                f"{'/'.join(str(p) for p in error.absolute_path) or '<root>'}: {error.message}"
                for error in errors
            ]
            raise SerializationError(
                f"{len(messages)} schema violation(s) in stored configuration", source=source, errors=messages
            )

    def migrate(self, blob: Dict[str, Any]) -> Dict[str, Any]:
        """Fold legacy parallel maps into assignment records."""
        migrated = dict(blob)
        changed = False
        for prefix in ("folder", "tag"):
            ids = migrated.pop(f"{prefix}Presets", None)
            priorities = migrated.pop(f"{prefix}PresetPriorities", None) or {}
            if ids is None:
                if priorities:
                    logger.warning(f"Ignoring {prefix}PresetPriorities without {prefix}Presets")
                    changed = True
                continue
            records = dict(migrated.get(f"{prefix}Assignments") or {})
            for key, preset_id in ids.items():
                records.setdefault(key, {"presetId": preset_id, "overridesGlobal": priorities.get(key)})
            orphaned = sorted(set(priorities) - set(ids))
            if orphaned:
                logger.warning(f"Dropping {prefix} priorities without an assignment: {orphaned}")
            migrated[f"{prefix}Assignments"] = records
            changed = True
        if "defaultPresetId" in migrated:
            legacy_default = migrated.pop("defaultPresetId")
            migrated.setdefault("globalDefaultPresetId", legacy_default)
            changed = True
        if changed:
            logger.info("Migrated legacy preset configuration layout")
        return migrated

    def deserialize(self, blob: Any, source: Optional[str] = None) -> ConfigSnapshot:
        """Validate and convert a raw blob; raises :class:`SerializationError`."""
        self.validate(blob, source)
        version = blob.get("version", SCHEMA_VERSION)
        if version > SCHEMA_VERSION:
            raise SerializationError(
                f"Configuration version {version} is newer than supported version {SCHEMA_VERSION}",
                source=source,
            )
        data = self.migrate(blob)
        snapshot = ConfigSnapshot(migrated=data != blob)
        try:
            snapshot.presets = [Preset.model_validate(entry) for entry in data.get("presets") or []]
            snapshot.folder_assignments = {
                path: FolderAssignment(folder_path=path, **record)
                for path, record in (data.get("folderAssignments") or {}).items()
            }
            snapshot.tag_assignments = {
                tag: TagAssignment(tag_name=tag, **record)
                for tag, record in (data.get("tagAssignments") or {}).items()
            }
            snapshot.policy = ResolutionPolicy.model_validate(data.get("policy") or {})
        except (ValidationError, TypeError) as e:
            raise SerializationError(f"Stored values are invalid: {e}", source=source) from e
        snapshot.global_default_id = data.get("globalDefaultPresetId")
        return snapshot

    def serialize(self, snapshot: ConfigSnapshot) -> Dict[str, Any]:
        return {
            "version": SCHEMA_VERSION,
            "presets": [self.dump_preset(p) for p in snapshot.presets],
            "folderAssignments": {
                path: _dump_assignment(a) for path, a in snapshot.folder_assignments.items()
            },
            "tagAssignments": {
                tag: _dump_assignment(a) for tag, a in snapshot.tag_assignments.items()
            },
            "globalDefaultPresetId": snapshot.global_default_id,
            "policy": snapshot.policy.model_dump(by_alias=True, mode="json"),
        }

    @staticmethod
    def dump_preset(preset: Preset) -> Dict[str, Any]:
        data = preset.model_dump(by_alias=True, mode="json", exclude={"settings"})
        data["settings"] = preset.settings.model_dump(by_alias=True, mode="json", exclude_none=True)
        return data

    # ------------------------------------------------------------------
    # Import / export documents
    # ------------------------------------------------------------------

    def export_document(self, presets: List[Preset], fmt: Union[StorageFormat, str] = StorageFormat.JSON) -> str:
        entries = [self.dump_preset(p) for p in presets]
        if StorageFormat(fmt) is StorageFormat.YAML:
            return yaml.safe_dump(entries, sort_keys=False, allow_unicode=True)
        return json.dumps(entries, indent=2, ensure_ascii=False)

    def parse_import_document(self, text: str, source: Optional[str] = None) -> List[Dict[str, Any]]:
        """Raw preset entries from a JSON or YAML document (one preset or a list).

        JSON is a subset of YAML, so a single YAML parse handles both.
        """
        try:
            content = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise SerializationError(f"Import document is not valid JSON or YAML: {e}", source=source) from e
        if content is None:
            return []
        if isinstance(content, dict):
            if "presets" in content and isinstance(content["presets"], list):
                content = content["presets"]
            else:
                content = [content]
        if not isinstance(content, list):
            raise SerializationError(
                f"Import document must contain a preset or a list of presets, got {type(content).__name__}",
                source=source,
            )
        return content


def _dump_assignment(assignment: Union[FolderAssignment, TagAssignment]) -> Dict[str, Any]:
    record: Dict[str, Any] = {"presetId": assignment.preset_id}
    if assignment.overrides_global is not None:
        record["overridesGlobal"] = assignment.overrides_global
    return record
