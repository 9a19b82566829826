"""Error types and formatting for note presets."""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCategory(str, Enum):
    CONFIG = "CFG"
    STORAGE = "STO"
    SERIALIZATION = "SER"
    MERGE = "MRG"
    NOTIFY = "NTF"


class NPError(Exception):
    """Formatted error with a stable code and actionable suggestions.

    Rendered as a multi-line block so that CLI users see the code, the
    details and what to try next without digging through a traceback.
    """

    def __init__(
        self,
        category: ErrorCategory,
        code_number: str,
        title: str,
        details: str = "",
        suggestions: Optional[List[str]] = None,
        example: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.category = category
        self.code_number = code_number
        self.code = f"NP-{category.value}-{code_number}"
        self.title = title
        self.details = details
        self.suggestions = suggestions or []
        self.example = example
        self.context = context or {}
        super().__init__(self._format())

    def _format(self) -> str:
        lines = [f"Error [{self.code}]: {self.title}"]
        if self.details:
            lines.append("")
            lines.append(self.details)
        if self.context:
            lines.append("")
            lines.append("Context:")
            for key, value in self.context.items():
                lines.append(f"  {key}: {value}")
        if self.suggestions:
            lines.append("")
            lines.append("How to fix:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"  {i}. {suggestion}")
        if self.example:
            lines.append("")
            lines.append("Example:")
            lines.append(self.example)
        return "\n".join(lines)


class SerializationError(NPError):
    """The persisted configuration blob failed to parse or validate."""

    def __init__(self, details: str, source: Optional[str] = None, errors: Optional[List[str]] = None):
        self.errors = errors or []
        context = {"Source": source} if source else {}
        if self.errors:
            context["Problems"] = "; ".join(self.errors[:5])
        super().__init__(
            category=ErrorCategory.SERIALIZATION,
            code_number="001",
            title="Stored preset configuration is invalid",
            details=details,
            suggestions=[
                "Restore the previous file from the '.bak' copy next to it",
                "Or delete the storage file to start again from the default preset",
            ],
            context=context,
        )


class MergeError(NPError):
    """A custom merge rule failed while combining settings groups."""

    def __init__(self, group: str, details: str, preset_ids: Optional[List[str]] = None):
        self.group = group
        self.preset_ids = preset_ids or []
        super().__init__(
            category=ErrorCategory.MERGE,
            code_number="001",
            title=f"Could not merge settings group '{group}'",
            details=details,
            suggestions=[
                "Check the merge rule registered for this group",
                "Switch conflict resolution to 'merge_priority' to avoid field-level merging",
            ],
            context={"Presets": ", ".join(self.preset_ids)} if self.preset_ids else None,
        )


class StorageError(NPError):
    """Reading or writing the persisted configuration failed."""

    def __init__(self, details: str, path: Optional[str] = None):
        self.path = path
        super().__init__(
            category=ErrorCategory.STORAGE,
            code_number="001",
            title="Preset storage is not accessible",
            details=details,
            suggestions=[
                "Check that the storage directory exists and is writable",
                "Set NPR_STORAGE_PATH or 'storage_path' in npr.yaml to another location",
            ],
            context={"Path": path} if path else None,
        )
