"""Result values for expected outcomes of store and index operations."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class ResultStatus(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    DUPLICATE_ID = "duplicate_id"
    DUPLICATE_NAME = "duplicate_name"
    INVALID_REFERENCE = "invalid_reference"
    INVALID_NAME = "invalid_name"


@dataclass(frozen=True)
class OperationResult:
    """Outcome of a mutating operation.

    Expected failures (unknown ids, collisions, dangling references) are
    returned rather than raised so callers branch on them deliberately.
    The object is truthy only when the operation succeeded.
    """
    status: ResultStatus
    value: Any = None
    message: str = ""

    def is_successful(self) -> bool:
        return self.status is ResultStatus.OK

    def __bool__(self) -> bool:
        return self.is_successful()

    @classmethod
    def ok(cls, value: Any = None, message: str = "") -> "OperationResult":
        return cls(ResultStatus.OK, value, message)

    @classmethod
    def not_found(cls, key: str, kind: str = "Preset") -> "OperationResult":
        return cls(ResultStatus.NOT_FOUND, None, f"{kind} '{key}' not found")

    @classmethod
    def duplicate_id(cls, preset_id: str) -> "OperationResult":
        return cls(ResultStatus.DUPLICATE_ID, None, f"Preset id '{preset_id}' already exists")

    @classmethod
    def invalid_reference(cls, preset_id: str, key: Optional[str] = None) -> "OperationResult":
        target = f" for '{key}'" if key else ""
        return cls(
            ResultStatus.INVALID_REFERENCE,
            None,
            f"Cannot assign unknown preset '{preset_id}'{target}",
        )
