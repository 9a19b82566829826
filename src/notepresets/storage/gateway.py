"""Persistence gateways for the raw configuration blob."""

import copy
import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol, Union

import yaml

from ..models.config import StorageFormat
from ..utils.error_formatter import SerializationError, StorageError

logger = logging.getLogger(__name__)

RawConfigBlob = Dict[str, Any]


class PersistenceGateway(Protocol):
    """Loads and saves the opaque configuration blob.

    ``load`` returns ``None`` when nothing has been stored yet.
    """

    def load(self) -> Optional[RawConfigBlob]:
        ...

    def save(self, blob: RawConfigBlob) -> None:
        ...


class InMemoryGateway:
    """Keeps the blob in memory; used by tests and embedding hosts."""

    def __init__(self, blob: Optional[RawConfigBlob] = None):
        self.blob = copy.deepcopy(blob)
        self.save_count = 0

    def load(self) -> Optional[RawConfigBlob]:
        return copy.deepcopy(self.blob)

    def save(self, blob: RawConfigBlob) -> None:
        self.blob = copy.deepcopy(blob)
        self.save_count += 1


class FileGateway:
    """Reads and atomically rewrites one file.

    Writes go to a temp file in the same directory followed by
    ``os.replace``; the previous file is copied to ``<name>.bak`` first.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    @property
    def backup_path(self) -> Path:
        return self.path.with_name(self.path.name + ".bak")

    def _decode(self, text: str) -> Any:
        raise NotImplementedError

    def _encode(self, blob: RawConfigBlob) -> str:
        raise NotImplementedError

    def load(self) -> Optional[RawConfigBlob]:
        if not self.path.exists():
            logger.debug(f"No stored configuration at {self.path}")
            return None
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise StorageError(f"Could not read {self.path}: {e}", path=str(self.path)) from e
        except UnicodeDecodeError as e:
            raise SerializationError(f"Stored file is not valid UTF-8: {e}", source=str(self.path)) from e
        if not text.strip():
            return None
        return self._decode(text)

    def save(self, blob: RawConfigBlob) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            if self.path.exists():
                try:
                    shutil.copy2(self.path, self.backup_path)
                except OSError as e:
                    logger.warning(f"Could not back up {self.path}: {e}")

            fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(self._encode(blob))
                os.replace(tmp_path, self.path)
            except BaseException:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass
                raise
        except OSError as e:
            raise StorageError(f"Could not write {self.path}: {e}", path=str(self.path)) from e
        logger.debug(f"Saved preset configuration to {self.path}")


class JsonFileGateway(FileGateway):
    def _decode(self, text: str) -> Any:
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise SerializationError(f"Invalid JSON: {e}", source=str(self.path)) from e

    def _encode(self, blob: RawConfigBlob) -> str:
        return json.dumps(blob, indent=2, ensure_ascii=False) + "\n"


class YamlFileGateway(FileGateway):
    def _decode(self, text: str) -> Any:
        try:
            return yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise SerializationError(f"Invalid YAML: {e}", source=str(self.path)) from e

    def _encode(self, blob: RawConfigBlob) -> str:
        return yaml.safe_dump(blob, sort_keys=False, allow_unicode=True)


_GATEWAYS: Dict[StorageFormat, Callable[[Path], FileGateway]] = {
    StorageFormat.JSON: JsonFileGateway,
    StorageFormat.YAML: YamlFileGateway,
}


def infer_format(path: Union[str, Path]) -> StorageFormat:
    suffix = Path(path).suffix.lower()
    return StorageFormat.YAML if suffix in (".yaml", ".yml") else StorageFormat.JSON


def gateway_for(path: Union[str, Path], fmt: Optional[StorageFormat] = None) -> FileGateway:
    """File gateway for ``path``; the format is inferred from the suffix when not given."""
    return _GATEWAYS[fmt or infer_format(path)](Path(path))
