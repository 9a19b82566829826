"""Where the ``(path, tags)`` of the note of interest comes from."""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional, Protocol, Union

import yaml

logger = logging.getLogger(__name__)

_FRONTMATTER = re.compile(r"\A---\s*\n(.*?)\n---\s*(?:\n|\Z)", re.DOTALL)
_INLINE_TAG = re.compile(r"(?<![\w/#&])#([^\s#!@$%^&*(),.?\":{}|<>\[\]`'=+;~]+)")
_FENCE = re.compile(r"^(```|~~~).*?^\1", re.DOTALL | re.MULTILINE)


@dataclass(frozen=True)
class FileContext:
    """Vault-relative path of a note and its tags, in document order."""
    path: str
    tags: List[str] = field(default_factory=list)


class FileContextProvider(Protocol):
    def current(self) -> Optional[FileContext]:
        """The note currently of interest, or ``None`` when there is none."""
        ...


class StaticFileContextProvider:
    """Returns whatever context it was last given."""

    def __init__(self, context: Optional[FileContext] = None):
        self.context = context

    def set(self, path: str, tags: Optional[List[str]] = None) -> FileContext:
        self.context = FileContext(path, list(tags or []))
        return self.context

    def current(self) -> Optional[FileContext]:
        return self.context


def _frontmatter_tags(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [t for t in re.split(r"[,\s]+", value) if t]
    if isinstance(value, (list, tuple)):
        return [str(t) for t in value if t is not None and str(t).strip()]
    return [str(value)]


def extract_tags(text: str) -> List[str]:
    """Frontmatter ``tags``/``tag`` first, then inline ``#tags`` outside code fences.

    Duplicates keep their first position; a leading ``#`` is stripped.
    """
    tags: List[str] = []
    body = text
    match = _FRONTMATTER.match(text)
    if match:
        body = text[match.end():]
        try:
            frontmatter = yaml.safe_load(match.group(1)) or {}
        except yaml.YAMLError as e:
            logger.warning(f"Ignoring unparsable frontmatter: {e}")
            frontmatter = {}
        if isinstance(frontmatter, dict):
            tags.extend(_frontmatter_tags(frontmatter.get("tags", frontmatter.get("tag"))))
    body = _FENCE.sub("", body)
    tags.extend(_INLINE_TAG.findall(body))

    seen = set()
    unique = []
    for tag in tags:
        cleaned = tag.strip().lstrip("#")
        if cleaned and cleaned not in seen:
            seen.add(cleaned)
            unique.append(cleaned)
    return unique


class MarkdownFileContextProvider:
    """Reads tags from a markdown note under a vault root."""

    def __init__(self, vault_root: Union[str, Path], path: Optional[str] = None):
        self.vault_root = Path(vault_root)
        self.path = path

    def open(self, path: str) -> None:
        self.path = path

    def context_for(self, path: Union[str, Path]) -> FileContext:
        file_path = Path(path)
        if not file_path.is_absolute():
            file_path = self.vault_root / file_path
        try:
            relative = file_path.resolve().relative_to(self.vault_root.resolve()).as_posix()
        except ValueError:
            relative = Path(path).as_posix()
        try:
            text = file_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Could not read {file_path}: {e}")
            return FileContext(relative, [])
        return FileContext(relative, extract_tags(text))

    def current(self) -> Optional[FileContext]:
        if self.path is None:
            return None
        return self.context_for(self.path)
