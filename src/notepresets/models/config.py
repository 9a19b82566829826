from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import List, Dict, Any, Optional
from datetime import datetime, timezone
from enum import Enum

BOOTSTRAP_PRESET_ID = "default"
ROOT_FOLDER = "/"
SETTINGS_GROUPS = ("content", "style", "layout", "sort", "card_set")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ApplyMode(str, Enum):
    FOLDER_ONLY = "folder_only"
    TAG_ONLY = "tag_only"
    FOLDER_FIRST = "folder_first"
    TAG_FIRST = "tag_first"
    MERGED = "merged"

class PriorityOrder(str, Enum):
    TAG_FOLDER_GLOBAL = "tag_folder_global"
    FOLDER_TAG_GLOBAL = "folder_tag_global"
    CUSTOM = "custom"

class ConflictResolution(str, Enum):
    PRIORITY_ONLY = "priority_only"
    MERGE_PRIORITY = "merge_priority"
    MERGE_CUSTOM = "merge_custom"

class MergeStrategy(str, Enum):
    FOLDER_BASE = "folder_base"
    TAG_BASE = "tag_base"
    DEFAULT_BASE = "default_base"

class TagTieBreak(str, Enum):
    FIRST_SUPPLIED = "first_supplied"
    OVERRIDING_FIRST = "overriding_first"
    ALPHABETICAL = "alphabetical"

class LayoutType(str, Enum):
    MASONRY = "masonry"
    GRID = "grid"
    LIST = "list"

class SortField(str, Enum):
    FILE_NAME = "file_name"
    FIRST_HEADER = "first_header"
    CREATED = "created"
    MODIFIED = "modified"

class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"

class CardSetMode(str, Enum):
    ACTIVE_FOLDER = "active_folder"
    SELECTED_FOLDER = "selected_folder"
    VAULT = "vault"
    SEARCH = "search"

class StorageFormat(str, Enum):
    JSON = "json"
    YAML = "yaml"


class CamelModel(BaseModel):
    """Persisted models use camelCase keys and accept either spelling."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SettingsGroup(CamelModel):
    """Base for settings groups.

    Every field is optional so that a group can carry a partial override;
    which fields were explicitly provided is tracked by pydantic's fields set.
    """
    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    def explicit_fields(self) -> Dict[str, Any]:
        """Fields that were explicitly provided, ``None`` included."""
        return self.model_dump(mode="json", exclude_unset=True)

class ContentSettings(SettingsGroup):
    """What a card shows."""
    show_file_name: Optional[bool] = None
    show_first_header: Optional[bool] = None
    show_body: Optional[bool] = None
    body_length_limit: Optional[bool] = None
    body_length: Optional[int] = Field(None, ge=0)
    show_tags: Optional[bool] = None

class StyleSettings(SettingsGroup):
    """Card typography and chrome."""
    file_name_font_size: Optional[int] = Field(None, gt=0)
    first_header_font_size: Optional[int] = Field(None, gt=0)
    body_font_size: Optional[int] = Field(None, gt=0)
    tags_font_size: Optional[int] = Field(None, gt=0)
    show_header: Optional[bool] = None
    show_footer: Optional[bool] = None
    drag_drop_content: Optional[bool] = None

class LayoutSettings(SettingsGroup):
    """Card arrangement."""
    type: Optional[LayoutType] = None
    card_threshold_width: Optional[int] = Field(None, ge=0)
    align_card_height: Optional[bool] = None
    use_fixed_height: Optional[bool] = None
    fixed_card_height: Optional[int] = Field(None, ge=0)
    cards_per_column: Optional[int] = Field(None, ge=0)
    is_vertical: Optional[bool] = None
    smooth_scroll: Optional[bool] = None

class SortSettings(SettingsGroup):
    field: Optional[SortField] = None
    direction: Optional[SortDirection] = None

class CardSetSettings(SettingsGroup):
    """Which notes are shown as cards."""
    mode: Optional[CardSetMode] = None
    folder_path: Optional[str] = None
    include_subfolders: Optional[bool] = None
    auto_refresh: Optional[bool] = None

class PresetSettings(CamelModel):
    """Independent, individually optional settings groups of a preset."""
    model_config = ConfigDict(extra="forbid")

    content: Optional[ContentSettings] = None
    style: Optional[StyleSettings] = None
    layout: Optional[LayoutSettings] = None
    sort: Optional[SortSettings] = None
    card_set: Optional[CardSetSettings] = None

    def defined_groups(self) -> List[str]:
        """Names of the groups this object defines, in canonical order."""
        return [group for group in SETTINGS_GROUPS if getattr(self, group) is not None]

    def is_complete(self) -> bool:
        return len(self.defined_groups()) == len(SETTINGS_GROUPS)


def default_settings() -> PresetSettings:
    """Fully populated built-in settings used by the bootstrap preset."""
    return PresetSettings(
        content=ContentSettings(
            show_file_name=True,
            show_first_header=True,
            show_body=True,
            body_length_limit=True,
            body_length=200,
            show_tags=True,
        ),
        style=StyleSettings(
            file_name_font_size=17,
            first_header_font_size=20,
            body_font_size=15,
            tags_font_size=13,
            show_header=True,
            show_footer=True,
            drag_drop_content=False,
        ),
        layout=LayoutSettings(
            type=LayoutType.MASONRY,
            card_threshold_width=250,
            align_card_height=False,
            use_fixed_height=False,
            fixed_card_height=0,
            cards_per_column=0,
            is_vertical=True,
            smooth_scroll=True,
        ),
        sort=SortSettings(field=SortField.MODIFIED, direction=SortDirection.DESC),
        card_set=CardSetSettings(
            mode=CardSetMode.ACTIVE_FOLDER,
            folder_path="",
            include_subfolders=True,
            auto_refresh=True,
        ),
    )


class Preset(CamelModel):
    """A named, reusable bundle of display settings."""
    id: str = Field(..., min_length=1)
    name: str
    description: str = ""
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    settings: PresetSettings = Field(default_factory=PresetSettings)
    is_default: bool = False

    @classmethod
    def bootstrap(cls) -> "Preset":
        """The preset created when the store starts empty."""
        return cls(
            id=BOOTSTRAP_PRESET_ID,
            name="Default",
            description="Built-in default card settings.",
            settings=default_settings(),
            is_default=True,
        )

class FolderAssignment(CamelModel):
    folder_path: str
    preset_id: str
    # None means "never set"; it reads as overriding the global default
    overrides_global: Optional[bool] = None

    @property
    def priority(self) -> bool:
        return True if self.overrides_global is None else self.overrides_global

class TagAssignment(CamelModel):
    tag_name: str
    preset_id: str
    overrides_global: Optional[bool] = None

    @property
    def priority(self) -> bool:
        return True if self.overrides_global is None else self.overrides_global

class ResolutionPolicy(CamelModel):
    """Policies governing which assignment wins and how winners combine."""
    model_config = ConfigDict(extra="forbid")

    apply_mode: ApplyMode = ApplyMode.FOLDER_FIRST
    priority_order: PriorityOrder = PriorityOrder.TAG_FOLDER_GLOBAL
    conflict_resolution: ConflictResolution = ConflictResolution.PRIORITY_ONLY
    merge_strategy: MergeStrategy = MergeStrategy.FOLDER_BASE
    tag_tie_break: TagTieBreak = TagTieBreak.FIRST_SUPPLIED
    auto_apply: bool = True
    auto_apply_folder: bool = True
    auto_apply_tag: bool = True

class ProjectConfig(BaseModel):
    """Contents of ``npr.yaml``."""
    name: str = "notes"
    storage_path: str = ".npr/presets.json"
    storage_format: Optional[StorageFormat] = None
    autosave: bool = True
    save_retries: int = Field(2, ge=0)
    tag_case_sensitive: bool = True
    policy: ResolutionPolicy = Field(default_factory=ResolutionPolicy)
