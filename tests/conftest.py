"""Test configuration and shared fixtures."""

import logging
from datetime import datetime, timedelta, timezone

import pytest

from notepresets.core.notifier import ChangeNotifier
from notepresets.models.config import (
    ContentSettings,
    LayoutSettings,
    LayoutType,
    PresetSettings,
    SortDirection,
    SortField,
    SortSettings,
    StyleSettings,
)
from notepresets.presets.consistency import ConsistencyCoordinator
from notepresets.presets.folder_index import FolderPresetIndex
from notepresets.presets.preset_manager import PresetManager
from notepresets.presets.resolver import PresetResolver
from notepresets.presets.store import PresetStore
from notepresets.presets.tag_index import TagPresetIndex
from notepresets.storage.gateway import InMemoryGateway


def force_close_all_log_handlers():
    """Close and remove every root handler so file handlers release their files."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        try:
            handler.close()
        except Exception:
            pass
        root_logger.removeHandler(handler)
    logging.basicConfig(force=True)


@pytest.fixture(autouse=True)
def clean_logging():
    """Reset logging before and after every test."""
    force_close_all_log_handlers()
    yield
    force_close_all_log_handlers()


@pytest.fixture(autouse=True)
def no_storage_override(monkeypatch):
    monkeypatch.delenv("NPR_STORAGE_PATH", raising=False)


class FakeClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self):
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        self.now = self.now + timedelta(seconds=1)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier():
    return ChangeNotifier()


@pytest.fixture
def store(notifier, clock):
    """Store seeded with the bootstrap preset as global default."""
    preset_store = PresetStore(notifier, clock)
    preset_store.bootstrap()
    return preset_store


@pytest.fixture
def folder_index(store):
    return FolderPresetIndex(store)


@pytest.fixture
def tag_index(store):
    return TagPresetIndex(store)


@pytest.fixture
def coordinator(store, folder_index, tag_index):
    return ConsistencyCoordinator(store, folder_index, tag_index)


@pytest.fixture
def resolver(store, folder_index, tag_index, coordinator):
    return PresetResolver(store, folder_index, tag_index)


@pytest.fixture
def recorder(notifier):
    """Collects every delivered event."""
    events = []
    notifier.subscribe_all(events.append)
    return events


@pytest.fixture
def recorder_for():
    """Start collecting a manager's events from this point on."""
    def attach(preset_manager):
        events = []
        preset_manager.notifier.subscribe_all(events.append)
        return events
    return attach


@pytest.fixture
def gateway():
    return InMemoryGateway()


@pytest.fixture
def manager(gateway, clock):
    preset_manager = PresetManager(gateway=gateway, clock=clock)
    preset_manager.load()
    return preset_manager


@pytest.fixture
def style_only():
    return PresetSettings(style=StyleSettings(body_font_size=18, show_footer=False))


@pytest.fixture
def layout_only():
    return PresetSettings(layout=LayoutSettings(type=LayoutType.GRID, card_threshold_width=300))


@pytest.fixture
def work_settings():
    return PresetSettings(
        content=ContentSettings(show_body=False),
        sort=SortSettings(field=SortField.FILE_NAME, direction=SortDirection.ASC),
    )
