"""Preset storage, assignment indices and resolution."""

from .preset_manager import PresetManager
from .resolver import PresetResolver, ResolutionResult

__all__ = ["PresetManager", "PresetResolver", "ResolutionResult"]
