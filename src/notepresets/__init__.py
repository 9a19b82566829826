"""Per-folder and per-tag display presets for notes."""

__version__ = "0.1.0"
