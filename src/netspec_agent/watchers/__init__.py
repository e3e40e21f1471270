"""Watcher implementations used by the render agent."""

from .file import FileSpecWatcher  # noqa: F401

__all__ = ["FileSpecWatcher"]
