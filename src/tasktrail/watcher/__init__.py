"""File watcher registry for tasktrail."""

from .file_watcher import FileChangeEvent, FileWatcher

__all__ = ["FileChangeEvent", "FileWatcher"]
