"""Filesystem helpers for data-root inspection and archive listings."""

from datetime import datetime
import os
from pathlib import Path
import shutil


_SIZE_UNITS = ("KB", "MB", "GB", "TB")


def format_file_size(num_bytes):
    """Human-readable size like ``du -h`` (``512 B``, ``1.5 MB``)."""
    size = max(0, int(num_bytes or 0))
    if size < 1024:
        return f"{size} B"
    value = float(size)
    for unit in _SIZE_UNITS:
        value /= 1024
        if value < 1024 or unit == _SIZE_UNITS[-1]:
            return f"{value:.1f} {unit}"


def _archive_entry(path):
    stat = path.stat()
    return {
        "name": path.name,
        "path": path,
        "mtime": stat.st_mtime,
        "size_bytes": stat.st_size,
        "size_text": format_file_size(stat.st_size),
        "modified": datetime.fromtimestamp(stat.st_mtime).strftime("%Y-%m-%d %H:%M:%S"),
    }


def list_archive_files(base_dir, pattern):
    """List regular files in ``base_dir`` matching ``pattern``, newest first."""
    base_dir = Path(base_dir)
    if not base_dir.is_dir():
        return []
    entries = []
    for path in base_dir.glob(pattern):
        try:
            if path.is_file():
                entries.append(_archive_entry(path))
        except OSError:
            # Pruned or replaced between glob and stat.
            continue
    return sorted(entries, key=lambda entry: entry["mtime"], reverse=True)


def is_within(path, root):
    """Return True when ``path`` resolves to ``root`` or somewhere beneath it."""
    return Path(path).resolve().is_relative_to(Path(root).resolve())


def directory_has_entries(path):
    """Return True when ``path`` is a directory with at least one child."""
    path = Path(path)
    try:
        if not path.is_dir():
            return False
        return any(path.iterdir())
    except OSError:
        return False


def directory_size(path):
    """Return the total size in bytes of regular files under ``path``."""
    total = 0
    for root, _dirs, files in os.walk(path):
        for name in files:
            try:
                total += os.lstat(os.path.join(root, name)).st_size
            except OSError:
                continue
    return total


def count_files(path, pattern):
    """Count files under ``path`` matching a glob pattern."""
    path = Path(path)
    if not path.is_dir():
        return 0
    return sum(1 for candidate in path.glob(pattern) if candidate.is_file())


def clear_directory(path):
    """Remove every child of ``path`` (dotfiles included), keeping ``path``."""
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    for child in path.iterdir():
        if child.is_dir() and not child.is_symlink():
            shutil.rmtree(child)
        else:
            child.unlink()
