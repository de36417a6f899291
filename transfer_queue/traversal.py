"""
Recursive directory expansion for tree uploads

Directory readers hand out children in batches and signal exhaustion with an
empty batch, so callers keep reading until they get one.
"""
import logging
import os
import posixpath
from typing import List, Sequence, Tuple

from transfer_queue.sources import ContentSource, LocalFileSource

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100


class LocalFileEntry:
    is_directory = False

    def __init__(self, path):
        self.path = os.path.abspath(os.fspath(path))
        self.name = os.path.basename(self.path)

    def source(self) -> ContentSource:
        return LocalFileSource(self.path)


class LocalDirectoryReader:
    """Reads a directory's children `batch_size` at a time"""

    def __init__(self, path, batch_size=DEFAULT_BATCH_SIZE):
        self.path = path
        self.batch_size = batch_size
        self._scanner = None
        self._exhausted = False

    def read_entries(self):
        if self._exhausted:
            return []
        if self._scanner is None:
            self._scanner = os.scandir(self.path)

        batch = []
        for dirent in self._scanner:
            if dirent.is_dir(follow_symlinks=False):
                batch.append(LocalDirectoryEntry(dirent.path, self.batch_size))
            elif dirent.is_file():
                batch.append(LocalFileEntry(dirent.path))
            else:
                logger.debug(f"Skipping special file {dirent.path}")
                continue
            if len(batch) >= self.batch_size:
                return batch

        self._scanner.close()
        self._exhausted = True
        return batch


class LocalDirectoryEntry:
    is_directory = True

    def __init__(self, path, batch_size=DEFAULT_BATCH_SIZE):
        # absolute so "." and ".." get a real name and never escape the target
        self.path = os.path.abspath(os.fspath(path))
        self.name = os.path.basename(self.path) or "root"
        self.batch_size = batch_size

    def create_reader(self):
        return LocalDirectoryReader(self.path, self.batch_size)


def read_all_entries(directory) -> list:
    """Drain a directory reader; one call is not guaranteed to return everything"""
    reader = directory.create_reader()
    entries = []
    while True:
        batch = reader.read_entries()
        if not batch:
            break
        entries.extend(batch)
    return sorted(entries, key=lambda e: e.name)


def traverse(directory, base_path='') -> List[Tuple[ContentSource, str]]:
    """Flatten a directory into (source, relative path) pairs rooted at its own name"""
    current = f"{base_path}/{directory.name}" if base_path else directory.name
    results = []

    for child in read_all_entries(directory):
        if child.is_directory:
            results.extend(traverse(child, current))
        else:
            source = child.source()
            results.append((source, f"{current}/{child.name}"))

    return results


def ancestor_directories(relative_paths: Sequence[str]) -> List[str]:
    """Every directory implied by the paths, parents sorted before children"""
    dirs = set()
    for rel_path in relative_paths:
        parts = rel_path.split('/')[:-1]
        for depth in range(1, len(parts) + 1):
            dirs.add('/'.join(parts[:depth]))
    dirs.discard('')
    # a parent is a strict prefix of its children, so plain sorting orders them
    return sorted(dirs)


def ensure_directories(relative_paths: Sequence[str], target_dir: str, channel) -> List[str]:
    """Create the remote skeleton for a traversed tree; returns the created paths"""
    created = []
    for directory in ancestor_directories(relative_paths):
        full_path = posixpath.join(target_dir, directory)
        channel.make_directories(full_path)
        created.append(full_path)
    logger.info(f"Created {len(created)} director{'y' if len(created) == 1 else 'ies'} under {target_dir}")
    return created
