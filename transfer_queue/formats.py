"""
Archive format table and file-name based format detection
"""
import os
from enum import Enum
from typing import Iterable, Optional


class ArchiveFormat(str, Enum):
    TAR = 'tar'
    TAR_GZ = 'tar.gz'
    TAR_BZ2 = 'tar.bz2'
    TAR_XZ = 'tar.xz'
    ZIP = 'zip'
    SEVEN_ZIP = '7z'
    RAR = 'rar'

    @property
    def is_tar(self) -> bool:
        return self in (ArchiveFormat.TAR, ArchiveFormat.TAR_GZ,
                        ArchiveFormat.TAR_BZ2, ArchiveFormat.TAR_XZ)


# Compound extensions must be tested before '.tar'
FORMAT_EXTENSIONS = [
    (('.tar.gz', '.tgz'), ArchiveFormat.TAR_GZ),
    (('.tar.bz2', '.tbz2'), ArchiveFormat.TAR_BZ2),
    (('.tar.xz', '.txz'), ArchiveFormat.TAR_XZ),
    (('.tar',), ArchiveFormat.TAR),
    (('.zip',), ArchiveFormat.ZIP),
    (('.7z',), ArchiveFormat.SEVEN_ZIP),
    (('.rar',), ArchiveFormat.RAR),
]

ARCHIVE_SUFFIXES = [ext for exts, _ in FORMAT_EXTENSIONS for ext in exts]


def get_archive_type(filename: str) -> Optional[ArchiveFormat]:
    """Detect the archive format from a file name, None when unknown"""
    lower = filename.lower()
    for exts, archive_format in FORMAT_EXTENSIONS:
        if lower.endswith(exts):
            return archive_format
    return None


def get_format_extension(archive_format) -> str:
    return '.' + ArchiveFormat(archive_format).value


def default_archive_name(paths: Iterable[str]) -> str:
    """Suggest an archive base name for the selected paths"""
    paths = [p for p in paths if p]
    if len(paths) != 1:
        return 'archive'

    name = os.path.basename(paths[0].rstrip('/'))
    lower = name.lower()
    for suffix in ARCHIVE_SUFFIXES:
        if lower.endswith(suffix):
            return name[:-len(suffix)] or 'archive'

    stem, ext = os.path.splitext(name)
    return stem if ext and stem else (name or 'archive')
