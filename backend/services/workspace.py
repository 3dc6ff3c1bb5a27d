"""
Per-attempt scratch directories and safe extraction of uploaded project archives.
"""
import logging
import os
import shutil
import tempfile
import zipfile
from contextlib import contextmanager
from typing import Iterator, Optional

from errors import ArchiveError

logger = logging.getLogger(__name__)

PREFIX = "studenthub_deploy_"
IGNORED_TOP_LEVEL = {"__MACOSX"}


@contextmanager
def attempt_workspace(attempt_id: str, root: Optional[str] = None) -> Iterator[str]:
    """Scratch directory owned by one deployment attempt; removed on exit, success or not."""
    if root:
        os.makedirs(root, exist_ok=True)
    path = tempfile.mkdtemp(prefix=f"{PREFIX}{attempt_id}_", dir=root)
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)
        logger.debug("Removed scratch dir %s", path)


def _safe_target(dest: str, member: str) -> Optional[str]:
    """Absolute target path for an archive member, or None if it escapes dest."""
    name = member.replace("\\", "/")
    if name.startswith("/") or (len(name) > 1 and name[1] == ":"):
        return None
    target = os.path.realpath(os.path.join(dest, name))
    root = os.path.realpath(dest)
    if target != root and not target.startswith(root + os.sep):
        return None
    return target


def extract_archive(zip_path: str, dest: str) -> str:
    """
    Extract zip_path into dest and return the directory holding the project root.

    Archives that wrap everything in a single top-level folder are unwrapped.
    Members that would land outside dest are rejected.
    """
    if not os.path.isfile(zip_path):
        raise ArchiveError(f"Project archive not found: {os.path.basename(zip_path)}")
    os.makedirs(dest, exist_ok=True)
    try:
        with zipfile.ZipFile(zip_path) as zf:
            members = [m for m in zf.infolist() if m.filename.split("/", 1)[0] not in IGNORED_TOP_LEVEL]
            for member in members:
                if _safe_target(dest, member.filename) is None:
                    raise ArchiveError(f"Unsafe path in archive: {member.filename}")
            for member in members:
                zf.extract(member, dest)
    except zipfile.BadZipFile:
        raise ArchiveError("Project archive is not a valid ZIP file")

    entries = [e for e in os.listdir(dest) if e not in IGNORED_TOP_LEVEL]
    if len(entries) == 1 and os.path.isdir(os.path.join(dest, entries[0])):
        return os.path.join(dest, entries[0])
    return dest
