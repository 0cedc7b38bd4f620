"""Filesystem helpers: crash-safe writes and card file discovery."""

import contextlib
import os
import tempfile
from collections.abc import Iterable, Iterator
from pathlib import Path

from musched.domain.constants import TEMP_SUFFIX


def atomic_write_text(path: Path, text: str) -> None:
    """
    Replace `path` with `text` so that readers only ever see the old or the new content.

    The data goes to a temporary file in the same directory, is flushed and
    fsynced, then renamed over the target in a single os.replace().
    If anything fails the temporary file is removed and the old file is untouched.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=TEMP_SUFFIX)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp_name)
        raise
    _fsync_dir(path.parent)


def _fsync_dir(directory: Path) -> None:
    # Persist the rename itself. Not supported on every platform (e.g. Windows).
    try:
        fd = os.open(directory, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)


def iter_card_files(root: Path, suffixes: Iterable[str]) -> Iterator[Path]:
    """
    Yield card source files under `root`, sorted, skipping hidden files and directories.

    The deck's state directory is hidden (".mu"), so state records are never
    mistaken for cards.
    """
    suffixes = {s.lower() for s in suffixes}
    for path in sorted(root.rglob("*")):
        rel = path.relative_to(root)
        if any(part.startswith(".") for part in rel.parts):
            continue
        if path.is_file() and path.suffix.lower() in suffixes:
            yield path
