"""Atomic text writes for backlog and plan documents."""

import os
from pathlib import Path


def atomic_write_text(path: Path, content: str) -> None:
    """Write content to path via a sibling temp file and os.replace.

    A crash mid-write leaves either the old document or the new one,
    never a truncated file.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp")
    try:
        with tmp_path.open("w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    except OSError:
        if tmp_path.exists():
            tmp_path.unlink()
        raise
