"""
Whole-file replacement for local state files.
"""

import os
import tempfile
from pathlib import Path
from typing import Optional


def write_atomic(path: Path, content: str, mode: Optional[int] = None):
    """
    Replace path with content in one step.

    Writes to a temp file in the same directory, then os.replace()s it over
    the target so readers never see a half-written file.

    Args:
        path: Destination file
        content: Text to write
        mode: Optional permission bits (e.g. 0o600 for key material)
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            f.write(content)
        if mode is not None:
            os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
