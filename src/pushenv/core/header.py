"""
Provenance headers written at the top of pulled and example files.

    # ════════════════════════════════════════
    # PushEnv Managed Environment File
    # Stage: PRODUCTION
    # Pulled: 2024-05-01T10:00:00Z
    # ════════════════════════════════════════

Header detection is a heuristic: the leading block of comment/blank lines
counts as our header only when it contains the PushEnv marker or a border
line. Without either, the whole file is treated as variable definitions.
A hand-written leading comment that happens to mention the marker is
stripped as well.
"""

import re
from datetime import datetime, timezone
from typing import List, Optional


HEADER_MARKER = "PushEnv"
BORDER_CHAR = "═"
BORDER = "# " + BORDER_CHAR * 40

STAGE_RE = re.compile(r"^#\s*Stage:\s*([\w.-]+)", re.IGNORECASE)


def _is_header_line(line: str) -> bool:
    stripped = line.strip()
    return not stripped or stripped.startswith("#")


def _header_end(lines: List[str]) -> int:
    """Index of the first line after the leading comment/blank block."""
    for i, line in enumerate(lines):
        if not _is_header_line(line):
            return i
    return len(lines)


def has_header(content: str) -> bool:
    lines = content.splitlines()
    block = lines[:_header_end(lines)]
    return any(
        HEADER_MARKER in line or (line.strip().startswith("#") and BORDER_CHAR in line)
        for line in block
    )


def strip_header(content: str) -> str:
    """
    Remove our provenance header, returning the definitions that follow.

    Content without a recognizable header is returned unchanged.
    """
    if not has_header(content):
        return content

    lines = content.splitlines(keepends=True)
    return "".join(lines[_header_end(lines):])


def extract_stage(content: str) -> Optional[str]:
    """
    Stage named in the header ("# Stage: PRODUCTION"), lower-cased.

    Only the leading comment block is searched.
    """
    lines = content.splitlines()
    for line in lines[:_header_end(lines)]:
        match = STAGE_RE.match(line.strip())
        if match:
            return match.group(1).lower()
    return None


def _timestamp(now: Optional[datetime]) -> str:
    now = now or datetime.now(timezone.utc)
    return now.isoformat().replace("+00:00", "Z")


def pull_header(stage: str, now: Optional[datetime] = None) -> str:
    """Header for a file written by pull."""
    warning = " ⚠️" if stage == "production" else ""
    return (
        f"{BORDER}\n"
        f"# {HEADER_MARKER} Managed Environment File\n"
        f"# Stage: {stage.upper()}{warning}\n"
        f"# Pulled: {_timestamp(now)}\n"
        f"{BORDER}\n"
        "# Do not commit this file. Edit and run 'pushenv push' to share.\n"
        "#\n"
    )


def example_header(stage: str, now: Optional[datetime] = None) -> str:
    """Header for a generated example file."""
    return (
        f"{BORDER}\n"
        f"# {HEADER_MARKER} Example Environment File\n"
        f"# Stage: {stage.upper()}\n"
        f"# Generated: {_timestamp(now)}\n"
        f"{BORDER}\n"
        "# This is an EXAMPLE file with placeholder values.\n"
        "# Safe to commit to version control.\n"
        "# Replace values with your actual secrets.\n"
        "#\n"
    )


def with_header(header: str, content: str) -> str:
    """Prefix content with a fresh header, dropping any previous one."""
    body = strip_header(content)
    if body and not body.endswith("\n"):
        body += "\n"
    return header + body
