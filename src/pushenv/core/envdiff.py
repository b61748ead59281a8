"""
Structural comparison of two env documents.

Both sides are stripped of their provenance header and parsed into
key -> value mappings, so comments, blank lines and line order never
count as differences.
"""

from dataclasses import dataclass, field
from typing import Dict, List

from .header import strip_header
from .lexer import parse_env


@dataclass
class AddedKey:
    key: str
    value: str


@dataclass
class RemovedKey:
    key: str
    value: str


@dataclass
class ChangedKey:
    key: str
    local_value: str
    remote_value: str


@dataclass
class DiffResult:
    """
    Local vs remote comparison.

    added: only in remote. removed: only in local. changed: both, values
    differ. unchanged: count of keys equal on both sides.
    """
    added: List[AddedKey] = field(default_factory=list)
    removed: List[RemovedKey] = field(default_factory=list)
    changed: List[ChangedKey] = field(default_factory=list)
    unchanged: int = 0

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.removed or self.changed)


def compare_envs(local: Dict[str, str], remote: Dict[str, str]) -> DiffResult:
    """
    Partition the union of keys into added/removed/changed/unchanged.

    Keys keep local order first, then remote-only keys in remote order.
    """
    result = DiffResult()
    all_keys = list(local) + [k for k in remote if k not in local]

    for key in all_keys:
        in_local = key in local
        in_remote = key in remote

        if in_remote and not in_local:
            result.added.append(AddedKey(key, remote[key]))
        elif in_local and not in_remote:
            result.removed.append(RemovedKey(key, local[key]))
        elif local[key] != remote[key]:
            result.changed.append(ChangedKey(key, local[key], remote[key]))
        else:
            result.unchanged += 1

    return result


def diff_contents(local_content: str, remote_content: str) -> DiffResult:
    """Compare two raw .env texts, ignoring headers and comments."""
    return compare_envs(
        parse_env(strip_header(local_content)),
        parse_env(strip_header(remote_content)),
    )


def envs_identical(local_content: str, remote_content: str) -> bool:
    return not diff_contents(local_content, remote_content).has_changes
