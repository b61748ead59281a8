"""
Per-stage version ledger.

The ledger lives next to the blobs as {project}/{stage}/metadata.json:

    {"versions": [{"version": 1, "timestamp": ..., "message": ..., "key": ...}],
     "latest": 1}

It is only ever appended to. Writes replace the whole document, so a
read-modify-write must happen within one command; two machines pushing to
the same stage at the same time can lose an update (last writer wins).
"""

import json
import logging
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from typing import List, Optional

from .errors import RemoteNotFound, StorageError, VersionNotFound
from .storage import BlobStore, JSON_CONTENT, metadata_key, version_key


logger = logging.getLogger("pushenv.versions")


@dataclass
class Version:
    """A single immutable snapshot of a stage."""
    version: int
    timestamp: str
    message: str
    key: str

    @property
    def created_at(self) -> datetime:
        return datetime.fromisoformat(self.timestamp.replace("Z", "+00:00"))


@dataclass
class VersionMetadata:
    """Ledger of a stage's versions."""
    versions: List[Version] = field(default_factory=list)
    latest: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> "VersionMetadata":
        versions = [Version(**entry) for entry in data.get("versions", [])]
        return cls(versions=versions, latest=int(data.get("latest", 0)))

    def to_dict(self) -> dict:
        return {
            "versions": [asdict(v) for v in self.versions],
            "latest": self.latest,
        }

    def numbers(self) -> List[int]:
        return [v.version for v in self.versions]

    def find(self, version: int) -> Optional[Version]:
        for entry in self.versions:
            if entry.version == version:
                return entry
        return None

    def require(self, version: int) -> Version:
        """Version entry, or VersionNotFound listing what exists."""
        entry = self.find(version)
        if entry is None:
            raise VersionNotFound(version, self.numbers())
        return entry

    def append(self, entry: Version):
        """Append a new version and make it latest."""
        if entry.version <= self.latest:
            raise ValueError(f"Version {entry.version} is not newer than latest {self.latest}")
        self.versions.append(entry)
        self.latest = entry.version

    def newest_first(self) -> List[Version]:
        return sorted(self.versions, key=lambda v: v.version, reverse=True)


def next_version(metadata: Optional[VersionMetadata]) -> int:
    """1 for a stage without history, otherwise latest + 1."""
    if metadata is None or not metadata.versions:
        return 1
    return metadata.latest + 1


def default_message(version: int) -> str:
    if version == 1:
        return "Initial push"
    return f"Version {version}"


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class VersionLedger:
    """Reads and writes version metadata in a blob store."""

    def __init__(self, store: BlobStore):
        self.store = store

    def read(self, project_id: str, stage: str) -> Optional[VersionMetadata]:
        """
        Fetch the ledger for a stage.

        Returns:
            VersionMetadata, or None when the stage has no versioned history
        """
        key = metadata_key(project_id, stage)
        try:
            raw = self.store.get(key)
        except RemoteNotFound:
            logger.debug("No metadata at %s", key)
            return None

        try:
            return VersionMetadata.from_dict(json.loads(raw.decode("utf-8")))
        except (json.JSONDecodeError, UnicodeDecodeError, TypeError, ValueError) as exc:
            raise StorageError(f"Version metadata at '{key}' is corrupt: {exc}") from exc

    def write(self, project_id: str, stage: str, metadata: VersionMetadata):
        """Overwrite the whole ledger."""
        body = json.dumps(metadata.to_dict(), indent=2).encode("utf-8")
        self.store.put(metadata_key(project_id, stage), body, JSON_CONTENT)
        logger.debug("Wrote metadata for %s/%s (latest=%d)", project_id, stage, metadata.latest)

    def record(
        self,
        project_id: str,
        stage: str,
        metadata: Optional[VersionMetadata],
        version: int,
        message: str,
    ) -> VersionMetadata:
        """
        Append a version entry and persist the ledger.

        Args:
            metadata: Ledger read earlier in this command, or None
            version: Number already uploaded to its versioned key
            message: Annotation for the entry

        Returns:
            The updated ledger
        """
        updated = metadata if metadata is not None else VersionMetadata()
        updated.append(Version(
            version=version,
            timestamp=utc_timestamp(),
            message=message,
            key=version_key(project_id, stage, version),
        ))
        self.write(project_id, stage, updated)
        return updated
