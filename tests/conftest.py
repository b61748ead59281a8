"""
Shared fixtures: an in-memory blob store, a temporary project and key cache.
"""

from typing import Dict, List, Optional, Set

import pytest

from pushenv.core.crypto import generate_salt
from pushenv.core.errors import RemoteNotFound, StorageError
from pushenv.core.keystore import KeyEntry, KeyStore
from pushenv.core.project import ProjectConfig
from pushenv.core.storage import BlobStore, OCTET_STREAM
from pushenv.core.syncer import SyncEngine


PASSPHRASE = "correct horse battery staple"
PROJECT_ID = "proj-123"


class MemoryBlobStore(BlobStore):
    """Dict-backed BlobStore; put() can be made to fail for chosen keys."""

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.content_types: Dict[str, str] = {}
        self.fail_puts: Set[str] = set()
        self.puts: List[str] = []

    def put(self, key: str, data: bytes, content_type: str = OCTET_STREAM) -> None:
        if key in self.fail_puts:
            raise StorageError(f"Upload of '{key}' failed: simulated outage")
        self.puts.append(key)
        self.objects[key] = bytes(data)
        self.content_types[key] = content_type

    def get(self, key: str) -> bytes:
        if key not in self.objects:
            raise RemoteNotFound(key)
        return self.objects[key]

    def head(self, key: str) -> bool:
        return key in self.objects

    def list(self, prefix: str = "") -> List[str]:
        return sorted(k for k in self.objects if k.startswith(prefix))


@pytest.fixture(scope="session")
def key_entry() -> KeyEntry:
    """One derived key for the whole session (PBKDF2 is deliberately slow)."""
    return KeyEntry.derive(PASSPHRASE, generate_salt())


@pytest.fixture
def store() -> MemoryBlobStore:
    return MemoryBlobStore()


@pytest.fixture
def project(tmp_path) -> ProjectConfig:
    root = tmp_path / "app"
    root.mkdir()
    config = ProjectConfig(
        project_id=PROJECT_ID,
        stages={
            "development": ".env",
            "staging": ".env.staging",
            "production": ".env.production",
        },
        root=root,
    )
    config.save()
    return config


@pytest.fixture
def keystore(tmp_path, key_entry) -> KeyStore:
    """Key cache already holding the project's key."""
    ks = KeyStore(tmp_path / "home")
    ks.put(PROJECT_ID, key_entry)
    return ks


@pytest.fixture
def empty_keystore(tmp_path) -> KeyStore:
    return KeyStore(tmp_path / "fresh-home")


@pytest.fixture
def engine(project, store, keystore) -> SyncEngine:
    return SyncEngine(project, store, keystore)


def make_engine(project, store, keystore, passphrase: Optional[str] = None) -> SyncEngine:
    ask = (lambda: passphrase) if passphrase is not None else None
    return SyncEngine(project, store, keystore, ask_passphrase=ask)


def write_env(project: ProjectConfig, stage: str, content: str):
    path = project.resolve_env_path(stage)
    path.write_text(content)
    return path
