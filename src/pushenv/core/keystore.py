"""
Machine-local cache of derived project keys.

Stored in ~/.pushenv/keys.json (mode 0600):

    {"<projectId>": {"salt": "<base64>", "key": "<base64>"}}

An entry is created the first time a passphrase successfully decrypts a
project's data (or at init) and is never expired automatically. Removing
it forces the next pull to ask for the passphrase again.
"""

import binascii
import json
import logging
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Dict, Optional

from .crypto import decode_key, derive_key, encode_key
from .fileio import write_atomic
from .storage import pushenv_home


logger = logging.getLogger("pushenv.keystore")

KEYS_FILE = "keys.json"


@dataclass
class KeyEntry:
    """Derived key material for one project."""
    salt: str  # base64
    key: str   # base64

    @classmethod
    def derive(cls, passphrase: str, salt: bytes) -> "KeyEntry":
        return cls(salt=encode_key(salt), key=encode_key(derive_key(passphrase, salt)))

    @property
    def salt_bytes(self) -> bytes:
        return decode_key(self.salt)

    @property
    def key_bytes(self) -> bytes:
        return decode_key(self.key)


class KeyStore:
    """
    Reads and writes the local key cache.

    The file is read once on construction and rewritten as a whole on
    every change.
    """

    def __init__(self, home: Optional[Path] = None):
        """
        Args:
            home: Directory holding keys.json (defaults to ~/.pushenv)
        """
        self.home = Path(home) if home else pushenv_home()
        self.keys_file = self.home / KEYS_FILE
        self.entries: Dict[str, KeyEntry] = self._load()

    def _load(self) -> Dict[str, KeyEntry]:
        if not self.keys_file.exists():
            return {}

        try:
            with open(self.keys_file, 'r') as f:
                data = json.load(f)
            entries = {
                project_id: KeyEntry(salt=entry["salt"], key=entry["key"])
                for project_id, entry in data.items()
            }
        except (json.JSONDecodeError, KeyError, TypeError, AttributeError) as exc:
            logger.warning("Ignoring unreadable key cache %s: %s", self.keys_file, exc)
            return {}

        for project_id, entry in list(entries.items()):
            try:
                decode_key(entry.salt)
                decode_key(entry.key)
            except (binascii.Error, TypeError) as exc:
                logger.warning("Ignoring corrupt cached key for project %s: %s", project_id, exc)
                del entries[project_id]
        return entries

    def _save(self):
        data = {project_id: asdict(entry) for project_id, entry in self.entries.items()}
        write_atomic(self.keys_file, json.dumps(data, indent=2), mode=0o600)

    def get(self, project_id: str) -> Optional[KeyEntry]:
        return self.entries.get(project_id)

    def put(self, project_id: str, entry: KeyEntry):
        self.entries[project_id] = entry
        self._save()
        logger.info("Cached key material for project %s", project_id)

    def remove(self, project_id: str) -> bool:
        """Drop a project's entry. Returns False if there was none."""
        if project_id not in self.entries:
            return False
        del self.entries[project_id]
        self._save()
        logger.info("Removed cached key material for project %s", project_id)
        return True
