"""
Encrypted, versioned sync of .env files through a blob store.

Operations:
- push: encrypt local file, skip if unchanged, store as the next version
- pull: fetch latest (or a given version), decrypt, write locally
- diff: compare local file with a remote version
- rollback: re-publish an old version's exact ciphertext as a new version
- history: list versions
- example: write a placeholder copy of the remote file

The engine never prompts. Destructive or suspicious actions are described
by Confirmation objects (push_gates, pull_gates, rollback plan gates, diff_gates,
example_gates) that the caller answers before running the operation. The
only interactive hook is the optional passphrase callback, used when the
machine has no cached key yet.

Every version is decrypted with the single cached per-project key. A
rotated passphrase therefore makes older versions unreadable until the
cached key is removed and re-derived.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .crypto import decrypt, encrypt, pack_blob, unpack_blob
from .envdiff import DiffResult, diff_contents, envs_identical
from .errors import (
    AuthenticationError,
    InvalidCiphertextFormat,
    KeyMaterialMissing,
    LocalFileMissing,
    NoVersionHistory,
    RemoteNotFound,
    StorageError,
)
from .fileio import write_atomic
from .header import extract_stage, pull_header, strip_header, with_header
from .inference import build_example_file
from .keystore import KeyEntry, KeyStore
from .lexer import parse_env
from .project import ProjectConfig
from .storage import (
    BlobStore,
    OCTET_STREAM,
    exists_any,
    fetch_first,
    latest_lookups,
    stage_key,
    version_key,
)
from .versions import (
    Version,
    VersionLedger,
    VersionMetadata,
    default_message,
    next_version,
)


logger = logging.getLogger("pushenv.sync")

PRODUCTION_STAGE = "production"


@dataclass
class Confirmation:
    """A question the caller must answer 'yes' before proceeding."""
    prompt: str
    reason: str
    danger: bool = False


@dataclass
class PushOutcome:
    stage: str
    pushed: bool
    version: Optional[int] = None
    message: Optional[str] = None
    variable_count: int = 0
    warnings: List[str] = field(default_factory=list)


@dataclass
class RemoteEnv:
    """A decrypted remote env file."""
    stage: str
    content: str
    version: Optional[int] = None
    message: Optional[str] = None
    source: str = "stage"

    @property
    def variables(self) -> Dict[str, str]:
        return parse_env(strip_header(self.content))


@dataclass
class PullOutcome:
    stage: str
    path: Path
    version: Optional[int]
    variable_count: int
    source: str


@dataclass
class DiffOutcome:
    stage: str
    result: DiffResult
    version: Optional[int] = None
    version_message: Optional[str] = None
    local_stage: Optional[str] = None


@dataclass
class RollbackPlan:
    stage: str
    target: Version
    current_latest: int
    gates: List[Confirmation] = field(default_factory=list)

    @property
    def noop(self) -> bool:
        return self.target.version == self.current_latest


@dataclass
class RollbackOutcome:
    stage: str
    rolled_back: bool
    target: int
    version: Optional[int] = None
    warnings: List[str] = field(default_factory=list)


@dataclass
class HistoryOutcome:
    stage: str
    versions: List[Version]
    latest: int = 0
    legacy: bool = False


@dataclass
class ExampleOutcome:
    stage: str
    path: Path
    variable_count: int


class SyncEngine:
    """
    Sync operations for one project.

    Collaborators are passed in explicitly so tests can run against an
    in-memory store and a temporary key cache.
    """

    def __init__(
        self,
        config: ProjectConfig,
        store: BlobStore,
        keystore: KeyStore,
        ask_passphrase: Optional[Callable[[], str]] = None,
        ledger: Optional[VersionLedger] = None,
    ):
        """
        Args:
            config: Loaded project config
            store: Blob store holding all stages
            keystore: Local key cache
            ask_passphrase: Called when no key is cached; returns the passphrase
            ledger: Version metadata manager (defaults to one over store)
        """
        self.config = config
        self.store = store
        self.keystore = keystore
        self.ask_passphrase = ask_passphrase
        self.ledger = ledger or VersionLedger(store)

    @property
    def project_id(self) -> str:
        return self.config.project_id

    def push_gates(self, stage: str) -> List[Confirmation]:
        self._local_path(stage)
        if stage != PRODUCTION_STAGE:
            return []
        return [Confirmation(
            prompt="Are you sure you want to push to PRODUCTION?",
            reason="This will overwrite the remote production environment in cloud storage.",
            danger=True,
        )]

    def pull_gates(self, stage: str) -> List[Confirmation]:
        """Warn before overwriting a local file pulled from a different stage."""
        local_path = self._local_path(stage)
        if not local_path.exists():
            return []
        return self._stage_mismatch(
            stage,
            local_path,
            local_path.read_text(encoding="utf-8"),
            f"Pulling will overwrite it with '{stage}' values.",
        )

    def diff_gates(self, stage: str) -> List[Confirmation]:
        """Warn when the local file's header names a different stage."""
        local_path = self._local_path(stage)
        return self._stage_mismatch(
            stage,
            local_path,
            self._read_local(local_path, stage),
            "Comparing against the wrong stage may give incorrect results.",
        )

    def example_gates(self, stage: str, output: Optional[str] = None) -> List[Confirmation]:
        path = self._example_path(stage, output)
        if path.exists():
            return [Confirmation(
                prompt=f"{path} already exists. Overwrite?",
                reason="The example file will be replaced.",
            )]
        return []

    def plan_rollback(self, stage: str, version: int) -> RollbackPlan:
        """
        Validate a rollback and describe its confirmations.

        Raises:
            NoVersionHistory: stage has no ledger (legacy data cannot roll back)
            VersionNotFound: target is not in the ledger
        """
        self._local_path(stage)
        metadata = self._require_metadata(stage)
        target = metadata.require(version)
        plan = RollbackPlan(stage=stage, target=target, current_latest=metadata.latest)

        if plan.noop:
            return plan

        if stage == PRODUCTION_STAGE:
            plan.gates.append(Confirmation(
                prompt="Are you sure you want to rollback PRODUCTION?",
                reason=f"This will restore version {version} and make it the latest.",
                danger=True,
            ))
        plan.gates.append(Confirmation(
            prompt=f"Rollback to version {version}?",
            reason=f"Current latest: v{metadata.latest}. Rolling back to: v{version} "
                   f"({target.message}, {target.timestamp}).",
        ))
        return plan

    def push(self, stage: str, message: Optional[str] = None, force: bool = False) -> PushOutcome:
        """
        Encrypt the stage's local file and publish it as a new version.

        Args:
            stage: Stage to push
            message: Version annotation (defaulted when omitted)
            force: Push even when the remote content is identical

        Returns:
            PushOutcome; pushed=False when nothing changed
        """
        local_path = self._local_path(stage)
        if not local_path.exists():
            raise LocalFileMissing(str(local_path))

        entry = self.keystore.get(self.project_id)
        if entry is None:
            raise KeyMaterialMissing(self.project_id)

        content = local_path.read_text(encoding="utf-8")
        variable_count = len(parse_env(strip_header(content)))
        key = entry.key_bytes
        blob = pack_blob(entry.salt_bytes, encrypt(content, key))

        metadata = self.ledger.read(self.project_id, stage)

        if not force and self._matches_remote(stage, metadata, content, key):
            logger.info("No changes for %s/%s, skipping push", self.project_id, stage)
            return PushOutcome(stage=stage, pushed=False, variable_count=variable_count)

        version = next_version(metadata)
        message = message or default_message(version)

        self.store.put(version_key(self.project_id, stage, version), blob.encode("utf-8"), OCTET_STREAM)
        self.ledger.record(self.project_id, stage, metadata, version, message)
        logger.info("Pushed %s/%s v%d", self.project_id, stage, version)

        outcome = PushOutcome(
            stage=stage,
            pushed=True,
            version=version,
            message=message,
            variable_count=variable_count,
        )
        warning = self._update_alias(stage, blob.encode("utf-8"))
        if warning:
            outcome.warnings.append(warning)
        return outcome

    def fetch(self, stage: str, version: Optional[int] = None) -> RemoteEnv:
        """
        Fetch and decrypt a remote env file.

        Args:
            stage: Stage to read
            version: Specific version, or None for latest

        Raises:
            NoVersionHistory / VersionNotFound: for a missing specific version
            RemoteNotFound: nothing stored for the stage
            AuthenticationError: wrong passphrase or key
        """
        self._local_path(stage)
        metadata = self.ledger.read(self.project_id, stage)

        if version is not None:
            if metadata is None:
                raise NoVersionHistory(stage)
            entry = metadata.require(version)
            blob = self.store.get(version_key(self.project_id, stage, version))
            return RemoteEnv(
                stage=stage,
                content=self._decrypt_blob(blob),
                version=version,
                message=entry.message,
                source="version",
            )

        latest = metadata.latest if metadata and metadata.versions else None
        found = fetch_first(self.store, latest_lookups(self.project_id, stage, latest))
        if found is None:
            raise RemoteNotFound(
                stage_key(self.project_id, stage),
                message=f"No remote .env found for stage '{stage}'.",
                hint=f"Run 'pushenv push --stage {stage}' to upload it first.",
            )

        lookup, blob = found
        entry = metadata.find(latest) if latest else None
        return RemoteEnv(
            stage=stage,
            content=self._decrypt_blob(blob),
            version=latest,
            message=entry.message if entry else None,
            source=lookup.label,
        )

    def pull(self, stage: str, version: Optional[int] = None) -> PullOutcome:
        """Fetch, decrypt and write the stage's env file with a fresh header."""
        remote = self.fetch(stage, version)
        local_path = self._local_path(stage)

        write_atomic(local_path, with_header(pull_header(stage), remote.content))
        logger.info("Pulled %s/%s to %s", self.project_id, stage, local_path)

        return PullOutcome(
            stage=stage,
            path=local_path,
            version=remote.version,
            variable_count=len(remote.variables),
            source=remote.source,
        )

    def diff(self, stage: str, version: Optional[int] = None) -> DiffOutcome:
        """
        Compare the local file with the latest (or a given) remote version.

        Call diff_gates() first to check for a stage mismatch.
        """
        local_path = self._local_path(stage)
        local_content = self._read_local(local_path, stage)
        remote = self.fetch(stage, version)

        return DiffOutcome(
            stage=stage,
            result=diff_contents(local_content, remote.content),
            version=remote.version,
            version_message=remote.message,
            local_stage=extract_stage(local_content),
        )

    def rollback(self, stage: str, version: int) -> RollbackOutcome:
        """
        Restore a version by re-uploading its exact ciphertext as latest + 1.

        History is never rewritten; the ledger only grows.
        """
        plan = self.plan_rollback(stage, version)
        if plan.noop:
            return RollbackOutcome(stage=stage, rolled_back=False, target=version, version=plan.current_latest)

        # Re-read right before writing so the new entry extends the latest ledger
        metadata = self._require_metadata(stage)
        blob = self.store.get(version_key(self.project_id, stage, version))
        new_version = next_version(metadata)

        self.store.put(version_key(self.project_id, stage, new_version), blob, OCTET_STREAM)
        self.ledger.record(self.project_id, stage, metadata, new_version, f"Rollback to v{version}")
        logger.info("Rolled back %s/%s to v%d as v%d", self.project_id, stage, version, new_version)

        outcome = RollbackOutcome(stage=stage, rolled_back=True, target=version, version=new_version)
        warning = self._update_alias(stage, blob)
        if warning:
            outcome.warnings.append(warning)
        return outcome

    def history(self, stage: str) -> HistoryOutcome:
        """Versions newest first; legacy=True for pre-versioning data."""
        self._local_path(stage)
        metadata = self.ledger.read(self.project_id, stage)

        if metadata is None or not metadata.versions:
            if not exists_any(self.store, latest_lookups(self.project_id, stage)):
                raise RemoteNotFound(
                    stage_key(self.project_id, stage),
                    message=f"No remote .env found for stage '{stage}'.",
                    hint=f"Run 'pushenv push --stage {stage}' to upload it first.",
                )
            return HistoryOutcome(stage=stage, versions=[], legacy=True)

        return HistoryOutcome(stage=stage, versions=metadata.newest_first(), latest=metadata.latest)

    def example(self, stage: str, output: Optional[str] = None) -> ExampleOutcome:
        """Write a placeholder example of the latest remote file."""
        remote = self.fetch(stage)
        path = self._example_path(stage, output)

        write_atomic(path, build_example_file(remote.content, stage))
        logger.info("Wrote example file %s", path)
        return ExampleOutcome(stage=stage, path=path, variable_count=len(remote.variables))

    def _local_path(self, stage: str) -> Path:
        return self.config.resolve_env_path(stage)

    def _example_path(self, stage: str, output: Optional[str]) -> Path:
        return self.config.root / (output or f".env.{stage}.example")

    def _read_local(self, local_path: Path, stage: str) -> str:
        if not local_path.exists():
            raise LocalFileMissing(
                str(local_path),
                hint=f"Run 'pushenv pull --stage {stage}' to download it first.",
            )
        return local_path.read_text(encoding="utf-8")

    def _stage_mismatch(self, stage: str, local_path: Path, content: str, consequence: str) -> List[Confirmation]:
        local_stage = extract_stage(content)
        if local_stage and local_stage != stage:
            return [Confirmation(
                prompt="Continue anyway?",
                reason=f"Stage mismatch: command stage is '{stage}' but {local_path} "
                       f"was pulled from '{local_stage}'. {consequence}",
            )]
        return []

    def _require_metadata(self, stage: str) -> VersionMetadata:
        metadata = self.ledger.read(self.project_id, stage)
        if metadata is None or not metadata.versions:
            raise NoVersionHistory(stage)
        return metadata

    def _matches_remote(
        self,
        stage: str,
        metadata: Optional[VersionMetadata],
        content: str,
        key: bytes,
    ) -> bool:
        """True if the latest remote decrypts to the same variables."""
        latest = metadata.latest if metadata and metadata.versions else None
        found = fetch_first(self.store, latest_lookups(self.project_id, stage, latest))
        if found is None:
            return False

        _, blob = found
        try:
            _, ciphertext = unpack_blob(_blob_text(blob))
            remote_content = decrypt(ciphertext, key)
        except (AuthenticationError, InvalidCiphertextFormat) as exc:
            logger.warning("Could not compare with remote (%s); pushing anyway", exc.message)
            return False

        return envs_identical(content, remote_content)

    def _decrypt_blob(self, blob: bytes) -> str:
        """
        Decrypt a stored blob with the cached key, or with a key derived
        from the prompted passphrase and the blob's salt.
        """
        salt, ciphertext = unpack_blob(_blob_text(blob))
        entry = self.keystore.get(self.project_id)

        if entry is not None:
            try:
                return decrypt(ciphertext, entry.key_bytes)
            except AuthenticationError as exc:
                raise AuthenticationError(
                    hint="The cached key did not match. If the passphrase was rotated, "
                         "run 'pushenv forget-key' and try again.",
                ) from exc

        if self.ask_passphrase is None:
            raise KeyMaterialMissing(self.project_id)

        fresh = KeyEntry.derive(self.ask_passphrase(), salt)
        plaintext = decrypt(ciphertext, fresh.key_bytes)
        self.keystore.put(self.project_id, fresh)
        return plaintext

    def _update_alias(self, stage: str, blob: bytes) -> Optional[str]:
        """Mirror blob at the stage alias. Returns a warning on failure."""
        try:
            self.store.put(stage_key(self.project_id, stage), blob, OCTET_STREAM)
        except StorageError as exc:
            logger.warning("Could not update latest alias for %s/%s: %s", self.project_id, stage, exc)
            return f"Could not update latest file: {exc.message}"
        return None


def _blob_text(blob: bytes) -> str:
    try:
        return blob.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise InvalidCiphertextFormat() from exc
