"""
Tests for the sync engine against an in-memory blob store.
"""

import pytest
from pushenv.core.crypto import encrypt, pack_blob
from pushenv.core.errors import (
    AuthenticationError,
    KeyMaterialMissing,
    LocalFileMissing,
    NoVersionHistory,
    RemoteNotFound,
    StageNotConfigured,
    VersionNotFound,
)
from pushenv.core.header import extract_stage, strip_header
from pushenv.core.keystore import KeyEntry, KeyStore
from pushenv.core.storage import legacy_key, metadata_key, stage_key, version_key

from conftest import PASSPHRASE, PROJECT_ID, make_engine, write_env


def push_versions(engine, project, *contents, stage="development"):
    for content in contents:
        write_env(project, stage, content)
        engine.push(stage)


def legacy_blob(key_entry, content: str) -> bytes:
    return pack_blob(key_entry.salt_bytes, encrypt(content, key_entry.key_bytes)).encode("utf-8")


class TestPush:
    """Test publishing local files as versions."""

    def test_versions_grow(self, engine, project):
        """N pushes of different content give versions 1..N."""
        push_versions(engine, project, "A=1\n", "A=2\n", "A=3\n")

        metadata = engine.ledger.read(PROJECT_ID, "development")
        assert metadata.latest == 3
        assert metadata.numbers() == [1, 2, 3]
        assert [v.message for v in metadata.versions] == ["Initial push", "Version 2", "Version 3"]

    def test_outcome(self, engine, project):
        write_env(project, "staging", "A=1\nB=2\n")
        outcome = engine.push("staging", message="first deploy")

        assert outcome.pushed
        assert outcome.version == 1
        assert outcome.message == "first deploy"
        assert outcome.variable_count == 2
        assert outcome.warnings == []

    def test_blob_layout(self, engine, project, store, key_entry):
        """Version blob and alias hold the same salt-prefixed ciphertext."""
        write_env(project, "development", "A=1\n")
        engine.push("development")

        blob = store.objects[version_key(PROJECT_ID, "development", 1)]
        assert store.objects[stage_key(PROJECT_ID, "development")] == blob
        assert blob.decode("utf-8").startswith(key_entry.salt_bytes.hex() + ":")
        assert b"A=1" not in blob

    def test_unchanged_is_skipped(self, engine, project, store):
        write_env(project, "development", "A=1\n")
        engine.push("development")
        puts = len(store.puts)

        outcome = engine.push("development")
        assert not outcome.pushed
        assert len(store.puts) == puts
        assert engine.ledger.read(PROJECT_ID, "development").latest == 1

    def test_comment_changes_are_not_changes(self, engine, project):
        write_env(project, "development", "A=1\n")
        engine.push("development")
        write_env(project, "development", "# added a note\nA='1'\n")
        assert not engine.push("development").pushed

    def test_force(self, engine, project):
        write_env(project, "development", "A=1\n")
        engine.push("development")
        outcome = engine.push("development", force=True)
        assert outcome.pushed
        assert outcome.version == 2

    def test_missing_local_file(self, engine):
        with pytest.raises(LocalFileMissing):
            engine.push("development")

    def test_missing_key(self, project, store, empty_keystore):
        write_env(project, "development", "A=1\n")
        with pytest.raises(KeyMaterialMissing):
            make_engine(project, store, empty_keystore).push("development")

    def test_unknown_stage(self, engine):
        with pytest.raises(StageNotConfigured):
            engine.push("qa")

    def test_alias_failure_is_a_warning(self, engine, project, store):
        """The version is recorded even when the latest alias cannot be written."""
        store.fail_puts.add(stage_key(PROJECT_ID, "development"))
        write_env(project, "development", "A=1\n")

        outcome = engine.push("development")
        assert outcome.pushed
        assert len(outcome.warnings) == 1
        assert engine.ledger.read(PROJECT_ID, "development").latest == 1
        assert engine.fetch("development").content == "A=1\n"

    def test_push_gates(self, engine):
        assert engine.push_gates("development") == []
        gates = engine.push_gates("production")
        assert len(gates) == 1
        assert gates[0].danger

    def test_push_gates_unknown_stage(self, engine):
        """An unconfigured stage fails before any confirmation is asked."""
        with pytest.raises(StageNotConfigured):
            engine.push_gates("qa")


class TestPull:
    """Test fetching and writing remote files."""

    def test_pull_writes_header(self, engine, project):
        write_env(project, "staging", "A=1\n")
        engine.push("staging")
        path = project.resolve_env_path("staging")
        path.unlink()

        outcome = engine.pull("staging")
        content = path.read_text()
        assert outcome.version == 1
        assert outcome.variable_count == 1
        assert extract_stage(content) == "staging"
        assert strip_header(content) == "A=1\n"

    def test_new_machine_caches_key(self, engine, project, store, empty_keystore, key_entry):
        """A passphrase-derived key is cached after a successful pull."""
        write_env(project, "development", "A=1\n")
        engine.push("development")

        newcomer = make_engine(project, store, empty_keystore, PASSPHRASE)
        newcomer.pull("development")
        assert empty_keystore.get(PROJECT_ID) == key_entry
        assert KeyStore(empty_keystore.home).get(PROJECT_ID) == key_entry

    def test_no_key_no_passphrase(self, engine, project, store, empty_keystore):
        write_env(project, "development", "A=1\n")
        engine.push("development")
        with pytest.raises(KeyMaterialMissing):
            make_engine(project, store, empty_keystore).pull("development")

    def test_wrong_passphrase(self, engine, project, store, empty_keystore):
        write_env(project, "development", "A=1\n")
        engine.push("development")

        with pytest.raises(AuthenticationError):
            make_engine(project, store, empty_keystore, "wrong").pull("development")
        assert empty_keystore.get(PROJECT_ID) is None

    def test_stale_cached_key(self, engine, project, store, tmp_path):
        """A cached key that no longer matches suggests forgetting it."""
        write_env(project, "development", "A=1\n")
        engine.push("development")

        stale = KeyStore(tmp_path / "stale")
        stale.put(PROJECT_ID, KeyEntry.derive("rotated", b"\x00" * 16))
        with pytest.raises(AuthenticationError) as exc_info:
            make_engine(project, store, stale).pull("development")
        assert "forget-key" in exc_info.value.hint

    def test_specific_version(self, engine, project):
        push_versions(engine, project, "A=1\n", "A=2\n")
        outcome = engine.pull("development", version=1)
        assert outcome.version == 1
        assert strip_header(project.resolve_env_path("development").read_text()) == "A=1\n"

    def test_missing_version(self, engine, project):
        push_versions(engine, project, "A=1\n")
        with pytest.raises(VersionNotFound):
            engine.pull("development", version=7)

    def test_legacy_fallback(self, engine, project, store, key_entry):
        """Pre-stage data is found for the default stage only."""
        store.put(legacy_key(PROJECT_ID), legacy_blob(key_entry, "OLD=1\n"))

        outcome = engine.pull("development")
        assert outcome.source == "legacy"
        assert outcome.version is None

        with pytest.raises(RemoteNotFound):
            engine.pull("production")

    def test_stage_mismatch_gate(self, engine, project):
        """Pulling over a file from another stage asks first."""
        write_env(project, "production", "A=1\n")
        engine.push("production")
        engine.pull("production")
        write_env(project, "development", project.resolve_env_path("production").read_text())

        gates = engine.pull_gates("development")
        assert len(gates) == 1
        assert "production" in gates[0].reason
        assert engine.pull_gates("production") == []

    def test_no_gate_without_local_file(self, engine):
        assert engine.pull_gates("staging") == []

    def test_no_gate_for_plain_file(self, engine, project):
        write_env(project, "development", "A=1\n")
        assert engine.pull_gates("development") == []

    def test_nothing_remote(self, engine):
        with pytest.raises(RemoteNotFound) as exc_info:
            engine.pull("staging")
        assert "pushenv push --stage staging" in exc_info.value.hint


class TestDiff:
    """Test local vs remote comparison."""

    def test_diff(self, engine, project):
        write_env(project, "development", "PORT=8080\nNEW_KEY=x\n")
        engine.push("development")
        write_env(project, "development", "PORT=3000\nDEBUG=true\n")

        outcome = engine.diff("development")
        result = outcome.result
        assert [a.key for a in result.added] == ["NEW_KEY"]
        assert [r.key for r in result.removed] == ["DEBUG"]
        assert [(c.key, c.local_value, c.remote_value) for c in result.changed] == [("PORT", "3000", "8080")]
        assert outcome.version == 1

    def test_diff_unknown_version(self, engine, project):
        push_versions(engine, project, "A=1\n", "A=2\n", "A=3\n")
        with pytest.raises(VersionNotFound) as exc_info:
            engine.diff("development", version=5)
        assert exc_info.value.available == [1, 2, 3]

    def test_diff_after_pull_is_clean(self, engine, project):
        write_env(project, "development", "A=1\n")
        engine.push("development")
        engine.pull("development")
        assert not engine.diff("development").result.has_changes

    def test_local_missing(self, engine):
        with pytest.raises(LocalFileMissing) as exc_info:
            engine.diff("development")
        assert "pushenv pull" in exc_info.value.hint

    def test_stage_mismatch_gate(self, engine, project):
        write_env(project, "production", "A=1\n")
        engine.push("production")
        engine.pull("production")
        pulled = project.resolve_env_path("production").read_text()
        write_env(project, "development", pulled)

        gates = engine.diff_gates("development")
        assert len(gates) == 1
        assert "production" in gates[0].reason
        assert engine.diff_gates("production") == []


class TestRollback:
    """Test restoring old versions."""

    def test_rollback_appends(self, engine, project, store):
        push_versions(engine, project, "A=1\n", "A=2\n", "A=3\n")
        before = {n: store.objects[version_key(PROJECT_ID, "development", n)] for n in (1, 2, 3)}

        outcome = engine.rollback("development", 1)

        assert outcome.rolled_back
        assert outcome.version == 4
        metadata = engine.ledger.read(PROJECT_ID, "development")
        assert metadata.numbers() == [1, 2, 3, 4]
        assert metadata.find(4).message == "Rollback to v1"
        for n, blob in before.items():
            assert store.objects[version_key(PROJECT_ID, "development", n)] == blob
        assert store.objects[version_key(PROJECT_ID, "development", 4)] == before[1]
        assert store.objects[stage_key(PROJECT_ID, "development")] == before[1]
        assert engine.fetch("development").content == "A=1\n"

    def test_rollback_to_latest_is_noop(self, engine, project, store):
        push_versions(engine, project, "A=1\n", "A=2\n")
        puts = len(store.puts)

        plan = engine.plan_rollback("development", 2)
        assert plan.noop
        assert plan.gates == []
        outcome = engine.rollback("development", 2)
        assert not outcome.rolled_back
        assert len(store.puts) == puts

    def test_production_needs_two_confirmations(self, engine, project):
        push_versions(engine, project, "A=1\n", "A=2\n", stage="production")
        gates = engine.plan_rollback("production", 1).gates
        assert len(gates) == 2
        assert gates[0].danger
        assert gates[1].prompt == "Rollback to version 1?"

    def test_other_stages_need_one(self, engine, project):
        push_versions(engine, project, "A=1\n", "A=2\n", stage="staging")
        assert len(engine.plan_rollback("staging", 1).gates) == 1

    def test_no_history(self, engine, store, key_entry):
        store.put(legacy_key(PROJECT_ID), legacy_blob(key_entry, "OLD=1\n"))
        with pytest.raises(NoVersionHistory):
            engine.rollback("development", 1)

    def test_unknown_version(self, engine, project):
        push_versions(engine, project, "A=1\n")
        with pytest.raises(VersionNotFound):
            engine.plan_rollback("development", 3)


class TestHistory:
    def test_newest_first(self, engine, project):
        push_versions(engine, project, "A=1\n", "A=2\n")
        outcome = engine.history("development")
        assert [v.version for v in outcome.versions] == [2, 1]
        assert outcome.latest == 2
        assert not outcome.legacy

    def test_legacy(self, engine, store, key_entry):
        store.put(legacy_key(PROJECT_ID), legacy_blob(key_entry, "OLD=1\n"))
        outcome = engine.history("development")
        assert outcome.legacy
        assert outcome.versions == []

    def test_nothing_remote(self, engine, store):
        with pytest.raises(RemoteNotFound):
            engine.history("staging")
        assert metadata_key(PROJECT_ID, "staging") not in store.objects


class TestExample:
    def test_writes_placeholders(self, engine, project):
        write_env(project, "development", "DB_PASSWORD=s3cr3t\nPORT=8080\n")
        engine.push("development")

        outcome = engine.example("development")
        content = outcome.path.read_text()
        assert outcome.path == project.root / ".env.development.example"
        assert outcome.variable_count == 2
        assert "DB_PASSWORD=your-password-here\n" in content
        assert "s3cr3t" not in content
        assert extract_stage(content) == "development"

    def test_custom_output_and_gate(self, engine, project):
        write_env(project, "development", "A=1\n")
        engine.push("development")

        assert engine.example_gates("development", ".env.example") == []
        engine.example("development", ".env.example")
        assert (project.root / ".env.example").exists()
        assert len(engine.example_gates("development", ".env.example")) == 1
