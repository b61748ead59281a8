"""
Tests for structural env comparison.
"""

from pushenv.core.envdiff import (
    AddedKey,
    ChangedKey,
    RemovedKey,
    compare_envs,
    diff_contents,
    envs_identical,
)


class TestCompareEnvs:
    """Test partitioning of keys."""

    def test_added_removed_changed(self):
        """Remote-only keys are added, local-only removed, differing changed."""
        local = {"PORT": "3000", "DEBUG": "true"}
        remote = {"PORT": "8080", "NEW_KEY": "x"}
        result = compare_envs(local, remote)

        assert result.added == [AddedKey("NEW_KEY", "x")]
        assert result.removed == [RemovedKey("DEBUG", "true")]
        assert result.changed == [ChangedKey("PORT", "3000", "8080")]
        assert result.unchanged == 0
        assert result.has_changes

    def test_partition_covers_union(self):
        """Every key lands in exactly one bucket."""
        local = {"A": "1", "B": "2", "C": "3"}
        remote = {"B": "2", "C": "x", "D": "4"}
        result = compare_envs(local, remote)

        total = len(result.added) + len(result.removed) + len(result.changed) + result.unchanged
        assert total == len(set(local) | set(remote))
        assert result.unchanged == 1

    def test_identical(self):
        result = compare_envs({"A": "1"}, {"A": "1"})
        assert not result.has_changes
        assert result.unchanged == 1


class TestDiffContents:
    """Test comparison of raw texts."""

    def test_comments_and_order_ignored(self):
        local = "# local notes\nB=2\nA=1\n"
        remote = "A=1\n\nB=2\n"
        assert envs_identical(local, remote)

    def test_quotes_ignored(self):
        assert envs_identical('A="1"\n', "A=1\n")

    def test_header_ignored(self):
        local = "# ════════\n# PushEnv Managed Environment File\n# Stage: DEVELOPMENT\nA=1\n"
        assert envs_identical(local, "A=1\n")

    def test_value_change_detected(self):
        result = diff_contents("PORT=3000\n", "PORT=8080\n")
        assert result.changed == [ChangedKey("PORT", "3000", "8080")]
