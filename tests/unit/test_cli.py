"""Unit tests for the command-line layer, with the engine stubbed out."""

import signal

import pytest
from click.testing import CliRunner

from commit_patch import cli
from commit_patch.errors import (
    CommitFailure,
    ConfigError,
    Interrupted,
    NoCommitMessage,
    RemainderReapplyFailure,
)
from commit_patch.types import CommitResult, FragmentKind, FragmentSet

PATCH = "--- a/x.txt\n+++ b/x.txt\n@@ -1 +1 @@\n-one\n+ONE\n"


@pytest.fixture
def repo_dir(tmp_path, monkeypatch):
    """A directory that looks like a git checkout, used as cwd."""
    (tmp_path / ".git").mkdir()
    monkeypatch.chdir(tmp_path)
    for var in ("COMMIT_PATCH_GIT_NO_INDEX", "COMMIT_PATCH_TELEMETRY"):
        monkeypatch.delenv(var, raising=False)
    return tmp_path


@pytest.fixture
def engine(monkeypatch):
    """Record run_transaction calls and return a canned result."""
    calls = []

    def fake_run_transaction(repo, patch, **kwargs):
        calls.append({"repo": repo, "patch": patch, **kwargs})
        if "raise" in engine_state:
            raise engine_state["raise"]
        return CommitResult(
            run_id="r",
            fragments=FragmentSet.from_pairs([("x.txt", FragmentKind.MODIFIED)]),
            native_index=repo.backend.native_index,
            remainder_reapplied=True,
        )

    engine_state = {}
    monkeypatch.setattr(cli, "run_transaction", fake_run_transaction)
    fake_run_transaction.calls = calls
    fake_run_transaction.state = engine_state
    return fake_run_transaction


class TestCommitPatchCommand:
    """Tests for the commit-patch command."""

    def test_patch_file_and_message(self, repo_dir, engine):
        (repo_dir / "p.patch").write_text(PATCH)

        result = CliRunner().invoke(cli.commit_patch, ["-m", "Fix", "p.patch"])

        assert result.exit_code == 0, result.output
        (call,) = engine.calls
        assert call["patch"] == PATCH
        assert call["message"].text == "Fix"
        assert call["amend"] is False
        assert call["remainder_path"] == repo_dir / ".commit-patch.remainder.patch"
        assert call["repo"].backend.native_index is True
        assert "Committed 1 file(s)" in result.output
        assert "restored" in result.output

    def test_patch_from_stdin(self, repo_dir, engine):
        result = CliRunner().invoke(cli.commit_patch, ["-m", "Fix"], input=PATCH)

        assert result.exit_code == 0, result.output
        assert engine.calls[0]["patch"] == PATCH

    def test_message_file(self, repo_dir, engine):
        (repo_dir / "msg").write_text("From file\n")
        result = CliRunner().invoke(cli.commit_patch, ["-F", "msg", "-"], input=PATCH)

        assert result.exit_code == 0, result.output
        assert engine.calls[0]["message"].file == repo_dir.resolve() / "msg"

    def test_message_options_are_exclusive(self, repo_dir, engine):
        (repo_dir / "msg").write_text("m\n")
        result = CliRunner().invoke(cli.commit_patch, ["-m", "a", "-F", "msg"], input=PATCH)

        assert result.exit_code == 2
        assert "mutually exclusive" in result.output
        assert engine.calls == []

    def test_flags_reach_runner(self, repo_dir, engine):
        result = CliRunner().invoke(cli.commit_patch, ["--amend", "-v", "-n", "-m", "x"], input=PATCH)

        assert result.exit_code == 0, result.output
        call = engine.calls[0]
        assert call["amend"] is True
        assert call["runner"].verbose is True
        assert call["runner"].dry_run is True
        assert "Dry run" in result.output

    def test_git_index_can_be_disabled(self, repo_dir, engine, monkeypatch):
        monkeypatch.setenv("COMMIT_PATCH_GIT_NO_INDEX", "1")

        CliRunner().invoke(cli.commit_patch, ["-m", "x"], input=PATCH)

        backend = engine.calls[0]["repo"].backend
        assert backend.name == "git"
        assert backend.native_index is False

    def test_config_file_option(self, repo_dir, engine):
        (repo_dir / "cfg.yml").write_text("tools:\n  patch: gpatch\n")

        CliRunner().invoke(cli.commit_patch, ["-c", "cfg.yml", "-m", "x"], input=PATCH)

        assert engine.calls[0]["tools"].patch == "gpatch"

    def test_telemetry_enabled(self, repo_dir, engine, monkeypatch):
        monkeypatch.setenv("COMMIT_PATCH_TELEMETRY", "1")
        monkeypatch.setenv("COMMIT_PATCH_TELEMETRY_PATH", str(repo_dir / "t.jsonl"))

        CliRunner().invoke(cli.commit_patch, ["-m", "x"], input=PATCH)

        sink = engine.calls[0]["telemetry"]
        assert sink.enabled is True
        assert sink.path == repo_dir / "t.jsonl"

    def test_engine_error_exits_nonzero(self, repo_dir, engine):
        engine.state["raise"] = CommitFailure("git commit failed (exit 1)", "hook said no\n")

        result = CliRunner().invoke(cli.commit_patch, ["-m", "x"], input=PATCH)

        assert result.exit_code == 1
        assert "git commit failed" in result.output
        assert "hook said no" in result.output

    def test_interrupt_exit_code(self, repo_dir, engine):
        engine.state["raise"] = Interrupted(signal.SIGINT)

        result = CliRunner().invoke(cli.commit_patch, ["-m", "x"], input=PATCH)

        assert result.exit_code == 128 + signal.SIGINT
        assert "interrupted by signal" in result.output

    def test_invalid_config_is_reported(self, repo_dir, engine):
        """Test that a broken config file fails cleanly before anything runs."""
        (repo_dir / ".commit-patch.yml").write_text("tools: [unclosed\n")

        result = CliRunner().invoke(cli.commit_patch, ["-m", "x"], input=PATCH)

        assert result.exit_code == 1
        assert "Invalid configuration" in result.output
        assert not isinstance(result.exception, ConfigError)
        assert engine.calls == []

    def test_no_repository(self, tmp_path, monkeypatch, engine):
        bare = tmp_path / "bare"
        bare.mkdir()
        if any((p / ".git").exists() or (p / ".hg").exists() for p in bare.parents):
            pytest.skip("temporary directory lives inside a repository")
        monkeypatch.chdir(bare)

        result = CliRunner().invoke(cli.commit_patch, ["-m", "x"], input=PATCH)

        assert result.exit_code == 1
        assert engine.calls == []


class TestCommitPartialCommand:
    """Tests for the commit-partial command."""

    @pytest.fixture
    def authored(self, repo_dir, monkeypatch):
        """Stub authoring: write the history documents and return the patch."""
        state = {}

        def fake_author_patch(repo, runner, config, *, cwd, files, amend, retry):
            state.update(files=files, amend=amend, retry=retry)
            if "raise" in state:
                raise state["raise"]
            (cwd / ".commit-partial.patch").write_text("doc\n")
            msg = cwd / ".commit-partial.msg"
            msg.write_text("Partial\n")
            return PATCH, msg

        monkeypatch.setattr(cli, "author_patch", fake_author_patch)
        return state

    def test_success_clears_history(self, repo_dir, engine, authored):
        result = CliRunner().invoke(cli.commit_partial, ["a.py", "b.py"])

        assert result.exit_code == 0, result.output
        assert authored["files"] == ("a.py", "b.py")
        assert engine.calls[0]["message"].file == (repo_dir / ".commit-partial.msg").resolve()
        assert not (repo_dir / ".commit-partial.patch").exists()
        assert not (repo_dir / ".commit-partial.msg").exists()

    def test_dry_run_keeps_history(self, repo_dir, engine, authored):
        result = CliRunner().invoke(cli.commit_partial, ["-n"])

        assert result.exit_code == 0, result.output
        assert (repo_dir / ".commit-partial.patch").exists()

    def test_failure_keeps_document_and_hints_retry(self, repo_dir, engine, authored):
        engine.state["raise"] = CommitFailure("hg commit failed (exit 1)")

        result = CliRunner().invoke(cli.commit_partial, [])

        assert result.exit_code == 1
        assert "--retry" in result.output
        assert (repo_dir / ".commit-partial.patch").exists()

    def test_dry_run_failure_has_no_retry_hint(self, repo_dir, engine, authored):
        engine.state["raise"] = CommitFailure("hg commit failed (exit 1)")

        result = CliRunner().invoke(cli.commit_partial, ["-n"])

        assert result.exit_code == 1
        assert "--retry" not in result.output

    def test_remainder_failure_clears_document(self, repo_dir, engine, authored):
        engine.state["raise"] = RemainderReapplyFailure(
            "Committed, but uncommitted changes could not be restored",
            artifact=str(repo_dir / ".commit-patch.remainder.patch"),
        )

        result = CliRunner().invoke(cli.commit_partial, [])

        assert result.exit_code == 1
        assert "--retry" not in result.output
        assert not (repo_dir / ".commit-partial.patch").exists()

    def test_authoring_error(self, repo_dir, engine, authored):
        authored["raise"] = NoCommitMessage("Empty commit message; commit cancelled")

        result = CliRunner().invoke(cli.commit_partial, ["--retry", "--amend"])

        assert result.exit_code == 1
        assert "commit cancelled" in result.output
        assert authored["retry"] is True and authored["amend"] is True
        assert engine.calls == []


@pytest.mark.parametrize(
    "argv0,expected",
    [("/usr/bin/commit-partial", "partial"), ("commit-patch", "patch"), ("cp.py", "patch")],
)
def test_main_dispatches_on_program_name(monkeypatch, argv0, expected):
    seen = []
    monkeypatch.setattr(cli.sys, "argv", [argv0])
    monkeypatch.setattr(cli, "commit_partial", lambda: seen.append("partial"))
    monkeypatch.setattr(cli, "commit_patch", lambda: seen.append("patch"))

    cli.main()

    assert seen == [expected]
