"""Tests for ticketflow.git module."""

import subprocess
from pathlib import Path
from unittest.mock import patch, MagicMock

import pytest

from ticketflow.git.branch import list_local_branches
from ticketflow.git.runner import GitResult, require_success, run_git
from ticketflow.git.status import has_staged_changes, has_uncommitted_changes
from ticketflow.git.remote import parse_ls_remote_sha
from ticketflow.git.worktree import list_worktrees
from ticketflow.git.repo import (
    PUSH_FORCE_WITH_LEASE,
    PUSH_NONE,
    PUSH_PLAIN,
    PUSH_REFUSE,
    LocalGit,
    RemoteBranchState,
    RemoteState,
    bootstrap_message,
    decide_push,
    is_bootstrap_subject,
)
from ticketflow.lib.errors import PreconditionError, TransientIOError

OK = GitResult(returncode=0, stdout="", stderr="")


class TestRunGit:
    """Test run_git function."""

    @patch("ticketflow.git.runner.subprocess.run")
    def test_passes_cwd_with_C_flag(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout="", stderr="")
        run_git(["status", "--porcelain"], Path("/my/repo"))
        assert mock_run.call_args[0][0] == ["git", "-C", "/my/repo", "status", "--porcelain"]

    @patch("ticketflow.git.runner.subprocess.run")
    def test_handles_timeout(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="git", timeout=30)
        result = run_git(["fetch"], Path("/tmp"))
        assert not result.success
        assert result.timed_out
        assert "timed out" in result.stderr

    @patch("ticketflow.git.runner.subprocess.run")
    def test_missing_git_is_a_failed_result(self, mock_run):
        mock_run.side_effect = FileNotFoundError()
        result = run_git(["status"], Path("/tmp"))
        assert result.returncode == 127
        assert not result.success

    def test_require_success_raises_with_stderr(self):
        with pytest.raises(TransientIOError) as exc:
            require_success(GitResult(128, "", "fatal: bad ref"), "push")
        assert "git push failed" in str(exc.value)
        assert exc.value.stderr == "fatal: bad ref"


class TestStatus:

    @patch("ticketflow.git.status.run_git")
    def test_dirty(self, mock_run):
        mock_run.return_value = GitResult(0, " M doc.md\n", "")
        assert has_uncommitted_changes(Path("/tmp")) is True

    @patch("ticketflow.git.status.run_git")
    def test_staged_uses_exit_code(self, mock_run):
        mock_run.return_value = GitResult(1, "", "")
        assert has_staged_changes(Path("/tmp")) is True
        mock_run.return_value = OK
        assert has_staged_changes(Path("/tmp")) is False


class TestParsing:

    def test_ls_remote_sha(self):
        out = "abc123\trefs/heads/feat/ARCH-7-x\n"
        assert parse_ls_remote_sha(out, "feat/ARCH-7-x") == "abc123"
        assert parse_ls_remote_sha("", "feat/ARCH-7-x") is None

    @patch("ticketflow.git.worktree.run_git")
    def test_list_worktrees_porcelain(self, mock_run):
        mock_run.return_value = GitResult(0, (
            "worktree /repo\nHEAD aaa\nbranch refs/heads/main\n\n"
            "worktree /repo-feat-ARCH-42-x\nHEAD bbb\nbranch refs/heads/feat/ARCH-42-x\n\n"
            "worktree /detached\nHEAD ccc\ndetached\n"
        ), "")
        entries = list_worktrees(Path("/repo"))
        assert [e["branch"] for e in entries] == ["main", "feat/ARCH-42-x", None]
        assert entries[1]["path"] == Path("/repo-feat-ARCH-42-x")
        assert entries[2]["head"] == "ccc"

    @patch("ticketflow.git.branch.run_git")
    def test_list_local_branches(self, mock_run):
        mock_run.return_value = GitResult(0, "main\nfeat/ARCH-42-x\n", "")
        assert list_local_branches(Path("/repo")) == ["main", "feat/ARCH-42-x"]
        mock_run.assert_called_once_with(
            ["for-each-ref", "--format=%(refname:short)", "refs/heads"], Path("/repo"))


class TestBootstrapSubject:

    def test_message_with_issue(self):
        assert bootstrap_message("feat/ARCH-42-x", "ARCH-42", 12) == \
            "[ARCH-42-x] Bootstrap worktree for issue #12 [skip ci]"

    def test_message_without_issue(self):
        assert bootstrap_message("feat/ARCH-42-x", "ARCH-42", "pending") == \
            "[ARCH-42-x] Bootstrap worktree for ARCH-42 [skip ci]"

    def test_classification(self):
        assert is_bootstrap_subject("[ARCH-7-x] Bootstrap worktree for issue #3 [skip ci]")
        assert not is_bootstrap_subject("Implement the parser")
        assert not is_bootstrap_subject(None)


class TestDecidePush:

    @pytest.mark.parametrize("state,local,force,ff,expected", [
        (RemoteState.NO_REMOTE, "l1", False, False, PUSH_PLAIN),
        (RemoteState.BOOTSTRAP_ONLY, "r1", False, False, PUSH_NONE),
        (RemoteState.REAL_WORK, "r1", False, False, PUSH_NONE),
        (RemoteState.REAL_WORK, "l1", False, True, PUSH_PLAIN),
        (RemoteState.BOOTSTRAP_ONLY, "l1", False, False, PUSH_FORCE_WITH_LEASE),
        (RemoteState.REAL_WORK, "l1", False, False, PUSH_REFUSE),
        (RemoteState.REAL_WORK, "l1", True, False, PUSH_FORCE_WITH_LEASE),
    ])
    def test_table(self, state, local, force, ff, expected):
        remote = RemoteBranchState(state, None if state == RemoteState.NO_REMOTE else "r1")
        assert decide_push(remote, local, force, ff) == expected


class TestLocalGitRemote:

    @pytest.fixture
    def git(self):
        return LocalGit(Path("/repo"), "origin")

    @patch("ticketflow.git.repo.git_branch.get_commit_subject")
    @patch("ticketflow.git.repo.git_remote.fetch")
    @patch("ticketflow.git.repo.git_remote.ls_remote_head")
    def test_remote_state_bootstrap_only(self, mock_ls, mock_fetch, mock_subject, git):
        mock_ls.return_value = GitResult(0, "r1\trefs/heads/feat/ARCH-7-x\n", "")
        mock_fetch.return_value = OK
        mock_subject.return_value = "[ARCH-7-x] Bootstrap worktree for issue #3 [skip ci]"
        state = git.remote_branch_state("feat/ARCH-7-x")
        assert state.state == RemoteState.BOOTSTRAP_ONLY
        assert state.sha == "r1"

    @patch("ticketflow.git.repo.git_remote.fetch")
    @patch("ticketflow.git.repo.git_remote.ls_remote_head")
    def test_remote_state_missing_skips_fetch(self, mock_ls, mock_fetch, git):
        mock_ls.return_value = OK
        assert git.remote_branch_state("feat/ARCH-7-x").state == RemoteState.NO_REMOTE
        mock_fetch.assert_not_called()

    @patch("ticketflow.git.repo.git_remote.ls_remote_head")
    def test_remote_lookup_failure_raises(self, mock_ls, git):
        mock_ls.return_value = GitResult(128, "", "could not read from remote")
        with pytest.raises(TransientIOError):
            git.remote_branch_state("feat/ARCH-7-x")

    @patch("ticketflow.git.repo.git_branch.is_ancestor", return_value=False)
    @patch("ticketflow.git.repo.git_branch.get_commit_sha", return_value="l1")
    @patch("ticketflow.git.repo.git_remote.push_force_with_lease")
    def test_bootstrap_only_pushes_with_lease(self, mock_push, _sha, _anc, git):
        mock_push.return_value = OK
        remote = RemoteBranchState(RemoteState.BOOTSTRAP_ONLY, "r1", "[x] Bootstrap worktree for y [skip ci]")
        with patch.object(git, "remote_branch_state", return_value=remote):
            outcome = git.push_branch("feat/ARCH-7-x", cwd=Path("/wt"))
        assert outcome.action == PUSH_FORCE_WITH_LEASE
        assert outcome.pushed
        mock_push.assert_called_once_with(Path("/wt"), "origin", "feat/ARCH-7-x", "r1")

    @patch("ticketflow.git.runner.subprocess.run")
    def test_lease_flag_names_branch_and_sha(self, mock_run):
        from ticketflow.git.remote import push_force_with_lease
        mock_run.return_value = MagicMock(returncode=0, stdout="", stderr="")
        push_force_with_lease(Path("/wt"), "origin", "feat/ARCH-7-x", "r1")
        assert mock_run.call_args[0][0][3:] == [
            "push", "-u", "--force-with-lease=feat/ARCH-7-x:r1", "origin", "feat/ARCH-7-x",
        ]

    @patch("ticketflow.git.repo.git_branch.is_ancestor", return_value=False)
    @patch("ticketflow.git.repo.git_branch.get_commit_sha", return_value="l1")
    @patch("ticketflow.git.repo.git_remote.push_force_with_lease")
    @patch("ticketflow.git.repo.git_remote.push_set_upstream")
    def test_real_work_refused_without_force(self, mock_plain, mock_lease, _sha, _anc, git):
        remote = RemoteBranchState(RemoteState.REAL_WORK, "r1", "Implement parser")
        with patch.object(git, "remote_branch_state", return_value=remote):
            with pytest.raises(PreconditionError) as exc:
                git.push_branch("feat/ARCH-7-x")
        assert "--force" in str(exc.value)
        mock_plain.assert_not_called()
        mock_lease.assert_not_called()

    @patch("ticketflow.git.repo.git_branch.is_ancestor", return_value=True)
    @patch("ticketflow.git.repo.git_branch.get_commit_sha", return_value="l1")
    @patch("ticketflow.git.repo.git_remote.push_set_upstream")
    def test_fast_forward_pushes_plain(self, mock_plain, _sha, _anc, git):
        mock_plain.return_value = OK
        remote = RemoteBranchState(RemoteState.REAL_WORK, "r1", "Implement parser")
        with patch.object(git, "remote_branch_state", return_value=remote):
            outcome = git.push_branch("feat/ARCH-7-x")
        assert outcome.action == PUSH_PLAIN

    @patch("ticketflow.git.repo.git_branch.is_ancestor", return_value=False)
    @patch("ticketflow.git.repo.git_branch.get_commit_sha", return_value="l1")
    @patch("ticketflow.git.repo.git_remote.push_force_with_lease")
    def test_rejected_lease_is_transient(self, mock_lease, _sha, _anc, git):
        mock_lease.return_value = GitResult(1, "", "! [rejected] (stale info)")
        remote = RemoteBranchState(RemoteState.BOOTSTRAP_ONLY, "r1", "b")
        with patch.object(git, "remote_branch_state", return_value=remote):
            with pytest.raises(TransientIOError):
                git.push_branch("feat/ARCH-7-x")


class TestLocalGitWorktrees:

    @pytest.fixture
    def git(self, tmp_path):
        return LocalGit(tmp_path / "repo")

    @patch("ticketflow.git.repo.git_worktree.add_worktree")
    @patch("ticketflow.git.repo.git_branch.branch_exists", return_value=False)
    @patch("ticketflow.git.repo.git_worktree.find_worktree", return_value=None)
    def test_create_new_branch_from_base(self, _find, _exists, mock_add, git, tmp_path):
        mock_add.return_value = OK
        path = tmp_path / "wt"
        assert git.create_worktree(path, "feat/ARCH-42-x", "main") is True
        mock_add.assert_called_once_with(git.repo, path, "feat/ARCH-42-x", "main")

    @patch("ticketflow.git.repo.git_worktree.add_worktree")
    @patch("ticketflow.git.repo.git_worktree.find_worktree")
    def test_existing_worktree_is_noop(self, mock_find, mock_add, git, tmp_path):
        mock_find.return_value = {"path": tmp_path / "wt", "head": "a", "branch": "feat/ARCH-42-x"}
        assert git.create_worktree(tmp_path / "wt", "feat/ARCH-42-x", "main") is False
        mock_add.assert_not_called()

    @patch("ticketflow.git.repo.git_worktree.find_worktree")
    def test_worktree_on_other_branch_raises(self, mock_find, git, tmp_path):
        mock_find.return_value = {"path": tmp_path / "wt", "head": "a", "branch": "fix/ARCH-1-y"}
        with pytest.raises(PreconditionError):
            git.create_worktree(tmp_path / "wt", "feat/ARCH-42-x", "main")

    @patch("ticketflow.git.repo.git_worktree.find_worktree", return_value=None)
    def test_unregistered_directory_raises(self, _find, git, tmp_path):
        (tmp_path / "wt").mkdir()
        with pytest.raises(PreconditionError):
            git.create_worktree(tmp_path / "wt", "feat/ARCH-42-x", "main")

    @patch("ticketflow.git.repo.git_worktree.remove_worktree")
    @patch("ticketflow.git.repo.git_status.has_uncommitted_changes", return_value=True)
    @patch("ticketflow.git.repo.git_worktree.find_worktree")
    def test_remove_dirty_worktree_refused(self, mock_find, _dirty, mock_remove, git, tmp_path):
        mock_find.return_value = {"path": tmp_path / "wt", "head": "a", "branch": "b"}
        with pytest.raises(PreconditionError):
            git.remove_worktree(tmp_path / "wt")
        mock_remove.assert_not_called()

    @patch("ticketflow.git.repo.git_worktree.list_worktrees")
    def test_worktree_branch_for_ticket(self, mock_list, git):
        mock_list.return_value = [
            {"path": Path("/repo"), "head": "a", "branch": "main"},
            {"path": Path("/wt1"), "head": "b", "branch": "feat/ARCH-420-other"},
            {"path": Path("/wt2"), "head": "c", "branch": "feat/ARCH-42-x"},
        ]
        assert git.worktree_branch_for_ticket("ARCH-42") == "feat/ARCH-42-x"

    @patch("ticketflow.git.repo.git_branch.list_local_branches")
    def test_local_branch_for_ticket(self, mock_list, git):
        mock_list.return_value = ["main", "feat/ARCH-420-other", "feat/ARCH-42-x"]
        assert git.local_branch_for_ticket("ARCH-42") == "feat/ARCH-42-x"

    @patch("ticketflow.git.repo.git_branch.list_local_branches")
    def test_local_branch_for_ticket_ambiguous(self, mock_list, git):
        mock_list.return_value = ["feat/ARCH-42-x", "fix/ARCH-42-y"]
        assert git.local_branch_for_ticket("ARCH-42") is None


class TestCommitBootstrap:

    @patch("ticketflow.git.repo.git_branch.get_commit_sha", return_value="sha1")
    @patch("ticketflow.git.repo.git_commit.commit", return_value=OK)
    @patch("ticketflow.git.repo.git_status.has_staged_changes")
    @patch("ticketflow.git.repo.git_commit.stage_files", return_value=OK)
    def test_placeholder_when_document_unchanged(self, mock_stage, mock_staged, _commit, _sha, tmp_path):
        mock_staged.side_effect = [False, True]
        git = LocalGit(tmp_path)
        sha = git.commit_bootstrap(tmp_path, "[x] Bootstrap worktree for y [skip ci]", ["docs/t.md"])
        assert sha == "sha1"
        assert (tmp_path / ".worktree-bootstrap.md").exists()
        assert mock_stage.call_args_list[1][0][1] == [".worktree-bootstrap.md"]
